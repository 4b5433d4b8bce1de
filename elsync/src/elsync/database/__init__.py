"""
Wallet database implementations.
"""

from elsync.database.base import Batch, BatchOperations, Database
from elsync.database.file import FileDatabase
from elsync.database.memory import MemoryDatabase, WalletState

__all__ = [
    "Batch",
    "BatchOperations",
    "Database",
    "FileDatabase",
    "MemoryDatabase",
    "WalletState",
]
