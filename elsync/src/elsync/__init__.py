"""
elsync - Electrum-style wallet synchronization engine.
"""

__version__ = "0.1.0"

from elsync.backends import ChainBackend, EsploraBackend
from elsync.database import Database, FileDatabase, MemoryDatabase
from elsync.errors import BackendError, InconsistentDataError, StoreError, SyncError, SyncPhase
from elsync.models import UTXO, HistoryEntry, ScriptType, TransactionDetails
from elsync.sync import ElectrumLikeSync, SyncReport

__all__ = [
    "BackendError",
    "ChainBackend",
    "Database",
    "ElectrumLikeSync",
    "EsploraBackend",
    "FileDatabase",
    "HistoryEntry",
    "InconsistentDataError",
    "MemoryDatabase",
    "ScriptType",
    "StoreError",
    "SyncError",
    "SyncPhase",
    "SyncReport",
    "TransactionDetails",
    "UTXO",
]
