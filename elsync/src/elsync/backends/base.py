"""
Base chain-query backend interface.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from collections.abc import Sequence

from elsync.models import HistoryEntry, ListUnspentEntry
from elsync.tx import BlockHeader, Transaction


def script_to_scripthash(script_pubkey: bytes) -> str:
    """Electrum-style script hash: reversed SHA256 of the scriptPubKey, hex encoded."""
    return hashlib.sha256(script_pubkey).digest()[::-1].hex()


class ChainBackend(ABC):
    """
    Abstract batched chain-query interface.
    Every batch call returns one result per input, in input order. Any call
    may suspend on network I/O; failures are raised as BackendError.
    """

    @abstractmethod
    async def batch_script_get_history(
        self, scripts: Sequence[bytes]
    ) -> list[list[HistoryEntry]]:
        """Get the transaction history of every script"""

    @abstractmethod
    async def batch_script_list_unspent(
        self, scripts: Sequence[bytes]
    ) -> list[list[ListUnspentEntry]]:
        """List the unspent outputs paying to every script"""

    @abstractmethod
    async def batch_transaction_get(self, txids: Sequence[str]) -> list[Transaction]:
        """Get raw transactions; fails the whole call if one is unknown"""

    @abstractmethod
    async def batch_block_header(self, heights: Sequence[int]) -> list[BlockHeader]:
        """Get block headers at the given heights"""

    async def transaction_get(self, txid: str) -> Transaction:
        """Get a single raw transaction"""
        (tx,) = await self.batch_transaction_get([txid])
        return tx

    async def close(self) -> None:
        """Close backend connection"""
        pass
