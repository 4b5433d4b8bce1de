"""
Esplora REST API chain backend.
Works with mempool.space, blockstream.info or a self-hosted instance.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Sequence
from typing import Any, TypeVar

import httpx
from loguru import logger

from elsync.backends.base import ChainBackend, script_to_scripthash
from elsync.errors import BackendError, InconsistentDataError
from elsync.models import HistoryEntry, ListUnspentEntry
from elsync.tx import BlockHeader, Transaction, TransactionDecodeError

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_ESPLORA_URLS = {
    "mainnet": "https://mempool.space/api",
    "testnet": "https://mempool.space/testnet/api",
    "signet": "https://mempool.space/signet/api",
}

DEFAULT_TIMEOUT = 30.0

# Esplora returns confirmed history in pages of this size
CHAIN_PAGE_SIZE = 25


class EsploraBackend(ChainBackend):
    """
    Chain backend on top of an Esplora HTTP API.
    Batch calls are issued as parallel requests, bounded by max_concurrent_requests.
    """

    def __init__(
        self,
        base_url: str | None = None,
        network: str = "mainnet",
        timeout: float = DEFAULT_TIMEOUT,
        max_concurrent_requests: int = 8,
        client: httpx.AsyncClient | None = None,
    ):
        if base_url is None:
            if network not in DEFAULT_ESPLORA_URLS:
                raise ValueError(f"No default Esplora URL for network {network}")
            base_url = DEFAULT_ESPLORA_URLS[network]

        self.base_url = base_url.rstrip("/")
        self.network = network
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._semaphore = asyncio.Semaphore(max_concurrent_requests)

    async def _get(self, path: str) -> httpx.Response:
        url = f"{self.base_url}{path}"
        async with self._semaphore:
            try:
                response = await self.client.get(url)
                response.raise_for_status()
                return response
            except httpx.HTTPError as e:
                logger.warning(f"Esplora request failed: GET {path} - {e}")
                raise BackendError(f"GET {path} failed: {e}") from e

    async def _get_json(self, path: str) -> Any:
        response = await self._get(path)
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"GET {path} returned invalid JSON: {e}") from e

    async def _get_text(self, path: str) -> str:
        response = await self._get(path)
        return response.text.strip()

    async def _gather(
        self, func: Callable[[T], Coroutine[Any, Any, R]], items: Sequence[T]
    ) -> list[R]:
        """Run one request per item; the first failure cancels the rest of the batch."""
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(func(item)) for item in items]
        except ExceptionGroup as e:
            raise e.exceptions[0]
        return [task.result() for task in tasks]

    async def _script_history(self, script: bytes) -> list[HistoryEntry]:
        scripthash = script_to_scripthash(script)
        page = await self._get_json(f"/scripthash/{scripthash}/txs")

        entries: list[HistoryEntry] = []
        confirmed_in_page = 0
        for tx_data in page:
            status = tx_data.get("status", {})
            if status.get("confirmed", False):
                confirmed_in_page += 1
                entries.append(HistoryEntry(status["block_height"], tx_data["txid"]))
            else:
                entries.append(HistoryEntry(0, tx_data["txid"]))

        while confirmed_in_page >= CHAIN_PAGE_SIZE:
            last_txid = entries[-1].txid
            page = await self._get_json(f"/scripthash/{scripthash}/txs/chain/{last_txid}")
            confirmed_in_page = len(page)
            for tx_data in page:
                entries.append(HistoryEntry(tx_data["status"]["block_height"], tx_data["txid"]))

        logger.debug(f"History for scripthash {scripthash}: {len(entries)} txs")
        return entries

    async def _script_unspent(self, script: bytes) -> list[ListUnspentEntry]:
        scripthash = script_to_scripthash(script)
        data = await self._get_json(f"/scripthash/{scripthash}/utxo")

        unspent = []
        for utxo_data in data:
            status = utxo_data.get("status", {})
            height = status.get("block_height", 0) if status.get("confirmed", False) else 0
            unspent.append(ListUnspentEntry(height, utxo_data["txid"], utxo_data["vout"]))
        return unspent

    async def _transaction(self, txid: str) -> Transaction:
        raw_hex = await self._get_text(f"/tx/{txid}/hex")
        try:
            tx = Transaction.from_hex(raw_hex)
        except TransactionDecodeError as e:
            raise InconsistentDataError(f"Remote returned undecodable tx {txid}: {e}") from e
        if tx.txid != txid:
            raise InconsistentDataError(f"Remote returned tx {tx.txid} when asked for {txid}")
        return tx

    async def _header(self, height: int) -> BlockHeader:
        block_hash = await self._get_text(f"/block-height/{height}")
        header_hex = await self._get_text(f"/block/{block_hash}/header")
        try:
            header = BlockHeader.from_hex(header_hex)
        except TransactionDecodeError as e:
            raise InconsistentDataError(f"Remote returned bad header at {height}: {e}") from e
        if header.block_hash != block_hash:
            raise InconsistentDataError(
                f"Header hash {header.block_hash} does not match block {block_hash}"
            )
        return header

    async def batch_script_get_history(
        self, scripts: Sequence[bytes]
    ) -> list[list[HistoryEntry]]:
        return await self._gather(self._script_history, scripts)

    async def batch_script_list_unspent(
        self, scripts: Sequence[bytes]
    ) -> list[list[ListUnspentEntry]]:
        return await self._gather(self._script_unspent, scripts)

    async def batch_transaction_get(self, txids: Sequence[str]) -> list[Transaction]:
        return await self._gather(self._transaction, txids)

    async def batch_block_header(self, heights: Sequence[int]) -> list[BlockHeader]:
        return await self._gather(self._header, heights)

    async def get_tip_height(self) -> int:
        text = await self._get_text("/blocks/tip/height")
        try:
            return int(text)
        except ValueError as e:
            raise BackendError(f"Invalid tip height: {text!r}") from e

    async def close(self) -> None:
        await self.client.aclose()
