"""
Transaction-graph downloader.

Fetches the wallet's history transactions that are not stored yet, plus one
extra hop: the direct parents of their inputs. Parents are needed to know
the value of every spent output (fees, "sent" amounts); their own ancestry
is never fetched.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from loguru import logger

from elsync.backends.base import ChainBackend
from elsync.errors import InconsistentDataError
from elsync.tx import Transaction
from elsync.utils import chunks


async def download_in_chunks(
    backend: ChainBackend, txids: Iterable[str], chunk_size: int
) -> list[Transaction]:
    """Fetch `txids` with one batch call per chunk."""
    downloaded: list[Transaction] = []
    for chunk in chunks(sorted(txids), chunk_size):
        txs = await backend.batch_transaction_get(chunk)
        if len(txs) != len(chunk):
            raise InconsistentDataError(
                f"Backend returned {len(txs)} transactions for {len(chunk)} txids"
            )
        for txid, tx in zip(chunk, txs):
            if tx.txid != txid:
                raise InconsistentDataError(f"Backend returned tx {tx.txid} for {txid}")
        downloaded.extend(txs)
        logger.debug(f"Downloaded {len(txs)} txs")
    return downloaded


def previous_txids(txs: Iterable[Transaction]) -> set[str]:
    """Txids referenced by the (non-coinbase) inputs of `txs`."""
    result: set[str] = set()
    for tx in txs:
        for txin in tx.inputs:
            if txin.previous_output.is_null():
                continue
            result.add(txin.previous_output.txid)
    return result


async def download_needed_raw_txs(
    backend: ChainBackend,
    history_txids: set[str],
    raw_txs_in_db: Mapping[str, Transaction],
    chunk_size: int,
) -> list[Transaction]:
    """
    Download history transactions missing locally and their direct parents.

    Parents are collected from the freshly downloaded transactions and from
    the history transactions that were already stored, so a stored history
    transaction whose parents are missing gets them on the next pass.

    Returns only transactions downloaded by this call; nothing is written.
    """
    txids_in_db = set(raw_txs_in_db)
    to_download = history_txids - txids_in_db

    downloaded: list[Transaction] = []
    if to_download:
        logger.info(f"Got {len(to_download)} txs to download")
        downloaded.extend(await download_in_chunks(backend, to_download, chunk_size))

    downloaded_txids = {tx.txid for tx in downloaded}
    stored_history = [raw_txs_in_db[txid] for txid in history_txids & txids_in_db]

    parents = previous_txids(downloaded) | previous_txids(stored_history)
    parents_to_download = parents - downloaded_txids - txids_in_db
    if parents_to_download:
        logger.info(f"Got {len(parents_to_download)} previous txs to download")
        downloaded.extend(await download_in_chunks(backend, parents_to_download, chunk_size))

    return downloaded
