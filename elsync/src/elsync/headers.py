"""
Height to block-timestamp resolution.
"""

from __future__ import annotations

from collections.abc import Mapping

from loguru import logger

from elsync.backends.base import ChainBackend
from elsync.errors import InconsistentDataError
from elsync.utils import chunks


async def download_needed_headers(
    backend: ChainBackend,
    txid_height: Mapping[str, int | None],
    txids_with_details: set[str],
    chunk_size: int,
) -> dict[str, int]:
    """
    Map txid -> block timestamp for confirmed txs that still need a summary.

    Only the distinct heights of those txs are fetched. Unconfirmed txs are
    left out (their timestamp stays 0).
    """
    needed = {
        txid: height
        for txid, height in txid_height.items()
        if height is not None and txid not in txids_with_details
    }
    heights = sorted(set(needed.values()))
    if not heights:
        return {}

    logger.info(f"Got {len(heights)} block headers to download")
    height_timestamp: dict[int, int] = {}
    for chunk in chunks(heights, chunk_size):
        headers = await backend.batch_block_header(chunk)
        if len(headers) != len(chunk):
            raise InconsistentDataError(
                f"Backend returned {len(headers)} headers for {len(chunk)} heights"
            )
        for height, header in zip(chunk, headers):
            height_timestamp[height] = header.timestamp

    return {txid: height_timestamp[height] for txid, height in needed.items()}
