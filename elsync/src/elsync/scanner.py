"""
Gap-limit address scanner.

Walks the external and internal script chains in chunks of `stop_gap`
scripts and asks the backend for the history of each chunk with a single
batch call. A chain is abandoned after the first chunk in which no script has
any history: `stop_gap` consecutive unused scripts mean later ones are
assumed unused too.
"""

from __future__ import annotations

import random
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from elsync.backends.base import ChainBackend
from elsync.database.base import Database
from elsync.errors import InconsistentDataError
from elsync.models import ScriptType
from elsync.utils import chunks

DEFAULT_STOP_GAP = 20


class ScriptDeriver(Protocol):
    """Derives the scriptPubKey at `index` of a chain (descriptor/key subsystem)."""

    def derive_script_pubkey(self, script_type: ScriptType, index: int) -> bytes: ...


@dataclass
class ScanResult:
    """History observed during one scan, owned by the sync pass."""

    history_txids: set[str] = field(default_factory=set)
    txid_height: dict[str, int | None] = field(default_factory=dict)
    # highest chain-relative index whose script has history
    max_index: dict[ScriptType, int] = field(default_factory=dict)
    requests: dict[ScriptType, int] = field(default_factory=dict)
    derived: list[tuple[bytes, ScriptType, int]] = field(default_factory=list)


class GapLimitScanner:
    def __init__(
        self,
        backend: ChainBackend,
        database: Database,
        stop_gap: int = DEFAULT_STOP_GAP,
        deriver: ScriptDeriver | None = None,
    ):
        if stop_gap < 1:
            raise ValueError(f"stop_gap must be at least 1, got {stop_gap}")
        self.backend = backend
        self.database = database
        self.stop_gap = stop_gap
        self.deriver = deriver

    def _stored_scripts(self, script_type: ScriptType) -> dict[int, bytes]:
        stored = {}
        for script in self.database.iter_script_pubkeys(script_type):
            path = self.database.get_path_from_script_pubkey(script)
            if path is not None:
                stored[path[1]] = script
        return stored

    def _chain_scripts(
        self, script_type: ScriptType, result: ScanResult
    ) -> Iterator[tuple[int, bytes]]:
        """
        (index, script) pairs of a chain in derivation order.

        Without a deriver only the stored scripts are walked, at the indexes
        the store holds for them. With one, every index from 0 is walked and
        indexes missing from the store are derived and recorded in
        `result.derived` so the caller can cache them.
        """
        stored = self._stored_scripts(script_type)
        if self.deriver is None:
            yield from sorted(stored.items())
            return

        index = 0
        while True:
            script = stored.get(index)
            if script is None:
                script = self.deriver.derive_script_pubkey(script_type, index)
                result.derived.append((script, script_type, index))
            yield index, script
            index += 1

    async def scan_chain(self, script_type: ScriptType, result: ScanResult) -> None:
        chunk_size = self.stop_gap
        requests = 0

        for chunk_index, chunk in enumerate(
            chunks(self._chain_scripts(script_type, result), chunk_size)
        ):
            histories = await self.backend.batch_script_get_history(
                [script for _, script in chunk]
            )
            requests += 1
            if len(histories) != len(chunk):
                raise InconsistentDataError(
                    f"Backend returned {len(histories)} histories for {len(chunk)} scripts"
                )

            found = 0
            for (index, _), history in zip(chunk, histories):
                if not history:
                    continue
                found += len(history)
                if index > result.max_index.get(script_type, -1):
                    result.max_index[script_type] = index

                for entry in history:
                    result.txid_height[entry.txid] = entry.confirmation_height
                    result.history_txids.add(entry.txid)

            logger.debug(f"#{chunk_index} of {script_type.value} chain: {found} history entries")
            if not found:
                # nothing in the last `stop_gap` scripts
                break

        result.requests[script_type] = requests

    async def scan(self) -> ScanResult:
        result = ScanResult()

        # query order must not reveal which chain is which
        chains = [ScriptType.EXTERNAL, ScriptType.INTERNAL]
        random.shuffle(chains)

        for script_type in chains:
            await self.scan_chain(script_type, result)

        logger.info(
            f"Scan found {len(result.history_txids)} txs "
            f"(max index external={result.max_index.get(ScriptType.EXTERNAL)}, "
            f"internal={result.max_index.get(ScriptType.INTERNAL)})"
        )
        return result
