"""
In-memory wallet database.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from loguru import logger

from elsync.database.base import Batch, Database
from elsync.errors import StoreError
from elsync.models import UTXO, ScriptType, TransactionDetails
from elsync.tx import OutPoint, Transaction


@dataclass
class WalletState:
    """Complete wallet state; replaced as a whole on every commit."""

    scripts: dict[bytes, tuple[ScriptType, int]] = field(default_factory=dict)
    paths: dict[tuple[ScriptType, int], bytes] = field(default_factory=dict)
    last_index: dict[ScriptType, int] = field(default_factory=dict)
    raw_txs: dict[str, Transaction] = field(default_factory=dict)
    txs: dict[str, TransactionDetails] = field(default_factory=dict)
    utxos: dict[OutPoint, UTXO] = field(default_factory=dict)

    def copy(self) -> WalletState:
        return WalletState(
            scripts=dict(self.scripts),
            paths=dict(self.paths),
            last_index=dict(self.last_index),
            raw_txs=dict(self.raw_txs),
            txs=dict(self.txs),
            utxos=dict(self.utxos),
        )

    def apply(self, name: str, args: tuple) -> None:
        getattr(self, f"_op_{name}")(*args)

    def _op_set_script_pubkey(self, script: bytes, script_type: ScriptType, index: int) -> None:
        previous = self.paths.get((script_type, index))
        if previous is not None and previous != script:
            del self.scripts[previous]
        old_path = self.scripts.get(script)
        if old_path is not None and old_path != (script_type, index):
            del self.paths[old_path]
        self.scripts[script] = (script_type, index)
        self.paths[(script_type, index)] = script

    def _op_set_raw_tx(self, tx: Transaction) -> None:
        self.raw_txs[tx.txid] = tx

    def _op_set_tx(self, details: TransactionDetails) -> None:
        if details.transaction is not None:
            self.raw_txs[details.txid] = details.transaction
        self.txs[details.txid] = replace(details, transaction=None)

    def _op_set_utxo(self, utxo: UTXO) -> None:
        self.utxos[utxo.outpoint] = utxo

    def _op_set_last_index(self, script_type: ScriptType, index: int) -> None:
        self.last_index[script_type] = index

    def _op_del_raw_tx(self, txid: str) -> None:
        self.raw_txs.pop(txid, None)

    def _op_del_tx(self, txid: str) -> None:
        self.txs.pop(txid, None)

    def _op_del_utxo(self, outpoint: OutPoint) -> None:
        self.utxos.pop(outpoint, None)


class MemoryDatabase(Database):
    """
    Wallet database kept in process memory.

    A commit builds the new state on a copy and swaps it in, so readers
    never observe a half-applied batch.
    """

    def __init__(self, state: WalletState | None = None):
        self._state = state or WalletState()

    # -- reads -----------------------------------------------------------------

    def iter_script_pubkeys(self, script_type: ScriptType | None = None) -> list[bytes]:
        paths = sorted(
            (path for path in self._state.paths if script_type is None or path[0] == script_type),
            key=lambda p: (p[0].is_internal, p[1]),
        )
        return [self._state.paths[path] for path in paths]

    def get_script_pubkey_from_path(self, script_type: ScriptType, index: int) -> bytes | None:
        return self._state.paths.get((script_type, index))

    def get_path_from_script_pubkey(self, script: bytes) -> tuple[ScriptType, int] | None:
        return self._state.scripts.get(script)

    def get_last_index(self, script_type: ScriptType) -> int | None:
        return self._state.last_index.get(script_type)

    def get_raw_tx(self, txid: str) -> Transaction | None:
        return self._state.raw_txs.get(txid)

    def iter_raw_txs(self) -> list[Transaction]:
        return list(self._state.raw_txs.values())

    def _with_raw(self, details: TransactionDetails, include_raw: bool) -> TransactionDetails:
        transaction = self._state.raw_txs.get(details.txid) if include_raw else None
        return replace(details, transaction=transaction)

    def get_tx(self, txid: str, include_raw: bool = False) -> TransactionDetails | None:
        details = self._state.txs.get(txid)
        if details is None:
            return None
        return self._with_raw(details, include_raw)

    def iter_txs(self, include_raw: bool = False) -> list[TransactionDetails]:
        return [self._with_raw(details, include_raw) for details in self._state.txs.values()]

    def get_utxo(self, outpoint: OutPoint) -> UTXO | None:
        return self._state.utxos.get(outpoint)

    def iter_utxos(self) -> list[UTXO]:
        return list(self._state.utxos.values())

    # -- writes ----------------------------------------------------------------

    def _persist(self, state: WalletState) -> None:
        """Hook for durable subclasses; called before the new state becomes visible."""

    def commit_batch(self, batch: Batch) -> None:
        if not batch:
            return

        new_state = self._state.copy()
        try:
            for name, args in batch.operations:
                new_state.apply(name, args)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Invalid batch operation: {e}") from e

        self._persist(new_state)
        self._state = new_state
        logger.debug(f"Committed batch of {len(batch)} operation(s)")
