"""
Batch database interface.

The engine never mutates the store directly: every write goes through a
Batch which is committed all-or-nothing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from elsync.models import UTXO, ScriptType, TransactionDetails
from elsync.tx import OutPoint, Transaction, TxOut


class BatchOperations(ABC):
    """Write operations shared by batches and databases."""

    @abstractmethod
    def set_script_pubkey(self, script: bytes, script_type: ScriptType, index: int) -> None:
        pass

    @abstractmethod
    def set_raw_tx(self, tx: Transaction) -> None:
        pass

    @abstractmethod
    def set_tx(self, details: TransactionDetails) -> None:
        pass

    @abstractmethod
    def set_utxo(self, utxo: UTXO) -> None:
        pass

    @abstractmethod
    def set_last_index(self, script_type: ScriptType, index: int) -> None:
        pass

    @abstractmethod
    def del_raw_tx(self, txid: str) -> None:
        pass

    @abstractmethod
    def del_tx(self, txid: str) -> None:
        pass

    @abstractmethod
    def del_utxo(self, outpoint: OutPoint) -> None:
        pass


class Batch(BatchOperations):
    """
    Ordered list of pending write operations.

    Nothing is visible to readers until the batch is passed to
    Database.commit_batch().
    """

    def __init__(self) -> None:
        self.operations: list[tuple[str, tuple]] = []

    def _push(self, name: str, *args: object) -> None:
        self.operations.append((name, args))

    def set_script_pubkey(self, script: bytes, script_type: ScriptType, index: int) -> None:
        self._push("set_script_pubkey", script, script_type, index)

    def set_raw_tx(self, tx: Transaction) -> None:
        self._push("set_raw_tx", tx)

    def set_tx(self, details: TransactionDetails) -> None:
        self._push("set_tx", details)

    def set_utxo(self, utxo: UTXO) -> None:
        self._push("set_utxo", utxo)

    def set_last_index(self, script_type: ScriptType, index: int) -> None:
        self._push("set_last_index", script_type, index)

    def del_raw_tx(self, txid: str) -> None:
        self._push("del_raw_tx", txid)

    def del_tx(self, txid: str) -> None:
        self._push("del_tx", txid)

    def del_utxo(self, outpoint: OutPoint) -> None:
        self._push("del_utxo", outpoint)

    def __len__(self) -> int:
        return len(self.operations)

    def __bool__(self) -> bool:
        return bool(self.operations)


class Database(BatchOperations):
    """
    Abstract wallet database.

    Single write operations called on the database itself are committed
    immediately as one-operation batches.
    """

    # -- scripts ---------------------------------------------------------------

    @abstractmethod
    def iter_script_pubkeys(self, script_type: ScriptType | None = None) -> list[bytes]:
        """Derived scripts, ordered by derivation index (external first when unfiltered)"""

    @abstractmethod
    def get_script_pubkey_from_path(self, script_type: ScriptType, index: int) -> bytes | None:
        pass

    @abstractmethod
    def get_path_from_script_pubkey(self, script: bytes) -> tuple[ScriptType, int] | None:
        pass

    def is_mine(self, script: bytes) -> bool:
        return self.get_path_from_script_pubkey(script) is not None

    @abstractmethod
    def get_last_index(self, script_type: ScriptType) -> int | None:
        pass

    # -- transactions ----------------------------------------------------------

    @abstractmethod
    def get_raw_tx(self, txid: str) -> Transaction | None:
        pass

    @abstractmethod
    def iter_raw_txs(self) -> list[Transaction]:
        pass

    @abstractmethod
    def get_tx(self, txid: str, include_raw: bool = False) -> TransactionDetails | None:
        pass

    @abstractmethod
    def iter_txs(self, include_raw: bool = False) -> list[TransactionDetails]:
        pass

    def get_previous_output(self, outpoint: OutPoint) -> TxOut | None:
        """Resolve the output spent by `outpoint` from stored raw transactions."""
        tx = self.get_raw_tx(outpoint.txid)
        if tx is None or outpoint.vout >= len(tx.outputs):
            return None
        return tx.outputs[outpoint.vout]

    # -- utxos -----------------------------------------------------------------

    @abstractmethod
    def get_utxo(self, outpoint: OutPoint) -> UTXO | None:
        pass

    @abstractmethod
    def iter_utxos(self) -> list[UTXO]:
        pass

    def get_balance(self) -> int:
        return sum(utxo.value for utxo in self.iter_utxos())

    # -- batches ---------------------------------------------------------------

    def begin_batch(self) -> Batch:
        return Batch()

    @abstractmethod
    def commit_batch(self, batch: Batch) -> None:
        """Apply every operation of `batch` atomically. Raises StoreError on failure."""

    def _commit_single(self, name: str, *args: object) -> None:
        batch = self.begin_batch()
        getattr(batch, name)(*args)
        self.commit_batch(batch)

    def set_script_pubkey(self, script: bytes, script_type: ScriptType, index: int) -> None:
        self._commit_single("set_script_pubkey", script, script_type, index)

    def set_raw_tx(self, tx: Transaction) -> None:
        self._commit_single("set_raw_tx", tx)

    def set_tx(self, details: TransactionDetails) -> None:
        self._commit_single("set_tx", details)

    def set_utxo(self, utxo: UTXO) -> None:
        self._commit_single("set_utxo", utxo)

    def set_last_index(self, script_type: ScriptType, index: int) -> None:
        self._commit_single("set_last_index", script_type, index)

    def del_raw_tx(self, txid: str) -> None:
        self._commit_single("del_raw_tx", txid)

    def del_tx(self, txid: str) -> None:
        self._commit_single("del_tx", txid)

    def del_utxo(self, outpoint: OutPoint) -> None:
        self._commit_single("del_utxo", outpoint)
