"""
JSON file backed wallet database.

The whole wallet state is serialized into one document. Every committed
batch rewrites the document atomically (write to temp file, then rename), so
a crash leaves either the previous or the new state on disk.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ValidationError

from elsync.database.memory import MemoryDatabase, WalletState
from elsync.errors import StoreError
from elsync.models import UTXO, ScriptType, TransactionDetails
from elsync.tx import OutPoint, Transaction, TransactionDecodeError, TxOut

STORE_VERSION = 1


class ScriptRecord(BaseModel):
    script_pubkey: str
    script_type: ScriptType
    index: int


class TxRecord(BaseModel):
    txid: str
    received: int
    sent: int
    height: int | None = None
    timestamp: int = 0
    fees: int = 0


class UtxoRecord(BaseModel):
    txid: str
    vout: int
    value: int
    script_pubkey: str
    is_internal: bool


class StoreDocument(BaseModel):
    """On-disk representation of a WalletState."""

    version: int = STORE_VERSION
    scripts: list[ScriptRecord] = []
    last_index: dict[ScriptType, int] = {}
    raw_txs: dict[str, str] = {}
    txs: list[TxRecord] = []
    utxos: list[UtxoRecord] = []

    @classmethod
    def from_state(cls, state: WalletState) -> StoreDocument:
        return cls(
            scripts=[
                ScriptRecord(script_pubkey=script.hex(), script_type=script_type, index=index)
                for (script_type, index), script in sorted(
                    state.paths.items(), key=lambda item: (item[0][0].value, item[0][1])
                )
            ],
            last_index=dict(state.last_index),
            raw_txs={txid: tx.to_hex() for txid, tx in sorted(state.raw_txs.items())},
            txs=[
                TxRecord(
                    txid=d.txid,
                    received=d.received,
                    sent=d.sent,
                    height=d.height,
                    timestamp=d.timestamp,
                    fees=d.fees,
                )
                for _, d in sorted(state.txs.items())
            ],
            utxos=[
                UtxoRecord(
                    txid=u.outpoint.txid,
                    vout=u.outpoint.vout,
                    value=u.txout.value,
                    script_pubkey=u.txout.script_pubkey.hex(),
                    is_internal=u.is_internal,
                )
                for _, u in sorted(state.utxos.items())
            ],
        )

    def to_state(self) -> WalletState:
        state = WalletState()
        for record in self.scripts:
            script = bytes.fromhex(record.script_pubkey)
            state.scripts[script] = (record.script_type, record.index)
            state.paths[(record.script_type, record.index)] = script
        state.last_index = dict(self.last_index)
        for txid, tx_hex in self.raw_txs.items():
            state.raw_txs[txid] = Transaction.from_hex(tx_hex)
        for tx_record in self.txs:
            state.txs[tx_record.txid] = TransactionDetails(
                txid=tx_record.txid,
                transaction=None,
                received=tx_record.received,
                sent=tx_record.sent,
                height=tx_record.height,
                timestamp=tx_record.timestamp,
                fees=tx_record.fees,
            )
        for utxo_record in self.utxos:
            outpoint = OutPoint(utxo_record.txid, utxo_record.vout)
            state.utxos[outpoint] = UTXO(
                outpoint=outpoint,
                txout=TxOut(utxo_record.value, bytes.fromhex(utxo_record.script_pubkey)),
                is_internal=utxo_record.is_internal,
            )
        return state


class FileDatabase(MemoryDatabase):
    """
    Wallet database persisted to a single JSON file.

    Thread-safety: not thread-safe; at most one sync pass may use a
    FileDatabase (or two instances on the same path) at a time.
    """

    def __init__(self, path: Path):
        self.path = path
        super().__init__(self._load())

    def _load(self) -> WalletState:
        if not self.path.exists():
            logger.debug(f"No wallet database at {self.path}, starting empty")
            return WalletState()

        try:
            document = StoreDocument.model_validate_json(self.path.read_text(encoding="utf-8"))
            state = document.to_state()
        except OSError as e:
            raise StoreError(f"Failed to read wallet database {self.path}: {e}") from e
        except (ValidationError, TransactionDecodeError, ValueError) as e:
            raise StoreError(f"Corrupt wallet database {self.path}: {e}") from e

        if document.version != STORE_VERSION:
            raise StoreError(f"Unsupported wallet database version {document.version}")

        logger.debug(
            f"Loaded wallet database {self.path}: {len(state.paths)} scripts, "
            f"{len(state.txs)} txs, {len(state.utxos)} UTXOs"
        )
        return state

    def _persist(self, state: WalletState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = self.path.with_suffix(".tmp")
        try:
            document = StoreDocument.from_state(state)
            tmp_path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as e:
            logger.error(f"Failed to save wallet database: {e}")
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise StoreError(f"Failed to write wallet database {self.path}: {e}") from e
