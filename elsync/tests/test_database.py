"""
Tests for the in-memory and JSON file wallet databases.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from _elsync_test_helpers import make_script, make_tx

from elsync.database.base import Batch
from elsync.database.file import FileDatabase, StoreDocument
from elsync.database.memory import MemoryDatabase
from elsync.errors import StoreError
from elsync.models import UTXO, ScriptType, TransactionDetails
from elsync.tx import OutPoint, TxOut

WALLET = make_script("wallet")
OTHER = make_script("other")


def sample_tx():
    return make_tx([OutPoint("aa" * 32, 1)], [(WALLET, 40_000), (OTHER, 9_000)])


def populate(database):
    tx = sample_tx()
    batch = database.begin_batch()
    batch.set_script_pubkey(WALLET, ScriptType.EXTERNAL, 0)
    batch.set_script_pubkey(OTHER, ScriptType.INTERNAL, 0)
    batch.set_last_index(ScriptType.EXTERNAL, 1)
    batch.set_raw_tx(tx)
    batch.set_tx(
        TransactionDetails(
            txid=tx.txid,
            transaction=None,
            received=49_000,
            sent=0,
            height=800_000,
            timestamp=1_690_000_000,
            fees=1_000,
        )
    )
    batch.set_utxo(UTXO(OutPoint(tx.txid, 0), tx.outputs[0], is_internal=False))
    batch.set_utxo(UTXO(OutPoint(tx.txid, 1), tx.outputs[1], is_internal=True))
    database.commit_batch(batch)
    return tx


class TestBatch:
    def test_records_operations_in_order(self):
        batch = Batch()
        assert not batch

        batch.set_last_index(ScriptType.INTERNAL, 3)
        batch.del_tx("bb" * 32)

        assert len(batch) == 2
        assert [name for name, _ in batch.operations] == ["set_last_index", "del_tx"]


class TestMemoryDatabase:
    def test_batch_not_visible_before_commit(self):
        database = MemoryDatabase()
        batch = database.begin_batch()
        batch.set_script_pubkey(WALLET, ScriptType.EXTERNAL, 0)

        assert database.iter_script_pubkeys() == []
        database.commit_batch(batch)
        assert database.iter_script_pubkeys() == [WALLET]

    def test_script_lookups(self):
        database = MemoryDatabase()
        populate(database)

        assert database.is_mine(WALLET)
        assert not database.is_mine(make_script("stranger"))
        assert database.get_path_from_script_pubkey(OTHER) == (ScriptType.INTERNAL, 0)
        assert database.get_script_pubkey_from_path(ScriptType.EXTERNAL, 0) == WALLET
        assert database.iter_script_pubkeys() == [WALLET, OTHER]
        assert database.iter_script_pubkeys(ScriptType.INTERNAL) == [OTHER]

    def test_scripts_ordered_by_index(self):
        database = MemoryDatabase()
        scripts = [make_script(f"s{i}") for i in range(12)]
        for index in reversed(range(12)):
            database.set_script_pubkey(scripts[index], ScriptType.EXTERNAL, index)

        assert database.iter_script_pubkeys(ScriptType.EXTERNAL) == scripts

    def test_tx_with_and_without_raw(self):
        database = MemoryDatabase()
        tx = populate(database)

        assert database.get_tx(tx.txid).transaction is None
        assert database.get_tx(tx.txid, include_raw=True).transaction == tx
        assert database.iter_txs(include_raw=True)[0].transaction == tx
        assert database.get_tx("cc" * 32) is None

    def test_set_tx_with_transaction_stores_raw(self):
        database = MemoryDatabase()
        tx = sample_tx()
        database.set_tx(TransactionDetails(txid=tx.txid, transaction=tx, received=1, sent=0))

        assert database.get_raw_tx(tx.txid) == tx
        assert database.get_tx(tx.txid).transaction is None

    def test_previous_output(self):
        database = MemoryDatabase()
        tx = populate(database)

        assert database.get_previous_output(OutPoint(tx.txid, 1)) == TxOut(9_000, OTHER)
        assert database.get_previous_output(OutPoint(tx.txid, 2)) is None
        assert database.get_previous_output(OutPoint("dd" * 32, 0)) is None

    def test_balance_and_deletes(self):
        database = MemoryDatabase()
        tx = populate(database)
        assert database.get_balance() == 49_000

        batch = database.begin_batch()
        batch.del_utxo(OutPoint(tx.txid, 1))
        batch.del_tx(tx.txid)
        batch.del_raw_tx(tx.txid)
        database.commit_batch(batch)

        assert database.get_balance() == 40_000
        assert database.get_tx(tx.txid) is None
        assert database.get_raw_tx(tx.txid) is None

    def test_deleting_missing_records_is_noop(self):
        database = MemoryDatabase()
        database.del_utxo(OutPoint("ee" * 32, 0))
        database.del_tx("ee" * 32)
        assert database.iter_utxos() == []

    def test_failed_batch_leaves_state_untouched(self):
        database = MemoryDatabase()
        populate(database)
        before = database.iter_utxos()

        batch = database.begin_batch()
        batch.del_utxo(before[0].outpoint)
        batch.operations.append(("no_such_operation", ()))

        with pytest.raises(StoreError):
            database.commit_batch(batch)

        assert database.iter_utxos() == before

    def test_reassigning_path_replaces_script(self):
        database = MemoryDatabase()
        database.set_script_pubkey(WALLET, ScriptType.EXTERNAL, 0)
        database.set_script_pubkey(OTHER, ScriptType.EXTERNAL, 0)

        assert not database.is_mine(WALLET)
        assert database.iter_script_pubkeys() == [OTHER]

    def test_moving_script_to_new_path(self):
        database = MemoryDatabase()
        database.set_script_pubkey(WALLET, ScriptType.EXTERNAL, 0)
        database.set_script_pubkey(WALLET, ScriptType.INTERNAL, 3)

        assert database.iter_script_pubkeys() == [WALLET]
        assert database.get_script_pubkey_from_path(ScriptType.EXTERNAL, 0) is None
        assert database.get_path_from_script_pubkey(WALLET) == (ScriptType.INTERNAL, 3)


class TestFileDatabase:
    def test_missing_file_starts_empty(self, tmp_path: Path):
        database = FileDatabase(tmp_path / "wallet.json")

        assert database.iter_script_pubkeys() == []
        assert not (tmp_path / "wallet.json").exists()

    def test_commit_persists_and_reloads(self, tmp_path: Path):
        path = tmp_path / "sub" / "wallet.json"
        tx = populate(FileDatabase(path))

        reloaded = FileDatabase(path)

        assert reloaded.get_last_index(ScriptType.EXTERNAL) == 1
        assert reloaded.get_path_from_script_pubkey(OTHER) == (ScriptType.INTERNAL, 0)
        assert reloaded.get_raw_tx(tx.txid) == tx
        details = reloaded.get_tx(tx.txid)
        assert (details.height, details.timestamp, details.fees) == (800_000, 1_690_000_000, 1_000)
        assert reloaded.get_balance() == 49_000
        assert reloaded.get_utxo(OutPoint(tx.txid, 1)).is_internal
        assert not path.with_suffix(".tmp").exists()

    def test_document_is_readable_json(self, tmp_path: Path):
        path = tmp_path / "wallet.json"
        tx = populate(FileDatabase(path))

        document = json.loads(path.read_text())

        assert document["version"] == 1
        assert document["raw_txs"][tx.txid] == tx.to_hex()
        assert document["last_index"] == {"external": 1}

    def test_unconfirmed_height_persisted_as_null(self, tmp_path: Path):
        path = tmp_path / "wallet.json"
        tx = sample_tx()
        FileDatabase(path).set_tx(TransactionDetails(tx.txid, tx, received=5, sent=0))

        assert FileDatabase(path).get_tx(tx.txid).height is None

    def test_corrupt_file(self, tmp_path: Path):
        path = tmp_path / "wallet.json"
        path.write_text("{not json")

        with pytest.raises(StoreError):
            FileDatabase(path)

    def test_unsupported_version(self, tmp_path: Path):
        path = tmp_path / "wallet.json"
        path.write_text(StoreDocument(version=99).model_dump_json())

        with pytest.raises(StoreError):
            FileDatabase(path)

    def test_write_failure_keeps_previous_state(self, tmp_path: Path, monkeypatch):
        path = tmp_path / "wallet.json"
        database = FileDatabase(path)
        database.set_script_pubkey(WALLET, ScriptType.EXTERNAL, 0)

        def fail(*args, **kwargs):
            raise OSError("read-only file system")

        monkeypatch.setattr(Path, "replace", fail)

        with pytest.raises(StoreError):
            database.set_script_pubkey(OTHER, ScriptType.EXTERNAL, 1)

        assert database.iter_script_pubkeys() == [WALLET]
        monkeypatch.undo()
        assert FileDatabase(path).iter_script_pubkeys() == [WALLET]
