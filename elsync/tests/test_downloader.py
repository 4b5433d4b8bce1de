"""
Tests for the transaction-graph downloader.
"""

from __future__ import annotations

import pytest
from _elsync_test_helpers import FakeChainBackend, make_coinbase, make_script, make_tx

from elsync.downloader import download_in_chunks, download_needed_raw_txs, previous_txids
from elsync.errors import BackendError, InconsistentDataError
from elsync.tx import OutPoint

WALLET = make_script("wallet")


class TestPreviousTxids:
    def test_coinbase_inputs_excluded(self):
        coinbase = make_coinbase([(WALLET, 1_000)], height=10)
        assert previous_txids([coinbase]) == set()

    def test_collects_all_inputs(self):
        tx = make_tx([OutPoint("aa" * 32, 0), OutPoint("bb" * 32, 3)], [(WALLET, 1)])
        assert previous_txids([tx]) == {"aa" * 32, "bb" * 32}


class TestTransactionGet:
    @pytest.mark.asyncio
    async def test_single_transaction(self, backend):
        tx = backend.fund(WALLET, 1_000)

        assert await backend.transaction_get(tx.txid) == tx
        assert backend.calls_to("batch_transaction_get") == [[tx.txid]]

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, backend):
        with pytest.raises(BackendError):
            await backend.transaction_get("ee" * 32)


class TestDownloadInChunks:
    @pytest.mark.asyncio
    async def test_chunking(self, backend):
        txs = [backend.fund(make_script(f"s{i}"), 1_000) for i in range(7)]

        downloaded = await download_in_chunks(backend, [tx.txid for tx in txs], 3)

        assert {tx.txid for tx in downloaded} == {tx.txid for tx in txs}
        assert [len(args) for args in backend.calls_to("batch_transaction_get")] == [3, 3, 1]

    @pytest.mark.asyncio
    async def test_wrong_tx_returned(self, backend):
        tx = backend.fund(WALLET, 1_000)
        other = backend.fund(WALLET, 2_000)

        class Backend(FakeChainBackend):
            async def batch_transaction_get(self, txids):
                return [other for _ in txids]

        with pytest.raises(InconsistentDataError):
            await download_in_chunks(Backend(), [tx.txid], 5)


class TestDownloadNeededRawTxs:
    @pytest.mark.asyncio
    async def test_downloads_history_and_parents(self, backend):
        tx = backend.fund(WALLET, 5_000)
        parent_txid = tx.inputs[0].previous_output.txid

        downloaded = await download_needed_raw_txs(backend, {tx.txid}, {}, 5)

        assert {t.txid for t in downloaded} == {tx.txid, parent_txid}
        # the parent's own inputs are never fetched
        requested = {txid for args in backend.calls_to("batch_transaction_get") for txid in args}
        assert requested == {tx.txid, parent_txid}

    @pytest.mark.asyncio
    async def test_nothing_to_download(self, backend):
        tx = backend.fund(WALLET, 5_000)
        parent = backend.txs[tx.inputs[0].previous_output.txid]

        downloaded = await download_needed_raw_txs(
            backend, {tx.txid}, {tx.txid: tx, parent.txid: parent}, 5
        )

        assert downloaded == []
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_missing_parent_of_stored_history_tx(self, backend):
        """A stored history tx whose parent is missing gets it downloaded."""
        tx = backend.fund(WALLET, 5_000)

        downloaded = await download_needed_raw_txs(backend, {tx.txid}, {tx.txid: tx}, 5)

        assert [t.txid for t in downloaded] == [tx.inputs[0].previous_output.txid]

    @pytest.mark.asyncio
    async def test_parent_in_history_not_fetched_twice(self, backend):
        funding = backend.fund(WALLET, 5_000)
        spending = backend.spend([OutPoint(funding.txid, 0)], [(make_script("dest"), 4_000)])

        downloaded = await download_needed_raw_txs(
            backend, {funding.txid, spending.txid}, {}, 5
        )

        txids = [t.txid for t in downloaded]
        assert len(txids) == len(set(txids)) == 3

    @pytest.mark.asyncio
    async def test_coinbase_history_tx(self, backend):
        coinbase = backend.add(make_coinbase([(WALLET, 625_000_000)], height=200), height=200)

        downloaded = await download_needed_raw_txs(backend, {coinbase.txid}, {}, 5)

        assert [t.txid for t in downloaded] == [coinbase.txid]
        assert len(backend.calls_to("batch_transaction_get")) == 1
