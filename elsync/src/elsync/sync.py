"""
Electrum-like wallet synchronization.

One sync pass runs these steps strictly in order, each write step being a
single atomic batch:

1. scan both script chains up to the stop gap (history of every script)
2. raise the derivation index high-water-marks
3. snapshot stored summaries and raw transactions
4. download missing transactions (+ one parent hop) and store them
5. resolve block timestamps of the heights still needed
6. write summaries and new UTXOs
7. delete summaries of transactions no longer in the history
8. delete UTXOs consumed by known transactions

Raw transactions are committed in step 4 before step 6 reads previous output
values from the store. A failure stops the pass; batches committed before it
stay, and the next pass derives the rest again.

Callers must not run two passes against the same database at once.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from loguru import logger

from elsync.backends.base import ChainBackend
from elsync.database.base import Database
from elsync.downloader import download_needed_raw_txs
from elsync.errors import InconsistentDataError, SyncError, SyncPhase
from elsync.headers import download_needed_headers
from elsync.models import UTXO, ScriptType, TransactionDetails
from elsync.scanner import DEFAULT_STOP_GAP, GapLimitScanner, ScanResult, ScriptDeriver
from elsync.tx import OutPoint, Transaction
from elsync.utils import chunks


@dataclass
class SyncReport:
    """Summary of what a sync pass changed"""

    history_txs: int = 0
    downloaded_txs: int = 0
    details_written: int = 0
    details_deleted: int = 0
    utxos_added: int = 0
    utxos_deleted: int = 0
    last_index: dict[ScriptType, int] = field(default_factory=dict)
    elapsed: float = 0.0


@contextmanager
def sync_phase(phase: SyncPhase) -> Iterator[None]:
    """Tag any error raised inside the block with the phase it came from."""
    try:
        yield
    except SyncError:
        raise
    except Exception as e:
        logger.error(f"Sync failed during {phase.value}: {type(e).__name__}: {e}")
        raise SyncError(phase, e) from e


class ElectrumLikeSync:
    """
    Sync engine reconciling a wallet database with a batched chain backend.
    """

    def __init__(
        self,
        backend: ChainBackend,
        database: Database,
        stop_gap: int = DEFAULT_STOP_GAP,
        deriver: ScriptDeriver | None = None,
        verify_unspent: bool = False,
    ):
        self.backend = backend
        self.database = database
        self.stop_gap = stop_gap
        self.chunk_size = stop_gap
        self.deriver = deriver
        self.verify_unspent = verify_unspent

    async def sync(self) -> SyncReport:
        start = time.monotonic()
        logger.info(f"Starting sync (stop gap {self.stop_gap})")
        report = SyncReport()

        with sync_phase(SyncPhase.SCAN):
            scanner = GapLimitScanner(self.backend, self.database, self.stop_gap, self.deriver)
            scan = await scanner.scan()
            self._cache_derived_scripts(scan)
            report.last_index = self._update_last_indexes(scan.max_index)
        report.history_txs = len(scan.history_txids)

        with sync_phase(SyncPhase.DOWNLOAD):
            details_in_db = {details.txid: details for details in self.database.iter_txs()}
            raw_txs_in_db = {tx.txid: tx for tx in self.database.iter_raw_txs()}

            new_txs = await download_needed_raw_txs(
                self.backend, scan.history_txids, raw_txs_in_db, self.chunk_size
            )
            self._store_raw_txs(new_txs)
        report.downloaded_txs = len(new_txs)

        up_to_date = {
            txid
            for txid, details in details_in_db.items()
            if txid in scan.history_txids and details.height == scan.txid_height.get(txid)
        }

        with sync_phase(SyncPhase.RESOLVE_TIMESTAMPS):
            timestamps = await download_needed_headers(
                self.backend, scan.txid_height, up_to_date, self.chunk_size
            )

        with sync_phase(SyncPhase.RECONCILE):
            spent = self._spent_outpoints(scan.history_txids)
            report.details_written, report.utxos_added = self._write_details(
                scan, up_to_date, timestamps, spent
            )
            report.details_deleted, restored = self._delete_stale_details(
                details_in_db, scan.history_txids, spent
            )
            report.utxos_added += restored
            report.utxos_deleted = self._delete_spent_utxos(new_txs, spent)

        if self.verify_unspent:
            report.utxos_deleted += await self.verify_utxos()

        report.elapsed = time.monotonic() - start
        logger.info(
            f"Finished sync in {report.elapsed * 1000:.0f}ms: "
            f"{report.history_txs} txs in history, {report.downloaded_txs} downloaded, "
            f"{report.details_written} summaries written, {report.details_deleted} removed, "
            f"+{report.utxos_added}/-{report.utxos_deleted} UTXOs"
        )
        return report

    def sync_blocking(self) -> SyncReport:
        """Run a sync pass to completion from a thread with no running event loop."""
        return asyncio.run(self.sync())

    # -- steps 1-2 -------------------------------------------------------------

    def _cache_derived_scripts(self, scan: ScanResult) -> None:
        if not scan.derived:
            return
        batch = self.database.begin_batch()
        for script, script_type, index in scan.derived:
            batch.set_script_pubkey(script, script_type, index)
        self.database.commit_batch(batch)
        logger.debug(f"Cached {len(scan.derived)} derived scripts")

    def _update_last_indexes(self, max_index: dict[ScriptType, int]) -> dict[ScriptType, int]:
        """Raise each chain's index to one past its highest used script. Never lowers it."""
        batch = self.database.begin_batch()
        result: dict[ScriptType, int] = {}

        for script_type in ScriptType:
            current = self.database.get_last_index(script_type) or 0
            result[script_type] = current
            if script_type not in max_index:
                continue

            first_new = max_index[script_type] + 1
            if first_new > current:
                logger.info(f"Setting {script_type.value} index to {first_new}")
                batch.set_last_index(script_type, first_new)
                result[script_type] = first_new

        self.database.commit_batch(batch)
        return result

    # -- step 4 ----------------------------------------------------------------

    def _store_raw_txs(self, txs: list[Transaction]) -> None:
        if not txs:
            return
        batch = self.database.begin_batch()
        for tx in txs:
            batch.set_raw_tx(tx)
        self.database.commit_batch(batch)
        logger.debug(f"Stored {len(txs)} raw txs")

    # -- steps 6-8 -------------------------------------------------------------

    def _get_history_tx(self, txid: str) -> Transaction:
        tx = self.database.get_raw_tx(txid)
        if tx is None:
            raise InconsistentDataError(f"History tx {txid} missing from the database")
        return tx

    def _spent_outpoints(self, history_txids: set[str]) -> set[OutPoint]:
        """Every outpoint consumed by an input of a history transaction."""
        spent: set[OutPoint] = set()
        for txid in history_txids:
            for txin in self._get_history_tx(txid).inputs:
                if not txin.previous_output.is_null():
                    spent.add(txin.previous_output)
        return spent

    def _compute_details(
        self,
        tx: Transaction,
        height: int | None,
        timestamp: int,
        spent: set[OutPoint],
    ) -> tuple[TransactionDetails, list[UTXO]]:
        txid = tx.txid
        received = 0
        sent = 0
        inputs_sum = 0
        outputs_sum = 0

        for txin in tx.inputs:
            # coinbase
            if txin.previous_output.is_null():
                continue

            previous_output = self.database.get_previous_output(txin.previous_output)
            if previous_output is None:
                raise InconsistentDataError(
                    f"Previous output {txin.previous_output} of tx {txid} not found"
                )

            inputs_sum += previous_output.value
            if self.database.is_mine(previous_output.script_pubkey):
                sent += previous_output.value

        utxos: list[UTXO] = []
        for vout, txout in enumerate(tx.outputs):
            outputs_sum += txout.value

            path = self.database.get_path_from_script_pubkey(txout.script_pubkey)
            if path is None:
                continue

            received += txout.value
            outpoint = OutPoint(txid, vout)
            if outpoint in spent:
                logger.debug(f"{outpoint} is mine but already spent")
                continue
            utxos.append(UTXO(outpoint=outpoint, txout=txout, is_internal=path[0].is_internal))

        details = TransactionDetails(
            txid=txid,
            transaction=tx,
            received=received,
            sent=sent,
            height=height,
            timestamp=timestamp if height is not None else 0,
            # a coinbase has no inputs to count, clamp instead of going negative
            fees=max(0, inputs_sum - outputs_sum),
        )
        return details, utxos

    def _write_details(
        self,
        scan: ScanResult,
        up_to_date: set[str],
        timestamps: dict[str, int],
        spent: set[OutPoint],
    ) -> tuple[int, int]:
        batch = self.database.begin_batch()
        written = 0
        utxos_added = 0

        for txid in sorted(scan.history_txids - up_to_date):
            tx = self._get_history_tx(txid)
            details, utxos = self._compute_details(
                tx, scan.txid_height.get(txid), timestamps.get(txid, 0), spent
            )
            batch.set_tx(details)
            written += 1
            for utxo in utxos:
                if self.database.get_utxo(utxo.outpoint) is None:
                    utxos_added += 1
                batch.set_utxo(utxo)
            logger.debug(
                f"Saving tx {txid}: received={details.received} sent={details.sent} "
                f"fees={details.fees} height={details.height}"
            )

        self.database.commit_batch(batch)
        return written, utxos_added

    def _delete_stale_details(
        self,
        details_in_db: dict[str, TransactionDetails],
        history_txids: set[str],
        spent: set[OutPoint],
    ) -> tuple[int, int]:
        """
        Drop summaries of txs gone from the history (reorg, mempool eviction).

        UTXOs they created go with them, and wallet outputs they had consumed
        become spendable again unless another history tx spends them.
        """
        stale = sorted(txid for txid in details_in_db if txid not in history_txids)
        if not stale:
            return 0, 0

        utxos_by_txid: dict[str, list[OutPoint]] = {}
        for utxo in self.database.iter_utxos():
            utxos_by_txid.setdefault(utxo.outpoint.txid, []).append(utxo.outpoint)

        batch = self.database.begin_batch()
        restored = 0
        for txid in stale:
            logger.info(f"Tx {txid} is no longer in the history, removing")
            batch.del_tx(txid)
            for outpoint in utxos_by_txid.get(txid, []):
                batch.del_utxo(outpoint)

            tx = self.database.get_raw_tx(txid)
            if tx is None:
                continue
            for txin in tx.inputs:
                outpoint = txin.previous_output
                if outpoint.txid not in history_txids or outpoint in spent:
                    continue
                previous_output = self.database.get_previous_output(outpoint)
                if previous_output is None:
                    continue
                path = self.database.get_path_from_script_pubkey(previous_output.script_pubkey)
                if path is None:
                    continue
                batch.set_utxo(UTXO(outpoint, previous_output, path[0].is_internal))
                restored += 1

        self.database.commit_batch(batch)
        return len(stale), restored

    def _delete_spent_utxos(self, new_txs: list[Transaction], spent: set[OutPoint]) -> int:
        outpoints = set(spent)
        for tx in new_txs:
            for txin in tx.inputs:
                if not txin.previous_output.is_null():
                    outpoints.add(txin.previous_output)

        batch = self.database.begin_batch()
        for outpoint in sorted(outpoints):
            if self.database.get_utxo(outpoint) is not None:
                logger.debug(f"{outpoint} has been spent, removing UTXO")
                batch.del_utxo(outpoint)

        self.database.commit_batch(batch)
        return len(batch)

    # -- optional liveness recheck ---------------------------------------------

    async def verify_utxos(self) -> int:
        """
        Ask the backend which stored UTXOs are still unspent and delete the rest.

        Returns the number of UTXOs removed.
        """
        with sync_phase(SyncPhase.RECONCILE):
            batch = self.database.begin_batch()
            for chunk in chunks(self.database.iter_utxos(), self.chunk_size):
                scripts = [utxo.txout.script_pubkey for utxo in chunk]
                results = await self.backend.batch_script_list_unspent(scripts)
                if len(results) != len(chunk):
                    raise InconsistentDataError(
                        f"Backend returned {len(results)} unspent lists for {len(chunk)} scripts"
                    )

                for utxo, unspent in zip(chunk, results):
                    if utxo.outpoint not in {entry.outpoint for entry in unspent}:
                        logger.info(f"{utxo.outpoint} not anymore unspent, removing")
                        batch.del_utxo(utxo.outpoint)

            self.database.commit_batch(batch)
            return len(batch)
