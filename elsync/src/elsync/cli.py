"""
elsync CLI - Import wallet scripts, sync them against Esplora and inspect the result.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import typer
from loguru import logger

from elsync.backends.base import ChainBackend
from elsync.backends.esplora import EsploraBackend
from elsync.config import Settings, get_settings
from elsync.database.file import FileDatabase
from elsync.errors import StoreError, SyncError
from elsync.models import ScriptType
from elsync.sync import ElectrumLikeSync, SyncReport

app = typer.Typer(
    name="elsync",
    help="Electrum-style wallet synchronization",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def format_sats(value: int) -> str:
    return f"{value:,} sats ({value / 100_000_000:.8f} BTC)"


def _open_database(settings: Settings, wallet_file: Path | None) -> FileDatabase:
    path = wallet_file or settings.wallet_path
    try:
        return FileDatabase(path)
    except StoreError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


def _make_backend(settings: Settings) -> EsploraBackend:
    return EsploraBackend(
        base_url=settings.esplora_url,
        network=settings.network,
        timeout=settings.request_timeout,
        max_concurrent_requests=settings.max_concurrent_requests,
    )


@app.command("import-scripts")
def import_scripts(
    scripts: list[str] = typer.Argument(..., help="scriptPubKeys as hex, in derivation order"),
    chain: ScriptType = typer.Option(ScriptType.EXTERNAL, "--chain", "-c", help="Script chain"),
    start_index: int = typer.Option(
        0, "--start-index", "-i", min=0, help="Index of the first script"
    ),
    wallet_file: Path | None = typer.Option(None, "--wallet", "-w", help="Wallet database file"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Store derived scripts for a chain so they are scanned on sync."""
    setup_logging(log_level)
    settings = get_settings()

    try:
        decoded = [bytes.fromhex(script) for script in scripts]
    except ValueError as e:
        logger.error(f"Invalid script hex: {e}")
        raise typer.Exit(1) from e

    database = _open_database(settings, wallet_file)
    batch = database.begin_batch()
    for offset, script in enumerate(decoded):
        batch.set_script_pubkey(script, chain, start_index + offset)

    try:
        database.commit_batch(batch)
    except StoreError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e

    typer.echo(
        f"Imported {len(decoded)} {chain.value} scripts "
        f"(indexes {start_index}..{start_index + len(decoded) - 1})"
    )


@app.command()
def sync(
    wallet_file: Path | None = typer.Option(None, "--wallet", "-w", help="Wallet database file"),
    network: str | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
    esplora_url: str | None = typer.Option(
        None, "--esplora-url", "-u", help="Esplora API base URL"
    ),
    stop_gap: int | None = typer.Option(None, "--stop-gap", "-g", min=1, help="Gap limit"),
    verify_unspent: bool = typer.Option(
        False, "--verify-unspent", help="Recheck stored UTXOs after syncing"
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Run one sync pass against an Esplora server."""
    overrides = {
        "network": network,
        "esplora_url": esplora_url,
        "stop_gap": stop_gap,
        "verify_unspent": verify_unspent or None,
        "log_level": log_level,
    }
    settings = Settings(**{key: value for key, value in overrides.items() if value is not None})
    setup_logging(settings.log_level)

    database = _open_database(settings, wallet_file)
    try:
        backend = _make_backend(settings)
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e

    try:
        report = asyncio.run(_run_sync(settings, backend, database))
    except SyncError as e:
        if e.retryable:
            logger.info("The error may be transient, running sync again can succeed")
        raise typer.Exit(1) from e

    typer.echo(f"Synced in {report.elapsed:.2f}s")
    typer.echo(f"Transactions: {report.history_txs} ({report.downloaded_txs} downloaded)")
    typer.echo(f"UTXOs: +{report.utxos_added} -{report.utxos_deleted}")
    for script_type, index in report.last_index.items():
        typer.echo(f"Next {script_type.value} index: {index}")
    typer.echo(f"Balance: {format_sats(database.get_balance())}")


async def _run_sync(
    settings: Settings, backend: ChainBackend, database: FileDatabase
) -> SyncReport:
    try:
        engine = ElectrumLikeSync(
            backend,
            database,
            stop_gap=settings.stop_gap,
            verify_unspent=settings.verify_unspent,
        )
        return await engine.sync()
    finally:
        await backend.close()


@app.command()
def balance(
    wallet_file: Path | None = typer.Option(None, "--wallet", "-w", help="Wallet database file"),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """Show the balance of the stored UTXOs."""
    setup_logging(log_level)
    database = _open_database(get_settings(), wallet_file)

    utxos = database.iter_utxos()
    external = sum(u.value for u in utxos if not u.is_internal)
    internal = sum(u.value for u in utxos if u.is_internal)

    typer.echo(f"External: {format_sats(external)}")
    typer.echo(f"Internal: {format_sats(internal)}")
    typer.echo(f"Total:    {format_sats(external + internal)}")


@app.command()
def utxos(
    wallet_file: Path | None = typer.Option(None, "--wallet", "-w", help="Wallet database file"),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """List the stored UTXOs."""
    setup_logging(log_level)
    database = _open_database(get_settings(), wallet_file)

    stored = sorted(database.iter_utxos(), key=lambda u: u.outpoint)
    if not stored:
        typer.echo("No UTXOs")
        return

    for utxo in stored:
        chain = "internal" if utxo.is_internal else "external"
        typer.echo(f"{utxo.outpoint}  {utxo.value:>16,}  {chain}")


@app.command()
def history(
    wallet_file: Path | None = typer.Option(None, "--wallet", "-w", help="Wallet database file"),
    log_level: str = typer.Option("WARNING", "--log-level", "-l"),
) -> None:
    """List the wallet transactions, newest first, unconfirmed on top."""
    setup_logging(log_level)
    database = _open_database(get_settings(), wallet_file)

    txs = database.iter_txs()
    if not txs:
        typer.echo("No transactions")
        return

    txs.sort(key=lambda d: (d.is_confirmed, -(d.height or 0), d.txid))
    for details in txs:
        if not details.is_confirmed:
            when = "unconfirmed"
        elif details.timestamp:
            when = datetime.fromtimestamp(details.timestamp, tz=timezone.utc).strftime(
                "%Y-%m-%d %H:%M"
            )
        else:
            when = f"height {details.height}"
        typer.echo(f"{details.txid}  {details.net:>+16,}  fee {details.fees:>8,}  {when}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
