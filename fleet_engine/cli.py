# fleet_engine/cli.py
"""Operator command line: fleet provision | deploy | route | renew | backup | snapshots | restore | validate."""

import json
import logging
import signal
import textwrap
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from fleet_engine.allocation.allocator import AllocationTable, allocate
from fleet_engine.container import FleetContainer, get_container
from fleet_engine.core.errors import FleetError
from fleet_engine.core.models import RunSummary
from fleet_engine.manifest.loader import load_manifest
from fleet_engine.manifest.schema import FleetManifest

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Converge a single host onto its fleet manifest.

        Services are fetched, built, migrated and supervised; the edge router
        and certificates follow the allocation table. Backups are encrypted
        snapshots restored in a fixed order.
        """
    ).strip(),
)


MANIFEST_OPTION = typer.Option(
    None,
    "--manifest",
    "-m",
    help="Manifest file (defaults to FLEET_MANIFEST_PATH).",
)
JSON_OPTION = typer.Option(False, "--json", help="Print the machine-readable report.")


# ============================================
# Runtime helpers
# ============================================

def _container(ctx: typer.Context) -> FleetContainer:
    if ctx.obj is None:
        ctx.obj = get_container()
    return ctx.obj


def _manifest(ctx: typer.Context) -> FleetManifest:
    path: Optional[Path] = ctx.meta.get("manifest_path")
    if path is None:
        path = _container(ctx).settings.manifest_path
    return load_manifest(path)


def _guard(fn: Callable[[], T]) -> T:
    """Translate engine errors into their exit codes."""
    try:
        return fn()
    except FleetError as e:
        err_console.print(f"[bold red]error:[/bold red] {e}")
        err_console.print_json(json.dumps(e.to_dict()))
        raise typer.Exit(code=e.exit_code) from e


def _print_allocation(allocation: AllocationTable) -> None:
    table = Table(title="Allocation")
    table.add_column("service")
    table.add_column("backend")
    table.add_column("frontend")
    table.add_column("database")
    for entry in allocation:
        table.add_row(
            entry.name,
            str(entry.backend_port),
            str(entry.frontend_port or "-"),
            entry.database_name or "-",
        )
    console.print(table)


def _report(summary: RunSummary, json_output: bool) -> None:
    if json_output:
        console.print_json(json.dumps(summary.to_dict()))
    else:
        table = Table(title=f"{summary.operation}")
        table.add_column("service")
        table.add_column("state")
        table.add_column("revision")
        table.add_column("restarted")
        table.add_column("error")
        for name, runtime in summary.services.items():
            table.add_row(
                name,
                runtime.state.value,
                (runtime.revision or "-")[:12],
                ", ".join(runtime.restarted_units) or "-",
                f"{runtime.failed_phase}: {runtime.error_message}" if runtime.failed_phase else "",
            )
        if summary.services:
            console.print(table)

        if summary.routing is not None:
            for route in summary.routing.routes:
                scheme = "https" if route.tls else "http"
                console.print(f"{scheme}://{route.hostname} -> 127.0.0.1:{route.upstream_port}")
            for hostname in summary.routing.unrouted:
                console.print(f"[yellow]unrouted[/yellow] {hostname}")
        for error in summary.certificate_errors:
            console.print(f"[yellow]certificate[/yellow] {error}")
        if summary.routing_error:
            err_console.print(f"[bold red]routing:[/bold red] {summary.routing_error}")
        if summary.cancelled:
            console.print("[yellow]run cancelled; remaining services were not started[/yellow]")

    if summary.exit_code != 0:
        raise typer.Exit(code=summary.exit_code)


def _converge(ctx: typer.Context, run: Callable) -> RunSummary:
    container = _container(ctx)
    manifest = _manifest(ctx)
    engine = container.engine(manifest)

    # First Ctrl+C stops new services from starting
    previous = signal.signal(signal.SIGINT, lambda signum, frame: engine.cancel())
    try:
        return run(engine, manifest)
    finally:
        signal.signal(signal.SIGINT, previous)


# ============================================
# Commands
# ============================================

@app.callback()
def _root(
    ctx: typer.Context,
    manifest: Optional[Path] = MANIFEST_OPTION,
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override FLEET_LOG_LEVEL."),
) -> None:
    container = _container(ctx)
    logging.basicConfig(
        level=(log_level or container.settings.log_level).upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if manifest is not None:
        ctx.meta["manifest_path"] = manifest


@app.command()
def validate(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Validate the manifest and show the allocation table. Changes nothing."""
    allocation = _guard(lambda: allocate(_manifest(ctx)))
    if json_output:
        console.print_json(json.dumps(allocation.to_dict()))
    else:
        _print_allocation(allocation)
        console.print("[green]manifest is valid[/green]")


@app.command()
def provision(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Converge every service, then routing and certificates."""
    summary = _guard(lambda: _converge(ctx, lambda engine, manifest: engine.provision(manifest)))
    _report(summary, json_output)


@app.command()
def deploy(
    ctx: typer.Context,
    services: Optional[List[str]] = typer.Argument(None, help="Services to deploy (default: all)."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Fetch, build and restart services without touching routing."""
    summary = _guard(lambda: _converge(ctx, lambda engine, manifest: engine.deploy(manifest, services)))
    _report(summary, json_output)


@app.command()
def route(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Reconcile certificates and edge-router configuration only."""
    def run():
        manifest = _manifest(ctx)
        return _container(ctx).engine(manifest).route(manifest)

    _report(_guard(run), json_output)


@app.command()
def renew(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Issue or renew certificates that are absent, expiring or expired."""
    def run():
        manifest = _manifest(ctx)
        return _container(ctx).engine(manifest).renew_certificates(manifest)

    _report(_guard(run), json_output)


@app.command()
def backup(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Create an encrypted snapshot and apply retention."""
    def run():
        manifest = _manifest(ctx)
        return _container(ctx).backup_coordinator(manifest).create_snapshot(manifest.backup)

    snapshot = _guard(run)
    if json_output:
        console.print_json(json.dumps(snapshot.to_dict()))
    else:
        console.print(f"[green]snapshot {snapshot.snapshot_id}[/green] ({len(snapshot.resources)} resource(s))")


@app.command()
def snapshots(
    ctx: typer.Context,
    verify: bool = typer.Option(False, "--verify", help="Check every ciphertext digest."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List committed snapshots, oldest first."""
    store = _container(ctx).snapshot_store
    rows = []
    for snapshot in store.list():
        problems = store.verify(snapshot.snapshot_id) if verify else None
        rows.append((snapshot, problems))

    if json_output:
        console.print_json(json.dumps([
            {**s.to_dict(), "problems": p} for s, p in rows
        ]))
        return

    table = Table(title="Snapshots")
    table.add_column("id")
    table.add_column("created")
    table.add_column("resources")
    table.add_column("key")
    if verify:
        table.add_column("verified")
    for snapshot, problems in rows:
        row = [
            snapshot.snapshot_id,
            snapshot.created_at.isoformat(),
            ", ".join(r.label for r in snapshot.resources),
            snapshot.encryption_key_id,
        ]
        if verify:
            row.append("ok" if not problems else "; ".join(problems))
        table.add_row(*row)
    console.print(table)


@app.command()
def restore(
    ctx: typer.Context,
    snapshot_id: str = typer.Argument(..., help="Snapshot to restore."),
    confirm: str = typer.Option(..., "--confirm", help="Re-type the snapshot id to confirm."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Restore a snapshot: databases, cache, router config, service config."""
    def run():
        manifest = _manifest(ctx)
        return _container(ctx).restore_coordinator(manifest).restore(snapshot_id, confirm)

    result = _guard(run)

    if json_output:
        console.print_json(json.dumps(result.to_dict()))
    else:
        for label in result.restored:
            console.print(f"[green]restored[/green] {label}")
        console.print(f"resumed {len(result.resumed_units)} unit(s)")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
