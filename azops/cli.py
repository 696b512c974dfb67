"""
CLI entry point for azops.
"""

import logging
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from azops.config import CONFIG_FILENAME, Settings
from azops.exceptions import AzOpsError, MissingSettingError, format_error_for_cli
from azops.util.logging import setup_logging
from azops.util.progress import show_summary, track_progress

app = typer.Typer(
    name="azops",
    help="Operational tooling for Azure: connectivity, DNS, Key Vault, SQL, archive, routes",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {
    "ok": "green",
    "succeeded": "green",
    "applied": "green",
    "backed_up": "green",
    "unchanged": "dim",
    "skipped": "dim",
    "planned": "cyan",
    "pending": "yellow",
    "failed": "red",
}


def handle_errors(func):
    """Decorator to handle exceptions in CLI commands with nice formatting."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except AzOpsError as e:
            console.print(format_error_for_cli(e))
            raise typer.Exit(1)
        except ValueError as e:
            # Invalid option values rejected by the domain modules
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
        except Exception as e:
            logger.debug("Unhandled exception", exc_info=True)
            console.print(f"[red]Unexpected error:[/red] {str(e)}")
            console.print(
                "\n[yellow]This may be a bug. Re-run with --verbose for details.[/yellow]"
            )
            raise typer.Exit(1)

    return wrapper


connectivity_app = typer.Typer(help="TCP reachability and name resolution checks")
app.add_typer(connectivity_app, name="connectivity")

dns_app = typer.Typer(help="DNS zone reconciliation")
app.add_typer(dns_app, name="dns")

keyvault_app = typer.Typer(help="Key Vault backup and restore")
app.add_typer(keyvault_app, name="keyvault")

sql_app = typer.Typer(help="Bulk CSV loading into a database")
app.add_typer(sql_app, name="sql")

archive_app = typer.Typer(help="Archive directories to Blob Storage and restore them")
app.add_typer(archive_app, name="archive")

routes_app = typer.Typer(help="Route table management and CIDR tools")
app.add_typer(routes_app, name="routes")

billing_app = typer.Typer(help="Usage export analysis")
app.add_typer(billing_app, name="billing")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Config file (default: $AZOPS_CONFIG or ./azops.yaml)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Azure operations toolkit."""
    settings = Settings.discover(config)
    ctx.obj = settings

    level = "WARNING"
    if ctx.invoked_subcommand != "init":
        try:
            level = settings.section("logging")["level"]
        except AzOpsError as e:
            console.print(format_error_for_cli(e))
            raise typer.Exit(1)
    setup_logging(level, verbose=verbose)


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj if isinstance(ctx.obj, Settings) else Settings.discover()


def _styled(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _export(path: Path | None, items: list) -> None:
    if path is None:
        return
    from azops.util.export import export_rows

    written = export_rows(path, items)
    console.print(f"[green]✓ Exported {len(items)} row(s) to {written}[/green]")


def _subscription(ctx: typer.Context, subscription: str | None) -> str | None:
    return subscription or _settings(ctx).section("azure").get("subscription_id")


def _run_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


@app.command()
@handle_errors
def init(
    directory: Path = typer.Argument(Path("."), help="Directory to write azops.yaml into"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing azops.yaml"),
):
    """Write a default azops.yaml."""
    target = directory / CONFIG_FILENAME
    if target.exists() and not force:
        console.print(f"[yellow]⚠ {target} already exists (use --force to overwrite)[/yellow]")
        raise typer.Exit(1)

    written = Settings().initialize(directory)
    console.print(f"[green]✓ Wrote configuration to {written}[/green]")
    console.print("\n[dim]Next steps:[/dim]")
    console.print("  Set azure.subscription_id and archive.container_url")


# Connectivity


@connectivity_app.command("test")
@handle_errors
def connectivity_test(
    ctx: typer.Context,
    targets: list[str] | None = typer.Argument(None, help="host, host:port or [v6]:port"),
    file: Path | None = typer.Option(None, "--file", "-f", help="Target list (text or CSV)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port for targets without one"),
    timeout: float | None = typer.Option(None, "--timeout", help="Connect timeout in seconds"),
    expect_cidr: list[str] | None = typer.Option(
        None, "--expect-cidr", help="Resolved addresses must fall in one of these networks"
    ),
    export: Path | None = typer.Option(None, "--export", help="Write results to .csv/.json"),
):
    """Resolve and connect to every target; exit 1 when any check fails."""
    from azops.connectivity import load_targets, parse_target, probe
    from azops.util.cidr import parse_networks

    cfg = _settings(ctx).section("connectivity")
    default_port = port if port is not None else cfg["default_port"]
    probe_timeout = timeout if timeout is not None else cfg["timeout"]
    if not 1 <= default_port <= 65535:
        raise ValueError(f"Port out of range: {default_port}")
    if probe_timeout <= 0:
        raise ValueError("Timeout must be greater than 0")

    probe_targets = [parse_target(t, default_port) for t in targets or []]
    if file is not None:
        probe_targets.extend(load_targets(file, default_port))
    if not probe_targets:
        console.print("[red]Error: No targets given (pass TARGET... or --file).[/red]")
        raise typer.Exit(1)

    networks = parse_networks(expect_cidr) if expect_cidr else None

    results = []
    with track_progress("Probing", total=len(probe_targets)) as (progress, task):
        for target in probe_targets:
            results.append(probe(target, probe_timeout, networks))
            progress.update(task, advance=1)

    table = Table(title="Connectivity")
    table.add_column("Target", style="cyan")
    table.add_column("Label")
    table.add_column("Address")
    table.add_column("Latency", justify="right")
    table.add_column("Status")
    for r in results:
        latency = f"{r.latency_ms:.1f} ms" if r.latency_ms is not None else "-"
        status = _styled("ok") if r.ok else _styled("failed")
        if r.error:
            status += f" {r.error}"
        table.add_row(str(r.target), r.target.label, r.address or "-", latency, status)
    console.print(table)

    _export(export, results)

    failed = [r for r in results if not r.ok]
    console.print(f"\n{len(results) - len(failed)}/{len(results)} target(s) reachable")
    if failed:
        raise typer.Exit(1)


# DNS


@dns_app.command("reconcile")
@handle_errors
def dns_reconcile(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Desired records (YAML or CSV)"),
    zone: str = typer.Option(..., "--zone", "-z", help="DNS zone name"),
    resource_group: str = typer.Option(..., "--resource-group", "-g", help="Zone resource group"),
    kind: str = typer.Option("private", "--kind", help="Zone kind (private|public)"),
    subscription: str | None = typer.Option(None, "--subscription", "-s"),
    prune: bool = typer.Option(False, "--prune", help="Delete records not in the file"),
    apply: bool = typer.Option(False, "--apply", help="Make the changes (default: dry run)"),
    export: Path | None = typer.Option(None, "--export", help="Write the plan to .csv/.json"),
):
    """Compare desired records with a zone and optionally apply the difference."""
    from azops import clients
    from azops.dns_sync import apply_plan, get_zone, load_desired_records, plan_changes

    if kind not in ("private", "public"):
        raise ValueError(f"Invalid zone kind '{kind}'. Must be 'private' or 'public'")

    desired = load_desired_records(file)
    sub = _subscription(ctx, subscription)
    client = (
        clients.private_dns_client(sub) if kind == "private" else clients.public_dns_client(sub)
    )
    dns_zone = get_zone(kind, client, resource_group, zone)

    plan = plan_changes(desired, dns_zone.list_records(), prune=prune)
    if apply and plan.pending:
        apply_plan(plan, dns_zone)

    table = Table(title=f"DNS plan for {zone}")
    table.add_column("Action", style="cyan")
    table.add_column("Record")
    table.add_column("Change")
    table.add_column("Status")
    for change in plan.changes:
        status = _styled(change.status)
        if change.error:
            status += f" {change.error}"
        table.add_row(
            change.action, f"{change.name} {change.record_type}", change.describe(), status
        )
    console.print(table)

    counts = plan.counts()
    console.print(", ".join(f"{action}: {n}" for action, n in counts.items()))
    _export(export, plan.changes)

    if not apply and plan.pending:
        console.print("\n[dim]Dry run. Re-run with --apply to make these changes.[/dim]")
    if plan.failed:
        raise typer.Exit(1)


# Key Vault


@keyvault_app.command("backup")
@handle_errors
def keyvault_backup(
    vault: str = typer.Argument(..., help="Vault name or URL"),
    output: Path = typer.Option(Path("keyvault-backups"), "--output", "-o", help="Backup root"),
    kind: list[str] | None = typer.Option(
        None, "--kind", help="Item kinds to back up (secret|key|certificate); default all"
    ),
    include_disabled: bool = typer.Option(
        False, "--include-disabled", help="Also back up disabled items"
    ),
):
    """Back up every secret, key and certificate of a vault."""
    from azops.clients import keyvault_clients, vault_url_for
    from azops.keyvault_backup import KINDS, KeyVaultBackup

    kinds = tuple(kind) if kind else KINDS
    unknown = [k for k in kinds if k not in KINDS]
    if unknown:
        raise ValueError(f"Unknown kind(s): {', '.join(unknown)}. Must be one of: {KINDS}")

    vault_url = vault_url_for(vault)
    console.print(f"[bold blue]Backing up {vault_url}[/bold blue]")
    report = KeyVaultBackup(vault_url, keyvault_clients(vault_url)).run(
        output, kinds=kinds, include_disabled=include_disabled
    )

    table = Table(title="Key Vault backup")
    table.add_column("Kind", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Detail")
    for item in report.items:
        table.add_row(item.kind, item.name, _styled(item.status), item.error or item.path or "")
    console.print(table)

    show_summary("Backup", {"Output": report.output_dir, **report.counts()})
    if report.failed:
        raise typer.Exit(1)


@keyvault_app.command("restore")
@handle_errors
def keyvault_restore(
    vault: str = typer.Argument(..., help="Target vault name or URL"),
    files: list[Path] = typer.Argument(..., help="Backup files written by 'keyvault backup'"),
):
    """Restore backup files into a vault."""
    from azops.clients import keyvault_clients, vault_url_for
    from azops.keyvault_backup import restore_backup

    vault_url = vault_url_for(vault)
    clients = keyvault_clients(vault_url)

    failures = 0
    for path in files:
        try:
            name = restore_backup(path, clients)
            console.print(f"[green]✓ Restored {name}[/green] from {path.name}")
        except Exception as e:
            failures += 1
            logger.error(f"Restore of {path} failed: {e}")
            console.print(f"[red]✗ {path.name}: {e}[/red]")

    if failures:
        console.print(f"\n[red]{failures} of {len(files)} restore(s) failed[/red]")
        raise typer.Exit(1)


# SQL


@sql_app.command("load")
@handle_errors
def sql_load(
    ctx: typer.Context,
    files: list[Path] = typer.Argument(..., help="CSV files with a header row"),
    table: str = typer.Option(..., "--table", "-t", help="Target table"),
    url: str | None = typer.Option(
        None, "--url", envvar="AZOPS_DATABASE_URL", help="SQLAlchemy database URL"
    ),
    schema: str | None = typer.Option(None, "--schema", help="Database schema of the table"),
    batch_size: int | None = typer.Option(None, "--batch-size", help="Rows per transaction"),
    truncate: bool = typer.Option(False, "--truncate", help="Empty the table first"),
    create_table: bool = typer.Option(
        False, "--create-table", help="Create a text-column table when it does not exist"
    ),
    column_map: list[str] | None = typer.Option(
        None, "--map", help="Header to column mapping, csvcol=dbcol"
    ),
    delimiter: str = typer.Option(",", "--delimiter", help="Field delimiter"),
):
    """Bulk-load CSV files into a table."""
    from azops.csv_loader import CsvLoader, parse_column_map

    db = _settings(ctx).section("database")
    url = url or db.get("url")
    if not url:
        raise MissingSettingError("database.url", "--url", env_var="AZOPS_DATABASE_URL")

    mapping = parse_column_map(column_map or [])
    loader = CsvLoader.from_url(url)

    reports = []
    for index, path in enumerate(files):
        reports.append(
            loader.load(
                path,
                table,
                batch_size=batch_size or db["batch_size"],
                column_map=mapping,
                truncate=truncate and index == 0,
                create_table=create_table,
                delimiter=delimiter,
                schema=schema,
            )
        )

    result = Table(title=f"Load into {table}")
    result.add_column("File", style="cyan")
    result.add_column("Read", justify="right")
    result.add_column("Inserted", justify="right")
    result.add_column("Failed batches", justify="right")
    for report in reports:
        result.add_row(
            Path(report.source).name,
            str(report.rows_read),
            str(report.rows_inserted),
            str(len(report.failed_batches)),
        )
    console.print(result)

    for report in reports:
        for batch in report.failed_batches:
            console.print(
                f"[red]✗ {Path(report.source).name} batch {batch.index} "
                f"(line {batch.first_line}, {batch.rows} rows): {batch.error}[/red]"
            )
        if report.ignored_headers:
            console.print(
                f"[yellow]⚠ {Path(report.source).name}: ignored column(s) "
                f"{', '.join(report.ignored_headers)}[/yellow]"
            )

    if not all(r.ok for r in reports):
        raise typer.Exit(1)


# Archive


def _print_outcomes(title: str, report) -> None:
    table = Table(title=title)
    table.add_column("Source", style="cyan")
    table.add_column("Blob")
    table.add_column("Status")
    table.add_column("Detail")
    for outcome in report.outcomes:
        detail = outcome.error or ""
        if outcome.failed_step:
            detail = f"{outcome.failed_step}: {detail}"
        table.add_row(
            outcome.source, outcome.blob_name or "-", _styled(outcome.status.value), detail
        )
    console.print(table)


def _container(ctx: typer.Context, container_url: str | None) -> tuple[str, dict]:
    cfg = _settings(ctx).section("archive")
    url = container_url or cfg.get("container_url")
    if not url:
        raise MissingSettingError("archive.container_url", "--container-url")
    return url, cfg


def _tools(cfg: dict):
    from azops.archive.tools import AzCopy, SevenZip

    return (
        SevenZip(cfg["seven_zip_path"], cfg["tool_timeout"]),
        AzCopy(cfg["azcopy_path"], cfg["tool_timeout"]),
    )


@archive_app.command("create")
@handle_errors
def archive_create(
    ctx: typer.Context,
    sources: list[Path] = typer.Argument(..., help="Directories or files to archive"),
    container_url: str | None = typer.Option(None, "--container-url", help="Target container"),
    prefix: str | None = typer.Option(None, "--prefix", help="Blob name prefix"),
    tier: str | None = typer.Option(None, "--tier", help="Access tier (Hot|Cool|Cold|Archive)"),
    level: int | None = typer.Option(None, "--level", help="7-Zip compression level 0-9"),
    staging_dir: Path | None = typer.Option(None, "--staging-dir", help="Local archive dir"),
    remove_source: bool = typer.Option(
        False, "--remove-source", help="Delete each source after a confirmed upload"
    ),
    keep_on_failure: bool = typer.Option(
        False, "--keep-on-failure", help="Keep the local archive when a step fails"
    ),
    manifest: Path | None = typer.Option(None, "--manifest", help="Run manifest path (JSON)"),
    export: Path | None = typer.Option(None, "--export", help="Write outcomes to .csv/.json"),
):
    """Compress, verify, upload and clean up each source."""
    from azops.archive.compress import ArchiveWorkflow
    from azops.clients import container_client

    url, cfg = _container(ctx, container_url)
    seven_zip, azcopy = _tools(cfg)

    workflow = ArchiveWorkflow(
        url,
        container_client(url),
        seven_zip,
        azcopy,
        staging_dir=staging_dir or cfg.get("staging_dir"),
        blob_prefix=prefix if prefix is not None else cfg["blob_prefix"],
        tier=tier or cfg["tier"],
        compression_level=level if level is not None else cfg["compression_level"],
        remove_source=remove_source,
        keep_on_failure=keep_on_failure,
    )

    with track_progress("Archiving", total=len(sources)) as (progress, task):
        report = workflow.run(sources, on_outcome=lambda _: progress.update(task, advance=1))

    _print_outcomes("Archive", report)
    manifest_path = report.write_manifest(
        manifest or workflow.staging_dir / "manifests" / f"archive-{_run_stamp()}.json"
    )
    console.print(f"[dim]Manifest: {manifest_path}[/dim]")
    _export(export, report.outcomes)

    if report.failed:
        raise typer.Exit(1)


@archive_app.command("restore")
@handle_errors
def archive_restore(
    ctx: typer.Context,
    blobs: list[str] | None = typer.Argument(None, help="Blob names to restore"),
    prefix: str | None = typer.Option(None, "--prefix", help="Restore every blob under prefix"),
    destination: Path = typer.Option(Path("."), "--destination", "-d", help="Restore into"),
    container_url: str | None = typer.Option(None, "--container-url", help="Source container"),
    staging_dir: Path | None = typer.Option(None, "--staging-dir", help="Download dir"),
    target_tier: str | None = typer.Option(
        None, "--target-tier", help="Rehydration tier (Hot|Cool|Cold)"
    ),
    priority: str | None = typer.Option(
        None, "--priority", help="Rehydration priority (Standard|High)"
    ),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds"),
    timeout: float | None = typer.Option(None, "--timeout", help="Max rehydration wait"),
    no_wait: bool = typer.Option(
        False, "--no-wait", help="Start rehydration and report offline blobs as pending"
    ),
    no_extract: bool = typer.Option(False, "--no-extract", help="Keep the downloaded archive"),
    retier: bool = typer.Option(False, "--retier", help="Move blobs back to Archive afterwards"),
    manifest: Path | None = typer.Option(None, "--manifest", help="Run manifest path (JSON)"),
    export: Path | None = typer.Option(None, "--export", help="Write outcomes to .csv/.json"),
):
    """Rehydrate, download, verify and extract archived blobs."""
    from azops.archive.restore import RestoreWorkflow
    from azops.clients import container_client

    url, cfg = _container(ctx, container_url)
    restore_cfg = _settings(ctx).section("restore")
    seven_zip, azcopy = _tools(cfg)

    workflow = RestoreWorkflow(
        url,
        container_client(url),
        seven_zip,
        azcopy,
        destination,
        staging_dir=staging_dir or cfg.get("staging_dir"),
        target_tier=target_tier or restore_cfg["target_tier"],
        rehydrate_priority=priority or restore_cfg["rehydrate_priority"],
        poll_interval=poll_interval if poll_interval is not None else restore_cfg["poll_interval"],
        timeout=timeout if timeout is not None else restore_cfg["timeout"],
        wait=not no_wait,
        extract=not no_extract,
        retier=retier,
    )

    names = workflow.select_blobs(blobs or [], prefix)
    if not names:
        console.print("[red]Error: No blobs to restore (pass BLOB... or --prefix).[/red]")
        raise typer.Exit(1)

    with track_progress("Restoring", total=len(names)) as (progress, task):
        report = workflow.run(names, on_outcome=lambda _: progress.update(task, advance=1))

    _print_outcomes("Restore", report)
    manifest_path = report.write_manifest(
        manifest or workflow.staging_dir / "manifests" / f"restore-{_run_stamp()}.json"
    )
    console.print(f"[dim]Manifest: {manifest_path}[/dim]")
    _export(export, report.outcomes)

    if report.pending:
        console.print(
            f"\n[yellow]{len(report.pending)} blob(s) still rehydrating. "
            "Re-run later to finish them.[/yellow]"
        )
    if report.failed:
        raise typer.Exit(1)


# Routes


def _route_manager(ctx: typer.Context, subscription, resource_group: str, route_table: str):
    from azops.clients import network_client
    from azops.routes import RouteTableManager

    client = network_client(_subscription(ctx, subscription))
    return RouteTableManager(client, resource_group, route_table)


def _print_routes(title: str, routes) -> None:
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Prefix")
    table.add_column("Next hop")
    for route in routes:
        hop = route.next_hop_type
        if route.next_hop_ip:
            hop += f" {route.next_hop_ip}"
        table.add_row(route.name, route.address_prefix, hop)
    console.print(table)


@routes_app.command("list")
@handle_errors
def routes_list(
    ctx: typer.Context,
    resource_group: str = typer.Option(..., "--resource-group", "-g"),
    route_table: str = typer.Option(..., "--table", "-t", help="Route table name"),
    subscription: str | None = typer.Option(None, "--subscription", "-s"),
    export: Path | None = typer.Option(None, "--export", help="Write routes to .csv/.json"),
):
    """List the routes of a route table."""
    routes = _route_manager(ctx, subscription, resource_group, route_table).list_routes()
    _print_routes(route_table, routes)
    _export(export, routes)


@routes_app.command("add")
@handle_errors
def routes_add(
    ctx: typer.Context,
    prefix: str = typer.Argument(..., help="Destination CIDR or service tag"),
    next_hop_type: str = typer.Option(..., "--next-hop-type", help="e.g. VirtualAppliance"),
    next_hop_ip: str | None = typer.Option(None, "--next-hop-ip", help="Appliance address"),
    name: str | None = typer.Option(None, "--name", help="Route name (derived from prefix)"),
    resource_group: str = typer.Option(..., "--resource-group", "-g"),
    route_table: str = typer.Option(..., "--table", "-t", help="Route table name"),
    subscription: str | None = typer.Option(None, "--subscription", "-s"),
):
    """Create or update one route."""
    from azops.routes import make_route

    route = make_route(prefix, next_hop_type, next_hop_ip, name)
    _route_manager(ctx, subscription, resource_group, route_table).add_route(route)
    console.print(f"[green]✓ Route {route.name} ({route.address_prefix}) written[/green]")


@routes_app.command("remove")
@handle_errors
def routes_remove(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Route name"),
    resource_group: str = typer.Option(..., "--resource-group", "-g"),
    route_table: str = typer.Option(..., "--table", "-t", help="Route table name"),
    subscription: str | None = typer.Option(None, "--subscription", "-s"),
):
    """Delete one route."""
    _route_manager(ctx, subscription, resource_group, route_table).remove_route(name)
    console.print(f"[green]✓ Route {name} removed[/green]")


@routes_app.command("sync")
@handle_errors
def routes_sync(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Desired routes CSV"),
    resource_group: str = typer.Option(..., "--resource-group", "-g"),
    route_table: str = typer.Option(..., "--table", "-t", help="Route table name"),
    subscription: str | None = typer.Option(None, "--subscription", "-s"),
    prune: bool = typer.Option(False, "--prune", help="Delete routes not in the file"),
    apply: bool = typer.Option(False, "--apply", help="Make the changes (default: dry run)"),
    export: Path | None = typer.Option(None, "--export", help="Write the plan to .csv/.json"),
):
    """Bring a route table in line with a CSV file."""
    from azops.routes import parse_route_csv

    desired = parse_route_csv(file)
    manager = _route_manager(ctx, subscription, resource_group, route_table)
    plan = manager.plan(desired, prune=prune)
    if apply and plan.pending:
        manager.apply(plan)

    table = Table(title=f"Route plan for {route_table}")
    table.add_column("Action", style="cyan")
    table.add_column("Name")
    table.add_column("Prefix")
    table.add_column("Status")
    for change in plan.changes:
        row = change.to_dict()
        status = _styled(change.status)
        if change.error:
            status += f" {change.error}"
        table.add_row(change.action, change.name, row["address_prefix"], status)
    console.print(table)
    _export(export, plan.changes)

    if not apply and plan.pending:
        console.print("\n[dim]Dry run. Re-run with --apply to make these changes.[/dim]")
    if plan.failed:
        raise typer.Exit(1)


@routes_app.command("validate")
@handle_errors
def routes_validate(file: Path = typer.Argument(..., help="Routes CSV")):
    """Check a routes CSV offline and report overlapping prefixes."""
    from azops.routes import overlapping_routes, parse_route_csv, validate_routes

    routes = parse_route_csv(file)
    errors = validate_routes(routes)
    for error in errors:
        console.print(f"[red]✗ {error}[/red]")

    for broad, narrow in overlapping_routes(routes):
        console.print(
            f"[dim]{narrow.name} ({narrow.address_prefix}) is more specific than "
            f"{broad.name} ({broad.address_prefix})[/dim]"
        )

    if errors:
        raise typer.Exit(1)
    console.print(f"[green]✓ {len(routes)} route(s) valid[/green]")


@routes_app.command("lookup")
@handle_errors
def routes_lookup(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Destination IP address"),
    file: Path | None = typer.Option(None, "--file", "-f", help="Routes CSV instead of Azure"),
    resource_group: str | None = typer.Option(None, "--resource-group", "-g"),
    route_table: str | None = typer.Option(None, "--table", "-t", help="Route table name"),
    subscription: str | None = typer.Option(None, "--subscription", "-s"),
):
    """Show which route carries traffic to an address."""
    from azops.routes import lookup, parse_route_csv

    if file is not None:
        routes = parse_route_csv(file)
    elif resource_group and route_table:
        routes = _route_manager(ctx, subscription, resource_group, route_table).list_routes()
    else:
        console.print("[red]Error: Pass --file, or --resource-group and --table.[/red]")
        raise typer.Exit(1)

    route = lookup(address, routes)
    if route is None:
        console.print(f"{address}: no user route matches (system routes apply)")
        return
    hop = route.next_hop_type + (f" {route.next_hop_ip}" if route.next_hop_ip else "")
    console.print(f"{address} -> [cyan]{route.name}[/cyan] {route.address_prefix} via {hop}")


@routes_app.command("range")
@handle_errors
def routes_range(
    first: str = typer.Argument(..., help="First address of the range"),
    last: str = typer.Argument(..., help="Last address of the range"),
):
    """Summarize an address range into CIDR blocks."""
    from azops.util.cidr import range_to_cidrs

    for cidr in range_to_cidrs(first, last):
        console.print(cidr)


# Billing


@billing_app.command("recommend")
@handle_errors
def billing_recommend(
    ctx: typer.Context,
    files: list[Path] = typer.Argument(..., help="Usage export CSV files"),
    lookback_days: int | None = typer.Option(None, "--lookback-days", help="Days to analyze"),
    coverage: float | None = typer.Option(
        None, "--coverage", help="Percentile of daily usage to reserve (0 = minimum)"
    ),
    min_hours: float | None = typer.Option(
        None, "--min-hours-per-day", help="Ignore sizes with less average daily usage"
    ),
    export: Path | None = typer.Option(None, "--export", help="Write results to .csv/.json"),
):
    """Recommend VM reservations from pay-as-you-go usage."""
    from azops.billing import load_usage, recommend_reservations

    cfg = _settings(ctx).section("billing")
    records = []
    for path in files:
        records.extend(load_usage(path))

    recommendations = recommend_reservations(
        records,
        lookback_days=lookback_days if lookback_days is not None else cfg["lookback_days"],
        coverage=coverage if coverage is not None else cfg["coverage"],
        min_hours_per_day=min_hours if min_hours is not None else cfg["min_hours_per_day"],
        discounts=cfg["discounts"],
    )

    if not recommendations:
        console.print("[yellow]No steady pay-as-you-go VM usage found to reserve.[/yellow]")
        return

    table = Table(title="Reservation recommendations")
    table.add_column("Size", style="cyan")
    table.add_column("Region")
    table.add_column("Qty", justify="right")
    table.add_column("Utilization", justify="right")
    table.add_column("1y savings/mo", justify="right")
    table.add_column("3y savings/mo", justify="right")
    for rec in recommendations:
        table.add_row(
            rec.size,
            rec.region,
            str(rec.quantity),
            f"{rec.utilization:.0%}",
            f"{rec.monthly_savings_1y:,.2f}",
            f"{rec.monthly_savings_3y:,.2f}",
        )
    console.print(table)

    show_summary(
        "Totals",
        {
            "Usage rows": len(records),
            "Reservations": sum(r.quantity for r in recommendations),
            "1y savings/mo": f"{sum(r.monthly_savings_1y for r in recommendations):,.2f}",
            "3y savings/mo": f"{sum(r.monthly_savings_3y for r in recommendations):,.2f}",
        },
    )
    _export(export, recommendations)


if __name__ == "__main__":
    app()
