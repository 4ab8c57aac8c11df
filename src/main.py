#!/usr/bin/env python3
"""
CLI for the MSSQL operator.

Provides a terraform-like interface: plan and apply a manifest against a SQL
Server instance, refresh and inspect tracked state, import existing objects.
Connection settings come from MSSQL_* environment variables.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List

import click
import yaml
from tabulate import tabulate

import codec
from config import ControllerConfig, LogConfig, ServerConfig
from controller import ApplyReport, ChangeAction, Controller, PlannedChange
from descriptors import ResourceKind, describe as describe_kind
from diagnostics import Diagnostics, RemoteError
from manifest import ManifestError, load_manifest
from reconcilers.registry import register_builtin_reconcilers
from state import StateError, StateStore

logger = logging.getLogger(__name__)

ACTION_SYMBOLS = {
    ChangeAction.CREATE: "+",
    ChangeAction.UPDATE: "~",
    ChangeAction.REPLACE: "-/+",
    ChangeAction.DELETE: "-",
    ChangeAction.NOOP: " ",
}


async def _connect() -> Any:
    """Open the server handle described by the environment."""
    server_config = ServerConfig.from_env()

    from server import ServerHandle

    handle = ServerHandle(server_config.odbc_dsn(), timeout=server_config.timeout)
    await handle.connect()
    return handle


def _run(work: Callable[[Any], Awaitable[Any]]) -> Any:
    """Connect, run work(server) and close the connection."""

    async def runner():
        try:
            server = await _connect()
        except ValueError as e:
            raise click.ClickException(str(e))
        except RemoteError as e:
            raise click.ClickException(e.message)
        try:
            return await work(server)
        finally:
            await server.close()

    return asyncio.run(runner())


def _load_state(path: str) -> StateStore:
    try:
        return StateStore(path).load()
    except StateError as e:
        raise click.ClickException(str(e))


def _load_manifest(path: str):
    try:
        return load_manifest(path)
    except ManifestError as e:
        raise click.ClickException(str(e))


def _controller(server: Any, settings: ControllerConfig) -> Controller:
    return Controller(
        server,
        _load_state(settings.state_file),
        registry=register_builtin_reconcilers(),
        config=settings,
    )


def _echo_diagnostics(diagnostics: Diagnostics) -> None:
    for diagnostic in diagnostics:
        click.echo(str(diagnostic), err=True)


def _echo_changes(changes: List[PlannedChange]) -> None:
    rows = [
        [
            ACTION_SYMBOLS[change.action],
            change.address,
            change.action.value,
            ", ".join(change.attributes),
        ]
        for change in changes
    ]
    click.echo(tabulate(rows, headers=["", "Address", "Action", "Attributes"], tablefmt="grid"))


def _summary(changes: List[PlannedChange]) -> Dict[ChangeAction, int]:
    counts = {action: 0 for action in ChangeAction}
    for change in changes:
        counts[change.action] += 1
    return counts


def _render(data: Any, output: str) -> str:
    if output == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return json.dumps(data, indent=2)


@click.group()
@click.option(
    "--state-file",
    envvar="STATE_FILE",
    default=None,
    help="State file path (default: mssql-operator.state.json)",
)
@click.pass_context
def cli(ctx, state_file):
    """MSSQL Operator CLI - declarative management of SQL Server principals"""
    log_config = LogConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, log_config.level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings = ControllerConfig.from_env()
    if state_file:
        settings.state_file = state_file
    ctx.obj = settings


@cli.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def plan(settings, manifest):
    """Show the changes apply would make"""
    resources = _load_manifest(manifest)

    async def work(server):
        return await _controller(server, settings).plan(resources)

    changes = _run(work)
    _echo_changes(changes)

    counts = _summary(changes)
    click.echo(
        f"\nPlan: {counts[ChangeAction.CREATE]} to create, "
        f"{counts[ChangeAction.UPDATE]} to update, "
        f"{counts[ChangeAction.REPLACE]} to replace, "
        f"{counts[ChangeAction.DELETE]} to delete."
    )

    failed = False
    for change in changes:
        _echo_diagnostics(change.diagnostics)
        failed = failed or change.diagnostics.has_blocking_error()
    if failed:
        raise SystemExit(1)


def _finish(report: ApplyReport, verb: str) -> None:
    _echo_diagnostics(report.diagnostics)
    click.echo(
        f"\n{verb} complete: "
        f"{report.count(ChangeAction.CREATE)} created, "
        f"{report.count(ChangeAction.UPDATE)} updated, "
        f"{report.count(ChangeAction.REPLACE)} replaced, "
        f"{report.count(ChangeAction.DELETE)} deleted."
    )
    if not report.success:
        click.echo(f"{len(report.diagnostics.errors)} error(s)", err=True)
        raise SystemExit(1)


@cli.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def apply(settings, manifest):
    """Converge the server onto a manifest"""
    resources = _load_manifest(manifest)

    async def work(server):
        return await _controller(server, settings).apply(resources)

    report = _run(work)
    _echo_changes([c for c in report.changes if c.action is not ChangeAction.NOOP])
    _finish(report, "Apply")


@cli.command()
@click.confirmation_option(prompt="Are you sure you want to delete every tracked resource?")
@click.pass_obj
def destroy(settings):
    """Delete every tracked resource"""

    async def work(server):
        return await _controller(server, settings).destroy()

    report = _run(work)
    _finish(report, "Destroy")


@cli.command()
@click.pass_obj
def refresh(settings):
    """Read tracked resources back and drop the ones that are gone"""

    async def work(server):
        controller = _controller(server, settings)
        before = set(controller.state.addresses())
        diagnostics = await controller.refresh()
        return before - set(controller.state.addresses()), diagnostics

    removed, diagnostics = _run(work)
    for address in sorted(removed):
        click.echo(f"Removed from state: {address}")
    click.echo("Refresh complete")
    _echo_diagnostics(diagnostics)
    if diagnostics.has_blocking_error():
        raise SystemExit(1)


@cli.command(name="import")
@click.argument("address")
@click.argument("identifier")
@click.pass_obj
def import_(settings, address, identifier):
    """Track an existing object: ADDRESS is kind.name, IDENTIFIER the object id"""

    async def work(server):
        try:
            return await _controller(server, settings).import_resource(address, identifier)
        except ManifestError as e:
            raise click.ClickException(str(e))

    result = _run(work)
    _echo_diagnostics(result.diagnostics)
    if not result.success:
        raise SystemExit(1)
    click.echo(f"Imported {address} ({result.state['id']})")


@cli.command()
@click.argument("address", required=False)
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_obj
def show(settings, address, output):
    """Show tracked resources; sensitive values are masked"""
    state = _load_state(settings.state_file)
    entries = []
    for entry_address, entry in state.items():
        if address and entry_address != address:
            continue
        entries.append(
            {
                "address": entry_address,
                "kind": entry["kind"],
                "state": codec.encode(entry["kind"], entry["state"], redact=True),
            }
        )

    if address and not entries:
        raise click.ClickException(f"{address} is not tracked")

    if output != "table":
        click.echo(_render(entries, output))
        return

    if not entries:
        click.echo("No resources tracked")
        return
    rows = [
        [
            e["address"],
            e["kind"],
            e["state"]["id"],
            ", ".join(
                f"{k}={v}"
                for k, v in e["state"].items()
                if k not in ("id", "name") and v is not None
            ),
        ]
        for e in entries
    ]
    click.echo(tabulate(rows, headers=["Address", "Kind", "ID", "Attributes"], tablefmt="grid"))


@cli.command()
@click.argument("kind", type=click.Choice([k.value for k in ResourceKind]))
def describe(kind):
    """Describe the attributes of a resource kind"""
    descriptor = describe_kind(kind)
    info = register_builtin_reconcilers().get_reconciler_info(kind)
    click.echo(f"{descriptor.kind.value}: {descriptor.description}")
    click.echo(f"Reconciler: {info['reconciler'] if info else 'none'}")
    click.echo(f"Identifier: {'.'.join(descriptor.identity) or codec.SERVER_INFO_ID}")
    if len(descriptor.identity) > 1:
        click.echo(
            "  Parts are joined with '.'; a '.' or '\\' inside a part is escaped with '\\'."
        )
    click.echo()

    rows = []
    for attr in descriptor.attributes:
        if attr.computed:
            mode = "computed"
        elif attr.name in descriptor.updatable:
            mode = "in place"
        elif attr.name in descriptor.renameable:
            mode = "rename"
        elif attr.name in descriptor.completable:
            mode = "replace (in place when unset)"
        else:
            mode = "replace"
        rows.append(
            [
                attr.name,
                attr.type,
                "yes" if attr.required else "",
                "" if attr.default is None else attr.default,
                mode,
                "yes" if attr.sensitive else "",
                attr.description,
            ]
        )
    click.echo(
        tabulate(
            rows,
            headers=["Attribute", "Type", "Required", "Default", "Change", "Sensitive", "Description"],
            tablefmt="grid",
        )
    )


@cli.command(name="server-info")
def server_info():
    """Show the SQL Server version"""

    async def work(server):
        reconciler = register_builtin_reconcilers().get_reconciler(
            ResourceKind.SERVER_INFO, server
        )
        return await reconciler.read()

    result = _run(work)
    _echo_diagnostics(result.diagnostics)
    if not result.success:
        raise SystemExit(1)
    click.echo(result.state["version"])


if __name__ == "__main__":
    cli()
