"""Typer CLI entrypoints for `mdevctl` and `lsmdev`."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from uuid import UUID

import typer

from mdevctl.core.environment import Environment
from mdevctl.core.errors import MdevctlError
from mdevctl.core.service import MdevService

app = typer.Typer(help="A mediated device management utility for Linux")
lsmdev_app = typer.Typer(help="List mediated devices")

_FORCE_HELP = "Override a decline by a callout script"


def _configure_logging() -> None:
    level = os.environ.get("MDEVCTL_LOG", "warning").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_service() -> MdevService:
    env = Environment.from_env()
    env.self_check()
    return MdevService(env)


@app.callback()
def main() -> None:
    _configure_logging()


@app.command("define")
def define(
    uuid: UUID | None = typer.Option(None, "--uuid", "-u", help="Assign UUID to the device"),
    auto: bool = typer.Option(False, "--auto", "-a", help="Automatically start device on parent availability"),
    parent: str | None = typer.Option(None, "--parent", "-p", help="Specify the parent of the device"),
    mdev_type: str | None = typer.Option(None, "--type", "-t", help="Specify the mdev type of the device"),
    jsonfile: Path | None = typer.Option(None, "--jsonfile", help="Specify device details in JSON format"),
    force: bool = typer.Option(False, "--force", "-f", help=_FORCE_HELP),
) -> None:
    """Define a persistent mediated device.

    If the device specified by the UUID currently exists, 'parent' and 'type'
    may be omitted to use the existing values. Running devices are unaffected.
    """
    try:
        if uuid is None and parent is None:
            raise MdevctlError("Either --uuid or --parent is required")
        if jsonfile is not None and auto:
            raise MdevctlError("--auto cannot be combined with --jsonfile")
        service = _build_service()
        device = service.define(uuid, parent, mdev_type, auto=auto, jsonfile=jsonfile, force=force)
        if uuid is None:
            typer.echo(str(device.uuid))
    except MdevctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("undefine")
def undefine(
    uuid: UUID = typer.Option(..., "--uuid", "-u", help="UUID of the device to be undefined"),
    parent: str | None = typer.Option(None, "--parent", "-p", help="Parent of the device to be undefined"),
    force: bool = typer.Option(False, "--force", "-f", help=_FORCE_HELP),
) -> None:
    """Undefine, or remove a config for, a mediated device.

    Without a parent, every definition of the UUID is removed.
    """
    try:
        _build_service().undefine(uuid, parent, force=force)
    except MdevctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("modify")
def modify(
    uuid: UUID = typer.Option(..., "--uuid", "-u", help="UUID of the mdev to modify"),
    parent: str | None = typer.Option(None, "--parent", "-p", help="Parent of the mdev to modify"),
    mdev_type: str | None = typer.Option(None, "--type", "-t", help="Modify the mdev type for this device"),
    addattr: str | None = typer.Option(None, "--addattr", metavar="ATTR_NAME", help="Add a new attribute"),
    delattr: bool = typer.Option(False, "--delattr", help="Delete an attribute"),
    index: int | None = typer.Option(None, "--index", "-i", min=0, help="Index of the attribute to modify"),
    value: str | None = typer.Option(None, "--value", metavar="ATTR_VALUE", help="Value for --addattr"),
    auto: bool = typer.Option(False, "--auto", "-a", help="Device will be started automatically"),
    manual: bool = typer.Option(False, "--manual", "-m", help="Device must be started manually"),
    jsonfile: Path | None = typer.Option(None, "--jsonfile", help="Specify device details in JSON format"),
    live: bool = typer.Option(False, "--live", help="Only update the running device, from --jsonfile"),
    force: bool = typer.Option(False, "--force", "-f", help=_FORCE_HELP),
) -> None:
    """Modify the definition of a mediated device.

    Attribute operations apply at the end of the list unless an index is
    given. When the device is running and its callout supports live updates,
    the change is also applied to the running device.
    """
    try:
        if addattr is not None and delattr:
            raise MdevctlError("--addattr and --delattr are mutually exclusive")
        if jsonfile is not None and (mdev_type or addattr or delattr or index is not None or value):
            raise MdevctlError("--jsonfile cannot be combined with type or attribute options")
        if jsonfile is not None and not live and (auto or manual):
            raise MdevctlError("--jsonfile cannot be combined with --auto or --manual")
        applied = _build_service().modify(
            uuid,
            parent,
            mdev_type,
            addattr=addattr,
            delattr=delattr,
            index=index,
            value=value,
            auto=auto,
            manual=manual,
            jsonfile=jsonfile,
            live=live,
            force=force,
        )
        if applied:
            typer.echo(f"Applied changes to running device {uuid}")
    except MdevctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("start")
def start(
    uuid: UUID | None = typer.Option(None, "--uuid", "-u", help="UUID of the device to start"),
    parent: str | None = typer.Option(None, "--parent", "-p", help="Parent of the device to start"),
    mdev_type: str | None = typer.Option(None, "--type", "-t", help="Mdev type of the device to start"),
    jsonfile: Path | None = typer.Option(None, "--jsonfile", help="Details of the device to be started, in JSON format"),
    force: bool = typer.Option(False, "--force", "-f", help=_FORCE_HELP),
) -> None:
    """Start a mediated device.

    A defined UUID is enough to start it. With 'parent' and 'type' the device
    is fully specified; a UUID is generated and printed if none was given.
    """
    try:
        if uuid is None and parent is None:
            raise MdevctlError("Either --uuid or --parent is required")
        device = _build_service().start(uuid, parent, mdev_type, jsonfile=jsonfile, force=force)
        if uuid is None:
            typer.echo(str(device.uuid))
    except MdevctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("stop")
def stop(
    uuid: UUID = typer.Option(..., "--uuid", "-u", help="UUID of the device to stop"),
    force: bool = typer.Option(False, "--force", "-f", help=_FORCE_HELP),
) -> None:
    """Stop a mediated device."""
    try:
        _build_service().stop(uuid, force=force)
    except MdevctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _list(defined: bool, dumpjson: bool, verbose: bool, uuid: UUID | None, parent: str | None) -> None:
    try:
        output = _build_service().list_devices(
            defined=defined,
            dumpjson=dumpjson,
            verbose=verbose,
            uuid=uuid,
            parent=parent,
        )
        if output:
            typer.echo(output.rstrip("\n"))
    except MdevctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("list")
def list_devices(
    defined: bool = typer.Option(False, "--defined", "-d", help="Show defined devices"),
    dumpjson: bool = typer.Option(False, "--dumpjson", help="Output device list in json format"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print additional information about the devices"),
    uuid: UUID | None = typer.Option(None, "--uuid", "-u", help="List devices matching the specified UUID"),
    parent: str | None = typer.Option(None, "--parent", "-p", help="List devices of the specified parent"),
) -> None:
    """List running mediated devices, or defined ones with --defined."""
    _list(defined, dumpjson, verbose, uuid, parent)


@lsmdev_app.command()
def lsmdev(
    defined: bool = typer.Option(False, "--defined", "-d", help="Show defined devices"),
    dumpjson: bool = typer.Option(False, "--dumpjson", help="Output device list in json format"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print additional information about the devices"),
    uuid: UUID | None = typer.Option(None, "--uuid", "-u", help="List devices matching the specified UUID"),
    parent: str | None = typer.Option(None, "--parent", "-p", help="List devices of the specified parent"),
) -> None:
    """List mediated devices."""
    _configure_logging()
    _list(defined, dumpjson, verbose, uuid, parent)


@app.command("types")
def list_types(
    parent: str | None = typer.Option(None, "--parent", "-p", help="Show supported types for the specified parent"),
    dumpjson: bool = typer.Option(False, "--dumpjson", help="Output mdev types list in JSON format"),
) -> None:
    """List available mediated device types."""
    try:
        output = _build_service().types(parent, dumpjson=dumpjson)
        if output:
            typer.echo(output.rstrip("\n"))
    except MdevctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("start-parent-mdevs", hidden=True)
def start_parent_mdevs(parent: str) -> None:
    """Start all auto-start devices of PARENT."""
    try:
        for failure in _build_service().start_parent_mdevs(parent):
            typer.echo(f"Warning: {failure}", err=True)
    except MdevctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
