"""Stable public API for building tooling on top of mdevctl.

This module is the supported integration surface for third-party callers
(management daemons, test harnesses, scripts). Avoid importing from
`mdevctl.core` unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from pathlib import Path
from uuid import UUID

from mdevctl.core.environment import Environment
from mdevctl.core.errors import (
    CalloutError,
    CalloutFailure,
    ConfigLoadError,
    ConfigValidationError,
    ConfigWriteError,
    DeviceSelectionError,
    EnvironmentSetupError,
    MdevctlError,
    PipelineError,
    PreCalloutError,
    PrimaryActionError,
    SysfsError,
)
from mdevctl.core.model import ConfigRecord, DeviceIdentity, MDev, MDevType, StartMode
from mdevctl.core.service import MdevService

__all__ = [
    "CalloutError",
    "CalloutFailure",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigWriteError",
    "DeviceSelectionError",
    "EnvironmentSetupError",
    "MdevctlError",
    "PipelineError",
    "PreCalloutError",
    "PrimaryActionError",
    "SysfsError",
    "ConfigRecord",
    "DeviceIdentity",
    "MDev",
    "MDevType",
    "StartMode",
    "Environment",
    "Client",
]


class Client:
    """Public client for the mdevctl command surface.

    Every mutating call runs the full callout pipeline, exactly as the
    command-line tool does. Pass `root` to operate on a directory tree other
    than `/` (the same effect as MDEVCTL_ENV_ROOT).
    """

    def __init__(self, *, root: Path | None = None) -> None:
        env = Environment(root=root) if root is not None else Environment.from_env()
        self._service = MdevService(env)

    @property
    def environment(self) -> Environment:
        return self._service.env

    def define(
        self,
        *,
        uuid: UUID | None = None,
        parent: str | None = None,
        mdev_type: str | None = None,
        auto: bool = False,
        jsonfile: Path | None = None,
        force: bool = False,
    ) -> MDev:
        return self._service.define(uuid, parent, mdev_type, auto=auto, jsonfile=jsonfile, force=force)

    def undefine(self, uuid: UUID, *, parent: str | None = None, force: bool = False) -> None:
        self._service.undefine(uuid, parent, force=force)

    def modify(self, uuid: UUID, *, parent: str | None = None, **changes) -> bool:
        return self._service.modify(uuid, parent, **changes)

    def start(
        self,
        *,
        uuid: UUID | None = None,
        parent: str | None = None,
        mdev_type: str | None = None,
        jsonfile: Path | None = None,
        force: bool = False,
    ) -> MDev:
        return self._service.start(uuid, parent, mdev_type, jsonfile=jsonfile, force=force)

    def stop(self, uuid: UUID, *, force: bool = False) -> None:
        self._service.stop(uuid, force=force)

    def defined_devices(self, *, uuid: UUID | None = None, parent: str | None = None) -> list[MDev]:
        devices = self._service.defined_devices(uuid, parent)
        return [d for children in devices.values() for d in children]

    def active_devices(self, *, uuid: UUID | None = None, parent: str | None = None) -> list[MDev]:
        devices = self._service.active_devices(uuid, parent)
        return [d for children in devices.values() for d in children]

    def supported_types(self, *, parent: str | None = None) -> list[MDevType]:
        types = self._service.supported_types(parent)
        return [t for children in types.values() for t in children]
