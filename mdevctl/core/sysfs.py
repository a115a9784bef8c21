"""Kernel (sysfs) view of mediated devices and their parents."""

from __future__ import annotations

import logging
from pathlib import Path
from uuid import UUID

from mdevctl.core.environment import Environment
from mdevctl.core.errors import SysfsError
from mdevctl.core.model import ConfigRecord, DeviceIdentity, MDev, MDevType

LOGGER = logging.getLogger(__name__)


class Sysfs:
    def __init__(self, env: Environment) -> None:
        self.env = env

    def device_path(self, uuid: UUID) -> Path:
        return self.env.mdev_base / str(uuid)

    def load_active(self, uuid: UUID) -> MDev | None:
        """Return the running device for `uuid`, or None if it is not active."""
        path = self.device_path(uuid)
        if not path.is_symlink():
            return None
        try:
            parent = path.resolve(strict=True).parent.name
            mdev_type = (path / "mdev_type").resolve(strict=True).name
        except OSError as exc:
            raise SysfsError(f"Unable to inspect active device {uuid}: {exc}") from exc
        LOGGER.debug("Loaded active device %s (parent=%s, type=%s)", uuid, parent, mdev_type)
        return MDev(
            identity=DeviceIdentity(uuid=uuid, parent=parent),
            record=ConfigRecord(mdev_type=mdev_type),
            active=True,
        )

    def active_devices(
        self,
        uuid: UUID | None = None,
        parent: str | None = None,
    ) -> dict[str, list[MDev]]:
        LOGGER.debug("Looking up active mdevs: uuid=%s, parent=%s", uuid, parent)
        devices: dict[str, list[MDev]] = {}
        base = self.env.mdev_base
        if not base.is_dir():
            return devices

        for entry in sorted(base.iterdir()):
            try:
                found = UUID(entry.name)
            except ValueError:
                LOGGER.warning("Can't determine uuid for file '%s'", entry.name)
                continue
            if uuid is not None and found != uuid:
                continue
            device = self.load_active(found)
            if device is None:
                continue
            if parent is not None and device.parent != parent:
                continue
            devices.setdefault(device.parent, []).append(device)

        for children in devices.values():
            children.sort(key=lambda d: d.uuid)
        return devices

    def create(self, identity: DeviceIdentity, mdev_type: str) -> None:
        LOGGER.debug("Creating mdev %s", identity.uuid)
        existing = self.load_active(identity.uuid)
        if existing is not None:
            if existing.parent != identity.parent:
                raise SysfsError("Device exists under different parent")
            if existing.mdev_type != mdev_type:
                raise SysfsError("Device exists with different type")
            raise SysfsError("Device already exists")

        types_dir = self.env.parent_base / identity.parent / "mdev_supported_types"
        if not types_dir.is_dir():
            raise SysfsError(f"Parent {identity.parent} is not currently registered for mdev support")
        type_dir = types_dir / mdev_type
        if not type_dir.is_dir():
            raise SysfsError(f"Parent {identity.parent} does not support mdev type {mdev_type}")
        if _read_int(type_dir / "available_instances") == 0:
            raise SysfsError(f"No available instances of {mdev_type} on {identity.parent}")

        try:
            (type_dir / "create").write_text(str(identity.uuid), encoding="utf-8")
        except OSError as exc:
            raise SysfsError(
                f"Failed to create mdev {identity.uuid}, type {mdev_type} on {identity.parent}: {exc}"
            ) from exc

    def remove(self, uuid: UUID) -> None:
        LOGGER.debug("Removing mdev %s", uuid)
        try:
            (self.device_path(uuid) / "remove").write_text("1", encoding="utf-8")
        except OSError as exc:
            raise SysfsError(f"Error removing device {uuid}: {exc}") from exc

    def write_attribute(self, uuid: UUID, name: str, value: str) -> None:
        LOGGER.debug("Writing attribute '%s' -> '%s'", name, value)
        path = self.device_path(uuid) / name
        if not path.exists():
            raise SysfsError(f"Invalid attribute '{name}'")
        try:
            path.write_text(value, encoding="utf-8")
        except OSError as exc:
            raise SysfsError(f"Failed to write {value} to attribute {name}: {exc}") from exc

    def start(self, device: MDev) -> None:
        """Create the device and apply its attributes in order.

        A failed attribute write removes the device again.
        """
        self.create(device.identity, device.mdev_type)
        for name, value in device.record.attrs:
            try:
                self.write_attribute(device.uuid, name, value)
            except SysfsError:
                try:
                    self.remove(device.uuid)
                except SysfsError as exc:
                    LOGGER.warning("Unable to remove %s after failed attribute write: %s", device.uuid, exc)
                raise

    def supported_types(self, parent: str | None = None) -> dict[str, list[MDevType]]:
        LOGGER.debug("Finding supported mdev types")
        types: dict[str, list[MDevType]] = {}
        base = self.env.parent_base
        if not base.is_dir():
            return types

        for parent_dir in sorted(base.iterdir()):
            if parent is not None and parent_dir.name != parent:
                continue
            types_dir = parent_dir / "mdev_supported_types"
            if not types_dir.is_dir():
                continue
            children: list[MDevType] = []
            for type_dir in sorted(p for p in types_dir.iterdir() if p.is_dir()):
                children.append(
                    MDevType(
                        parent=parent_dir.name,
                        typename=type_dir.name,
                        available_instances=_read_int(type_dir / "available_instances"),
                        device_api=_read_text(type_dir / "device_api"),
                        name=_read_text(type_dir / "name", optional=True),
                        description=_read_text(type_dir / "description", optional=True).replace("\n", ", "),
                    )
                )
            types[parent_dir.name] = children
        return types


def _read_text(path: Path, *, optional: bool = False) -> str:
    if optional and not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as exc:
        raise SysfsError(f"Unable to read {path}: {exc}") from exc


def _read_int(path: Path) -> int:
    text = _read_text(path)
    try:
        return int(text)
    except ValueError as exc:
        raise SysfsError(f"Unexpected content in {path}: '{text}'") from exc
