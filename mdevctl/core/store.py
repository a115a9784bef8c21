"""Persisted device configs under the mdevctl config directory."""

from __future__ import annotations

import logging
from pathlib import Path
from uuid import UUID

from mdevctl.core.environment import Environment
from mdevctl.core.errors import ConfigWriteError
from mdevctl.core.model import ConfigRecord, DeviceIdentity, MDev
from mdevctl.core.record import dumps, read_record_file, record_to_json

LOGGER = logging.getLogger(__name__)


class ConfigStore:
    def __init__(self, env: Environment) -> None:
        self.env = env

    def persist_path(self, identity: DeviceIdentity) -> Path:
        return self.env.config_base / identity.parent / str(identity.uuid)

    def is_defined(self, identity: DeviceIdentity) -> bool:
        return self.persist_path(identity).is_file()

    def load(self, identity: DeviceIdentity) -> ConfigRecord:
        return read_record_file(self.persist_path(identity))

    def write(self, identity: DeviceIdentity, record: ConfigRecord) -> None:
        path = self.persist_path(identity)
        LOGGER.debug("Writing config for %s to %s", identity.uuid, path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(dumps(record_to_json(record)), encoding="utf-8")
        except OSError as exc:
            raise ConfigWriteError(f"Failed to write config for device {identity.uuid}: {exc}") from exc

    def delete(self, identity: DeviceIdentity) -> None:
        try:
            self.persist_path(identity).unlink()
        except OSError as exc:
            raise ConfigWriteError(f"Failed to undefine {identity.uuid}: {exc}") from exc

    def defined_devices(
        self,
        uuid: UUID | None = None,
        parent: str | None = None,
    ) -> dict[str, list[MDev]]:
        """Map parent name to the devices defined under it, sorted by uuid."""
        LOGGER.debug("Looking up defined mdevs: uuid=%s, parent=%s", uuid, parent)
        devices: dict[str, list[MDev]] = {}
        base = self.env.config_base
        if not base.is_dir():
            return devices

        for parent_dir in sorted(base.iterdir()):
            if parent_dir == self.env.scripts_base or not parent_dir.is_dir():
                continue
            if parent is not None and parent_dir.name != parent:
                continue

            children: list[MDev] = []
            for path in sorted(parent_dir.iterdir()):
                if not path.is_file():
                    continue
                try:
                    found = UUID(path.name)
                except ValueError:
                    LOGGER.warning("Can't determine uuid for file '%s'", path.name)
                    continue
                if uuid is not None and found != uuid:
                    continue
                identity = DeviceIdentity(uuid=found, parent=parent_dir.name)
                children.append(MDev(identity=identity, record=read_record_file(path)))

            if children:
                devices[parent_dir.name] = sorted(children, key=lambda d: d.uuid)
        return devices
