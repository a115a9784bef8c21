"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from uuid import UUID, uuid4

from mdevctl.core.callouts import CalloutInvoker, NotifierBroadcaster
from mdevctl.core.environment import Environment
from mdevctl.core.errors import CalloutError, CalloutFailure, DeviceSelectionError, MdevctlError, PipelineError
from mdevctl.core.model import (
    Action,
    CalloutEvent,
    ConfigRecord,
    DeviceIdentity,
    Event,
    MDev,
    MDevType,
    StartMode,
    State,
)
from mdevctl.core.pipeline import CommandPipeline
from mdevctl.core.record import (
    add_attribute,
    delete_attribute,
    dumps,
    read_record_file,
    record_to_json,
)
from mdevctl.core.store import ConfigStore
from mdevctl.core.sysfs import Sysfs

LOGGER = logging.getLogger(__name__)


class MdevService:
    def __init__(self, env: Environment | None = None) -> None:
        self.env = env or Environment.from_env()
        self.store = ConfigStore(self.env)
        self.sysfs = Sysfs(self.env)

    def new_invoker(self) -> CalloutInvoker:
        """A fresh invoker, so discovery and negotiation results last one command."""
        return CalloutInvoker(self.env)

    def _pipeline(
        self,
        invoker: CalloutInvoker,
        device: MDev,
        action: Action,
        *,
        force: bool = False,
        live: bool = False,
    ) -> CommandPipeline:
        return CommandPipeline(
            invoker,
            NotifierBroadcaster(self.env),
            device,
            action,
            force=force,
            live=live,
        )

    def get_defined_device(self, uuid: UUID, parent: str | None = None) -> MDev:
        devices = self.store.defined_devices(uuid, parent)
        where = f"{parent}/{uuid}" if parent else str(uuid)
        if not devices:
            raise DeviceSelectionError(f"Mediated device {where} is not defined")
        if len(devices) > 1:
            raise DeviceSelectionError(f"Multiple definitions found for {where}, specify a parent")
        (children,) = devices.values()
        return children[0]

    def get_active_device(self, uuid: UUID, parent: str | None = None) -> MDev:
        device = self.sysfs.load_active(uuid)
        if device is None or (parent is not None and device.parent != parent):
            where = f"{parent}/{uuid}" if parent else str(uuid)
            raise DeviceSelectionError(f"Mediated device {where} is not active")
        return device

    def define(
        self,
        uuid: UUID | None = None,
        parent: str | None = None,
        mdev_type: str | None = None,
        *,
        auto: bool = False,
        jsonfile: Path | None = None,
        force: bool = False,
    ) -> MDev:
        device_uuid = uuid or uuid4()
        if jsonfile is not None:
            if mdev_type is not None:
                raise DeviceSelectionError(f"Device type cannot be specified separately from {jsonfile}")
            if parent is None:
                raise DeviceSelectionError(f"Parent device required to define device via {jsonfile}")
            identity = DeviceIdentity(uuid=device_uuid, parent=parent)
            if self.store.is_defined(identity):
                raise DeviceSelectionError(
                    f"Cowardly refusing to overwrite existing config for {parent}/{device_uuid}"
                )
            device = MDev(identity=identity, record=read_record_file(jsonfile))
        else:
            active = self.sysfs.load_active(device_uuid) if uuid is not None else None
            if parent is None and (active is None or mdev_type is not None):
                raise DeviceSelectionError("No parent specified")
            parent = parent or active.parent
            mdev_type = mdev_type or (active.mdev_type if active is not None else None)
            if mdev_type is None:
                raise DeviceSelectionError("No type specified")
            identity = DeviceIdentity(uuid=device_uuid, parent=parent)
            if self.store.is_defined(identity):
                raise DeviceSelectionError(f"Device {device_uuid} on {parent} already defined")
            device = MDev(
                identity=identity,
                record=ConfigRecord(
                    mdev_type=mdev_type,
                    start_mode=StartMode.AUTO if auto else StartMode.MANUAL,
                ),
                active=active is not None and active.parent == parent,
            )

        invoker = self.new_invoker()

        def _define(dev: MDev) -> MDev:
            # An active device keeps the attributes it was started with.
            if dev.active:
                attrs = invoker.get_attributes(dev.identity, dev.record)
                if attrs:
                    dev = replace(dev, record=replace(dev.record, attrs=dev.record.attrs + attrs))
            self.store.write(dev.identity, dev.record)
            return dev

        LOGGER.debug("Defining mdev %s", device_uuid)
        return self._pipeline(invoker, device, Action.DEFINE, force=force).run(_define)

    def undefine(self, uuid: UUID, parent: str | None = None, *, force: bool = False) -> None:
        LOGGER.debug("Undefining mdev %s", uuid)
        devices = self.store.defined_devices(uuid, parent)
        if not devices:
            raise DeviceSelectionError("No devices match the specified uuid")

        invoker = self.new_invoker()
        failures: list[PipelineError] = []
        for children in devices.values():
            for device in children:
                pipeline = self._pipeline(invoker, device, Action.UNDEFINE, force=force)
                try:
                    pipeline.run(lambda dev: self.store.delete(dev.identity))
                except PipelineError as exc:
                    failures.append(exc)
                    LOGGER.warning(
                        "Undefine of %s on parent %s failed with error: %s",
                        device.uuid,
                        device.parent,
                        exc,
                    )
        if failures:
            raise MdevctlError("Undefine failed: " + "; ".join(str(f) for f in failures))

    def modify(
        self,
        uuid: UUID,
        parent: str | None = None,
        mdev_type: str | None = None,
        *,
        addattr: str | None = None,
        delattr: bool = False,
        index: int | None = None,
        value: str | None = None,
        auto: bool = False,
        manual: bool = False,
        jsonfile: Path | None = None,
        live: bool = False,
        force: bool = False,
    ) -> bool:
        """Modify a definition and, when possible, the running device with it.

        With `live`, only the running device is updated from `jsonfile`.
        Returns whether the running device received the change.
        """
        LOGGER.debug("Modifying mdev %s", uuid)
        if live:
            if mdev_type is not None:
                raise DeviceSelectionError("'type' cannot be changed on active mdev")
            if auto:
                raise DeviceSelectionError("'auto' cannot be changed on active mdev")
            if manual:
                raise DeviceSelectionError("'manual' cannot be changed on active mdev")
            if jsonfile is None:
                raise DeviceSelectionError("'live' option must be used with 'jsonfile' option")
            return self._modify_live_only(uuid, parent, jsonfile)

        if auto and manual:
            raise DeviceSelectionError("'auto' and 'manual' are mutually exclusive")

        if jsonfile is not None and (auto or manual):
            raise DeviceSelectionError("Start mode cannot be specified separately from json file")
        if jsonfile is not None and parent is None:
            raise DeviceSelectionError("Parent device required to modify device via json file")

        device = self.get_defined_device(uuid, parent)
        if jsonfile is not None:
            record = read_record_file(jsonfile)
        else:
            record = device.record
            if mdev_type is not None:
                record = replace(record, mdev_type=mdev_type)
            if auto:
                record = replace(record, start_mode=StartMode.AUTO)
            elif manual:
                record = replace(record, start_mode=StartMode.MANUAL)

        if addattr is not None:
            if value is None:
                raise DeviceSelectionError("No attribute value provided")
            record = add_attribute(record, addattr, value, index)
        elif delattr:
            record = delete_attribute(record, index)

        active = self.sysfs.load_active(uuid)
        propagate = False
        if active is not None:
            if active.parent != device.parent:
                LOGGER.debug("Device exists under different parent - cannot run live update")
            elif active.mdev_type != record.mdev_type:
                LOGGER.debug("Device exists with different type - cannot run live update")
            else:
                propagate = True

        device = MDev(identity=device.identity, record=record, active=active is not None)
        pipeline = self._pipeline(self.new_invoker(), device, Action.MODIFY, force=force, live=propagate)
        pipeline.run(lambda dev: self.store.write(dev.identity, dev.record))
        return pipeline.live_applied

    def _modify_live_only(self, uuid: UUID, parent: str | None, jsonfile: Path) -> bool:
        active = self.get_active_device(uuid, parent)
        record = read_record_file(jsonfile)
        if record.mdev_type != active.mdev_type:
            raise DeviceSelectionError("'type' cannot be changed on active mdev")

        invoker = self.new_invoker()
        device = MDev(identity=active.identity, record=record, active=True)
        if not invoker.supports_live(device.identity, record):
            raise CalloutError(f"No callout script supports live update for mdev type {record.mdev_type}")

        state = State.FAILURE
        try:
            invoker.invoke(CalloutEvent(Event.LIVE, Action.MODIFY, State.NONE, device.identity, record))
            state = State.SUCCESS
        finally:
            NotifierBroadcaster(self.env).broadcast(
                CalloutEvent(Event.NOTIFY, Action.MODIFY, state, device.identity, record)
            )
        return True

    def start(
        self,
        uuid: UUID | None = None,
        parent: str | None = None,
        mdev_type: str | None = None,
        *,
        jsonfile: Path | None = None,
        force: bool = False,
    ) -> MDev:
        LOGGER.debug("Starting device %s", uuid)
        device: MDev | None = None
        if jsonfile is not None:
            if mdev_type is not None:
                raise DeviceSelectionError("Device type cannot be specified separately from json file")
            if parent is None:
                raise DeviceSelectionError("Parent device required to start device via json file")
            device = MDev(
                identity=DeviceIdentity(uuid=uuid or uuid4(), parent=parent),
                record=read_record_file(jsonfile),
            )
        else:
            if uuid is not None:
                defined = [d for children in self.store.defined_devices(uuid, parent).values() for d in children]
                if len(defined) > 1:
                    raise DeviceSelectionError(
                        f"Multiple definitions found for device {uuid}. Please specify a parent."
                    )
                if defined:
                    found = defined[0]
                    if mdev_type is not None and mdev_type != found.mdev_type:
                        raise DeviceSelectionError(
                            f"Device {uuid} already exists on parent {found.parent} with type {found.mdev_type}"
                        )
                    device = found
            if device is None:
                if mdev_type is not None and parent is None:
                    raise DeviceSelectionError("can't provide type without parent")
                if mdev_type is None or parent is None:
                    raise DeviceSelectionError("Device is insufficiently specified")
                device = MDev(
                    identity=DeviceIdentity(uuid=uuid or uuid4(), parent=parent),
                    record=ConfigRecord(mdev_type=mdev_type),
                )

        return self._start(self.new_invoker(), device, force=force)

    def _start(self, invoker: CalloutInvoker, device: MDev, *, force: bool = False) -> MDev:
        def _create(dev: MDev) -> MDev:
            self.sysfs.start(dev)
            return replace(dev, active=True)

        return self._pipeline(invoker, device, Action.START, force=force).run(_create)

    def stop(self, uuid: UUID, *, force: bool = False) -> None:
        LOGGER.debug("Stopping %s", uuid)
        device = self.get_active_device(uuid)
        self._pipeline(self.new_invoker(), device, Action.STOP, force=force).run(
            lambda dev: self.sysfs.remove(dev.uuid)
        )

    def start_parent_mdevs(self, parent: str) -> list[PipelineError]:
        """Start every auto-start device defined for `parent`.

        Each device gets its own pipeline; one failure never stops the batch.
        """
        failures: list[PipelineError] = []
        invoker = self.new_invoker()
        for children in self.store.defined_devices(parent=parent).values():
            for device in children:
                if not device.record.autostart:
                    continue
                LOGGER.debug("Autostarting %s", device.uuid)
                try:
                    self._start(invoker, device)
                except PipelineError as exc:
                    LOGGER.warning("%s", exc)
                    failures.append(exc)
        return failures

    def defined_devices(self, uuid: UUID | None = None, parent: str | None = None) -> dict[str, list[MDev]]:
        devices = self.store.defined_devices(uuid, parent)
        for children in devices.values():
            for i, device in enumerate(children):
                active = self.sysfs.load_active(device.uuid)
                children[i] = replace(device, active=active is not None and active.parent == device.parent)
        return devices

    def active_devices(self, uuid: UUID | None = None, parent: str | None = None) -> dict[str, list[MDev]]:
        devices = self.sysfs.active_devices(uuid, parent)
        invoker = self.new_invoker()
        for children in devices.values():
            for i, device in enumerate(children):
                record = device.record
                if self.store.is_defined(device.identity):
                    record = replace(record, start_mode=self.store.load(device.identity).start_mode)
                # attributes reported by a callout, when one applies to the type
                try:
                    attrs = invoker.get_attributes(device.identity, record)
                except CalloutFailure as exc:
                    LOGGER.debug("Unable to get attributes for %s: %s", device.uuid, exc)
                    attrs = None
                if attrs:
                    record = replace(record, attrs=record.attrs + attrs)
                children[i] = replace(device, record=record)
        return devices

    def list_devices(
        self,
        *,
        defined: bool = False,
        dumpjson: bool = False,
        verbose: bool = False,
        uuid: UUID | None = None,
        parent: str | None = None,
    ) -> str:
        if defined:
            devices = self.defined_devices(uuid, parent)
        else:
            devices = self.active_devices(uuid, parent)

        if dumpjson:
            flat = [d for children in devices.values() for d in children]
            # a single device prints as a config file
            if uuid is not None and len(flat) <= 1:
                return dumps(record_to_json(flat[0].record) if flat else [])
            return format_json(devices)

        lines: list[str] = []
        for children in devices.values():
            for device in children:
                lines.append(self._format_text(device, defined=defined, verbose=verbose))
        return "".join(lines)

    def _format_text(self, device: MDev, *, defined: bool, verbose: bool) -> str:
        output = f"{device.uuid} {device.parent} {device.mdev_type} {device.record.start_mode.value}"
        if defined and device.active:
            output += " (active)"
        elif not defined and self.store.is_defined(device.identity):
            output += " (defined)"
        output += "\n"
        if verbose and device.record.attrs:
            output += "  Attrs:\n"
            for i, (name, value) in enumerate(device.record.attrs):
                output += f'    @{{{i}}}: {{"{name}":"{value}"}}\n'
        return output

    def supported_types(self, parent: str | None = None) -> dict[str, list[MDevType]]:
        return self.sysfs.supported_types(parent)

    def types(self, parent: str | None = None, *, dumpjson: bool = False) -> str:
        types = self.supported_types(parent)
        if dumpjson:
            if not types:
                return dumps([])
            return dumps([{name: [_type_to_json(t) for t in children] for name, children in types.items()}])

        lines: list[str] = []
        for name, children in types.items():
            lines.append(name)
            for child in children:
                lines.append(f"  {child.typename}")
                lines.append(f"    Available instances: {child.available_instances}")
                lines.append(f"    Device API: {child.device_api}")
                if child.name:
                    lines.append(f"    Name: {child.name}")
                if child.description:
                    lines.append(f"    Description: {child.description}")
        return "".join(f"{line}\n" for line in lines)


def format_json(devices: dict[str, list[MDev]]) -> str:
    if not devices:
        return dumps([])
    return dumps(
        [
            {
                parent: [{str(d.uuid): record_to_json(d.record)} for d in children]
                for parent, children in devices.items()
            }
        ]
    )


def _type_to_json(mdev_type: MDevType) -> dict[str, object]:
    doc: dict[str, object] = {
        "available_instances": mdev_type.available_instances,
        "device_api": mdev_type.device_api,
    }
    if mdev_type.name:
        doc["name"] = mdev_type.name
    if mdev_type.description:
        doc["description"] = mdev_type.description
    return {mdev_type.typename: doc}
