"""Core data models used across store, callouts, pipeline, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from uuid import UUID


class StartMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class Event(str, Enum):
    PRE = "pre"
    POST = "post"
    NOTIFY = "notify"
    GET = "get"
    LIVE = "live"

    @property
    def event_class(self) -> EventClass:
        return EventClass.GET if self is Event.GET else EventClass.COMMAND


class Action(str, Enum):
    DEFINE = "define"
    UNDEFINE = "undefine"
    START = "start"
    STOP = "stop"
    MODIFY = "modify"
    ATTRIBUTES = "attributes"
    CAPABILITIES = "capabilities"


class State(str, Enum):
    NONE = "none"
    SUCCESS = "success"
    FAILURE = "failure"


class EventClass(str, Enum):
    """Which set of locator scripts resolves a callout."""

    COMMAND = "command"
    GET = "get"


class PipelineStage(str, Enum):
    INIT = "init"
    PRE_INVOKED = "pre_invoked"
    PRE_FAILED = "pre_failed"
    EXECUTED = "executed"
    LIVE_INVOKED = "live_invoked"
    POST_INVOKED = "post_invoked"
    NOTIFY_INVOKED = "notify_invoked"
    DONE = "done"


@dataclass(frozen=True)
class DeviceIdentity:
    uuid: UUID
    parent: str


@dataclass(frozen=True)
class ConfigRecord:
    """Persisted or transient configuration of a mediated device.

    `attrs` keeps its order; callers address entries by index.
    """

    mdev_type: str
    start_mode: StartMode = StartMode.MANUAL
    attrs: tuple[tuple[str, str], ...] = ()

    @property
    def autostart(self) -> bool:
        return self.start_mode is StartMode.AUTO


@dataclass(frozen=True)
class MDev:
    identity: DeviceIdentity
    record: ConfigRecord
    active: bool = False

    @property
    def uuid(self) -> UUID:
        return self.identity.uuid

    @property
    def parent(self) -> str:
        return self.identity.parent

    @property
    def mdev_type(self) -> str:
        return self.record.mdev_type


@dataclass(frozen=True)
class MDevType:
    parent: str
    typename: str
    available_instances: int
    device_api: str
    name: str = ""
    description: str = ""


@dataclass(frozen=True)
class CapabilityDescriptor:
    version: int
    actions: frozenset[Action] = field(default_factory=frozenset)
    events: frozenset[Event] = field(default_factory=frozenset)
    negotiated: bool = True

    def supports(self, event: Event, action: Action) -> bool:
        return event in self.events and action in self.actions

    @property
    def supports_live(self) -> bool:
        return self.version >= 3 and Event.LIVE in self.events


@dataclass(frozen=True)
class CalloutEvent:
    event: Event
    action: Action
    state: State
    identity: DeviceIdentity
    record: ConfigRecord


@dataclass(frozen=True)
class InvokeOutcome:
    event: CalloutEvent
    script: Path | None = None
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    attributes: tuple[tuple[str, str], ...] | None = None

    @property
    def resolved(self) -> bool:
        return self.script is not None
