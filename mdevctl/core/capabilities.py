"""Capability negotiation with versioned callout scripts."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from mdevctl.core.errors import ConfigValidationError, NegotiationError
from mdevctl.core.model import Action, CapabilityDescriptor, DeviceIdentity, Event, State
from mdevctl.core.record import validate
from mdevctl.core.scripts import callout_args, run_script

LOGGER = logging.getLogger(__name__)

BASE_PROTOCOL_VERSION = 2
LIVE_PROTOCOL_VERSION = 3

PROVIDED = CapabilityDescriptor(
    version=LIVE_PROTOCOL_VERSION,
    actions=frozenset(Action),
    events=frozenset(Event),
)

UNNEGOTIATED = CapabilityDescriptor(version=BASE_PROTOCOL_VERSION, negotiated=False)


def provides_document() -> str:
    """What mdevctl itself speaks, sent to scripts on the capability probe."""
    return json.dumps(
        {
            "provides": {
                "version": PROVIDED.version,
                "actions": [a.value for a in Action],
                "events": [e.value for e in Event],
            }
        }
    )


def _parse_tags(values: list[str], enum_cls, *, script: Path, kind: str) -> frozenset:
    tags = set()
    for value in values:
        try:
            tags.add(enum_cls(value))
        except ValueError:
            LOGGER.warning("Callout script %s provides unknown %s type '%s'", script, kind, value)
    return frozenset(tags)


def parse_capabilities(stdout: str, *, script: Path) -> CapabilityDescriptor:
    try:
        doc = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise NegotiationError(f"Callout script {script} has no version support (unparsable stdout)") from exc
    try:
        validate("capabilities", doc, source=script)
    except ConfigValidationError as exc:
        raise NegotiationError(str(exc)) from exc

    supports = doc["supports"]
    version = int(supports["version"])
    events = _parse_tags(supports.get("events", []), Event, script=script, kind="event")
    if version < LIVE_PROTOCOL_VERSION and Event.LIVE in events:
        LOGGER.debug("Callout script %s declares 'live' at version %d; ignoring", script, version)
        events = events - {Event.LIVE}
    return CapabilityDescriptor(
        version=version,
        actions=_parse_tags(supports.get("actions", []), Action, script=script, kind="action"),
        events=events,
    )


class CapabilityNegotiator:
    """Negotiates with scripts, caching results for one command invocation.

    The cache is keyed by script path and never persisted.
    """

    def __init__(self) -> None:
        self._cache: dict[Path, CapabilityDescriptor] = {}

    def negotiate(self, script: Path, identity: DeviceIdentity, mdev_type: str) -> CapabilityDescriptor:
        """Probe `script` with `get capabilities`.

        Raises NegotiationError when the script cannot prove any capabilities.
        """
        args = callout_args(mdev_type, Event.GET, Action.CAPABILITIES, State.NONE, identity)
        try:
            result = run_script(script, args, provides_document())
        except OSError as exc:
            raise NegotiationError(f"Failed to execute callout script {script}: {exc}") from exc
        if result.returncode != 0:
            raise NegotiationError(
                f"Callout script {script} failed capability probe with status {result.returncode}"
            )
        return parse_capabilities(result.stdout, script=script)

    def capabilities(self, script: Path, identity: DeviceIdentity, mdev_type: str) -> CapabilityDescriptor:
        cached = self._cache.get(script)
        if cached is not None:
            return cached
        try:
            descriptor = self.negotiate(script, identity, mdev_type)
            LOGGER.debug("Script %s supports versioning: %s", script, descriptor)
        except NegotiationError as exc:
            LOGGER.debug("Negotiation with %s failed: %s", script, exc)
            descriptor = UNNEGOTIATED
        self._cache[script] = descriptor
        return descriptor
