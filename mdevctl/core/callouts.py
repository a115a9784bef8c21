"""Callout invocation and notifier broadcast."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from mdevctl.core.capabilities import CapabilityNegotiator
from mdevctl.core.environment import Environment
from mdevctl.core.errors import CalloutFailure, ConfigValidationError
from mdevctl.core.locator import Locator
from mdevctl.core.model import Action, CalloutEvent, ConfigRecord, DeviceIdentity, Event, InvokeOutcome, State
from mdevctl.core.record import attributes_from_json, record_to_json
from mdevctl.core.scripts import callout_args, iter_scripts, log_stderr, run_script

LOGGER = logging.getLogger(__name__)


def _stdin_document(event: CalloutEvent) -> str:
    return json.dumps(record_to_json(event.record))


class CalloutInvoker:
    """Runs the callout script responsible for a device type.

    A type without a resolvable script, or whose script does not declare the
    event, yields an unresolved outcome rather than an error.
    """

    def __init__(
        self,
        env: Environment,
        *,
        locator: Locator | None = None,
        negotiator: CapabilityNegotiator | None = None,
    ) -> None:
        self.locator = locator or Locator(env)
        self.negotiator = negotiator or CapabilityNegotiator()

    def resolve(self, event: CalloutEvent) -> Path | None:
        script = self.locator.locate(event.record.mdev_type, event.event.event_class)
        if script is None:
            return None

        descriptor = self.negotiator.capabilities(script, event.identity, event.record.mdev_type)
        if event.event is Event.LIVE:
            if not descriptor.supports_live or event.action not in descriptor.actions:
                LOGGER.debug("Callout script %s does not support live %s", script, event.action.value)
                return None
        elif descriptor.negotiated and not descriptor.supports(event.event, event.action):
            LOGGER.debug(
                "Callout script %s does not support %s-%s",
                script,
                event.event.value,
                event.action.value,
            )
            return None
        return script

    def invoke(self, event: CalloutEvent) -> InvokeOutcome:
        """Run the callout for `event`.

        Raises CalloutFailure when a resolved script exits non-zero or, for
        `get attributes`, prints something other than an attribute list.
        """
        script = self.resolve(event)
        if script is None:
            return InvokeOutcome(event=event)

        LOGGER.debug(
            "%s-%s: executing %s (mdev_type=%s, uuid=%s, parent=%s, state=%s)",
            event.event.value,
            event.action.value,
            script,
            event.record.mdev_type,
            event.identity.uuid,
            event.identity.parent,
            event.state.value,
        )
        args = callout_args(event.record.mdev_type, event.event, event.action, event.state, event.identity)
        try:
            result = run_script(script, args, _stdin_document(event))
        except OSError as exc:
            raise CalloutFailure(f"Failed to execute callout script {script}: {exc}", script=script) from exc

        if result.returncode != 0:
            log_stderr(script, result)
            raise CalloutFailure(
                f"Script {script} failed with status '{result.returncode}'",
                script=script,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        attributes = None
        if event.event is Event.GET and event.action is Action.ATTRIBUTES:
            attributes = _parse_attributes(script, result.stdout, result.stderr)
        return InvokeOutcome(
            event=event,
            script=script,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            attributes=attributes,
        )

    def get_attributes(self, identity: DeviceIdentity, record: ConfigRecord) -> tuple[tuple[str, str], ...] | None:
        event = CalloutEvent(Event.GET, Action.ATTRIBUTES, State.NONE, identity, record)
        return self.invoke(event).attributes

    def supports_live(self, identity: DeviceIdentity, record: ConfigRecord) -> bool:
        event = CalloutEvent(Event.LIVE, Action.MODIFY, State.NONE, identity, record)
        return self.resolve(event) is not None


def _parse_attributes(script: Path, stdout: str, stderr: str) -> tuple[tuple[str, str], ...] | None:
    text = stdout.strip()
    if not text:
        return None
    if text == "[{}]":
        return ()
    try:
        return attributes_from_json(json.loads(text), source=script)
    except (json.JSONDecodeError, ConfigValidationError) as exc:
        raise CalloutFailure(
            f"Invalid JSON received from callout script {script}",
            script=script,
            returncode=0,
            stdout=stdout,
            stderr=stderr,
        ) from exc


class NotifierBroadcaster:
    """Runs every notifier script after a command, whatever its outcome."""

    def __init__(self, env: Environment) -> None:
        self.directory = env.notifier_dir

    def broadcast(self, event: CalloutEvent) -> None:
        LOGGER.debug(
            "%s-%s: executing notification scripts for device %s",
            event.event.value,
            event.action.value,
            event.identity.uuid,
        )
        args = callout_args(event.record.mdev_type, event.event, event.action, event.state, event.identity)
        stdin = _stdin_document(event)
        for script in iter_scripts(self.directory):
            try:
                result = run_script(script, args, stdin)
            except OSError as exc:
                LOGGER.warning("Failed to execute notifier script %s: %s", script, exc)
                continue
            if result.returncode != 0:
                log_stderr(script, result)
                LOGGER.warning("Notifier script %s failed with status %s", script, result.returncode)
