"""The pre/execute/post/notify pipeline wrapped around every mutating command."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from mdevctl.core.callouts import CalloutInvoker, NotifierBroadcaster
from mdevctl.core.errors import CalloutFailure, PreCalloutError, PrimaryActionError
from mdevctl.core.model import Action, CalloutEvent, Event, MDev, PipelineStage, State

LOGGER = logging.getLogger(__name__)

PrimaryAction = Callable[[MDev], "MDev | None"]

VALID_TRANSITIONS = {
    PipelineStage.INIT: {PipelineStage.PRE_INVOKED},
    PipelineStage.PRE_INVOKED: {PipelineStage.EXECUTED, PipelineStage.PRE_FAILED},
    PipelineStage.PRE_FAILED: {PipelineStage.NOTIFY_INVOKED},
    PipelineStage.EXECUTED: {PipelineStage.LIVE_INVOKED, PipelineStage.POST_INVOKED},
    PipelineStage.LIVE_INVOKED: {PipelineStage.POST_INVOKED},
    PipelineStage.POST_INVOKED: {PipelineStage.NOTIFY_INVOKED},
    PipelineStage.NOTIFY_INVOKED: {PipelineStage.DONE},
    PipelineStage.DONE: set(),
}

_DEFERRED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@contextmanager
def deferred_signals() -> Iterator[None]:
    """Hold SIGINT/SIGTERM until the block exits, then re-deliver them.

    Only possible from the main thread; elsewhere signals are left alone.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    received: list[int] = []

    def _record(signum: int, frame: object) -> None:
        LOGGER.warning("Received %s, finishing callouts before exiting", signal.Signals(signum).name)
        received.append(signum)

    previous = {sig: signal.signal(sig, _record) for sig in _DEFERRED_SIGNALS}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
        for sig in received:
            signal.raise_signal(sig)


class CommandPipeline:
    """Runs one mutating action for one device.

    Only the pre callout can veto the primary action. Post, live, and notify
    failures are logged and never change the reported outcome. Notify always
    runs, with state `none` when the primary action never executed.
    """

    def __init__(
        self,
        invoker: CalloutInvoker,
        notifier: NotifierBroadcaster,
        device: MDev,
        action: Action,
        *,
        force: bool = False,
        live: bool = False,
    ) -> None:
        self.invoker = invoker
        self.notifier = notifier
        self.device = device
        self.action = action
        self.force = force
        self.live = live
        self.state = State.NONE
        self.live_applied = False
        self.stages: list[PipelineStage] = [PipelineStage.INIT]

    @property
    def stage(self) -> PipelineStage:
        return self.stages[-1]

    def _advance(self, stage: PipelineStage) -> None:
        if stage not in VALID_TRANSITIONS[self.stage]:
            raise RuntimeError(f"Invalid pipeline transition {self.stage.value} -> {stage.value}")
        self.stages.append(stage)

    def _event(self, event: Event, state: State) -> CalloutEvent:
        return CalloutEvent(event, self.action, state, self.device.identity, self.device.record)

    def run(self, primary: PrimaryAction) -> MDev:
        """Run the pipeline and return the device as the primary action left it.

        Raises PreCalloutError when the pre callout vetoes the action and
        PrimaryActionError when the action itself fails.
        """
        with deferred_signals():
            self._advance(PipelineStage.PRE_INVOKED)
            try:
                self.invoker.invoke(self._event(Event.PRE, State.NONE))
            except CalloutFailure as exc:
                if not self.force:
                    self._advance(PipelineStage.PRE_FAILED)
                    self._notify()
                    raise PreCalloutError(self.device.identity, self.action, exc) from exc
                LOGGER.warning(
                    "Forcing operation '%s' despite callout failure. Error was: %s",
                    self.action.value,
                    exc,
                )

            error: Exception | None = None
            try:
                updated = primary(self.device)
            # Post and notify must see any failure of the primary action.
            except Exception as exc:
                error = exc
                self.state = State.FAILURE
            else:
                self.state = State.SUCCESS
                if updated is not None:
                    self.device = updated
            self._advance(PipelineStage.EXECUTED)

            if self.live and error is None:
                self._invoke_live()

            self._advance(PipelineStage.POST_INVOKED)
            try:
                self.invoker.invoke(self._event(Event.POST, self.state))
            except CalloutFailure as exc:
                LOGGER.warning("Error occurred when executing post callout script: %s", exc)

            self._notify()

        if error is not None:
            raise PrimaryActionError(self.device.identity, self.action, error) from error
        return self.device

    def _invoke_live(self) -> None:
        self._advance(PipelineStage.LIVE_INVOKED)
        try:
            outcome = self.invoker.invoke(self._event(Event.LIVE, State.NONE))
        except CalloutFailure as exc:
            LOGGER.warning(
                "Live update of %s failed, change takes effect on next start: %s",
                self.device.uuid,
                exc,
            )
            return
        self.live_applied = outcome.resolved
        if not outcome.resolved:
            LOGGER.debug("No live capable callout for %s, change takes effect on next start", self.device.uuid)

    def _notify(self) -> None:
        self._advance(PipelineStage.NOTIFY_INVOKED)
        self.notifier.broadcast(self._event(Event.NOTIFY, self.state))
        self._advance(PipelineStage.DONE)
