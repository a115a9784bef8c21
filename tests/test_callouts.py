from __future__ import annotations

import json
from pathlib import Path
from uuid import UUID

import pytest
from conftest import read_lines, write_script

from mdevctl.core.callouts import CalloutInvoker, NotifierBroadcaster
from mdevctl.core.environment import Environment
from mdevctl.core.errors import CalloutFailure
from mdevctl.core.model import Action, CalloutEvent, ConfigRecord, DeviceIdentity, Event, State

IDENTITY = DeviceIdentity(uuid=UUID("6f5c38a4-1a0e-4c9c-9d7e-3a1f4f7c2b10"), parent="matrix")
RECORD = ConfigRecord(mdev_type="vfio_ap-passthrough", attrs=(("assign_adapter", "5"),))


def _event(event: Event, action: Action, state: State = State.NONE) -> CalloutEvent:
    return CalloutEvent(event, action, state, IDENTITY, RECORD)


def _calls(log: Path) -> list[str]:
    return [line for line in read_lines(log) if not line.startswith("get capabilities")]


def test_invoke_without_callout_is_unresolved(env: Environment) -> None:
    outcome = CalloutInvoker(env).invoke(_event(Event.PRE, Action.DEFINE))
    assert not outcome.resolved


def test_invoke_passes_args_and_config_on_stdin(env: Environment, install_callout, callout_log: Path) -> None:
    install_callout("v3.sh")

    outcome = CalloutInvoker(env).invoke(_event(Event.LIVE, Action.MODIFY))

    assert outcome.resolved
    assert outcome.returncode == 0
    assert _calls(callout_log) == [f"live modify none {IDENTITY.uuid} matrix"]
    stdin = json.loads(Path(f"{callout_log}.live").read_text(encoding="utf-8"))
    assert stdin == {"mdev_type": "vfio_ap-passthrough", "start": "manual", "attrs": [{"assign_adapter": "5"}]}


def test_nonzero_exit_raises_callout_failure(
    env: Environment, install_callout, callout_log: Path, caplog: pytest.LogCaptureFixture
) -> None:
    install_callout("pre-fail.sh")

    with pytest.raises(CalloutFailure) as excinfo:
        CalloutInvoker(env).invoke(_event(Event.PRE, Action.START))

    assert excinfo.value.returncode == 1
    assert "refusing start" in excinfo.value.stderr
    assert "refusing start" in caplog.text


def test_undeclared_event_is_skipped_after_negotiation(env: Environment, install_callout, callout_log: Path) -> None:
    install_callout("start-only.sh")
    invoker = CalloutInvoker(env)

    assert not invoker.invoke(_event(Event.PRE, Action.DEFINE)).resolved
    assert invoker.invoke(_event(Event.PRE, Action.START)).resolved
    assert _calls(callout_log) == [f"pre start none {IDENTITY.uuid} matrix"]


def test_version_2_script_is_never_invoked_for_live(env: Environment, install_callout, callout_log: Path) -> None:
    install_callout("v2.sh")
    invoker = CalloutInvoker(env)

    assert not invoker.supports_live(IDENTITY, RECORD)
    assert not invoker.invoke(_event(Event.LIVE, Action.MODIFY)).resolved
    assert invoker.invoke(_event(Event.PRE, Action.MODIFY)).resolved
    assert not any(line.startswith("live") for line in read_lines(callout_log))


@pytest.mark.parametrize("fixture", ["legacy.sh", "bad-json.sh", "no-version.sh"])
def test_unnegotiated_script_is_legacy(env: Environment, install_callout, callout_log: Path, fixture: str) -> None:
    install_callout(fixture)
    invoker = CalloutInvoker(env)

    assert not invoker.invoke(_event(Event.LIVE, Action.MODIFY)).resolved
    assert invoker.invoke(_event(Event.POST, Action.MODIFY, State.SUCCESS)).resolved
    assert _calls(callout_log) == [f"post modify success {IDENTITY.uuid} matrix"]


def test_get_attributes(env: Environment, install_callout, callout_log: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    install_callout("v3.sh", command=False)
    invoker = CalloutInvoker(env)

    assert invoker.get_attributes(IDENTITY, RECORD) is None

    monkeypatch.setenv("CALLOUT_ATTRS", "[{}]")
    assert invoker.get_attributes(IDENTITY, RECORD) == ()

    monkeypatch.setenv("CALLOUT_ATTRS", '[{"assign_adapter":"5"},{"assign_domain":"0xab"}]')
    assert invoker.get_attributes(IDENTITY, RECORD) == (("assign_adapter", "5"), ("assign_domain", "0xab"))


def test_get_attributes_rejects_malformed_output(env: Environment, install_callout, callout_log: Path) -> None:
    install_callout("bad-attrs.sh", command=False)

    with pytest.raises(CalloutFailure, match="Invalid JSON received from callout script"):
        CalloutInvoker(env).get_attributes(IDENTITY, RECORD)


def test_notifiers_all_run_in_order(env: Environment, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    log = tmp_path / "order"
    write_script(env.notifier_dir / "20-second", f'echo second >> "{log}"\n')
    write_script(env.notifier_dir / "10-first", f'echo first >> "{log}"\necho oops >&2\nexit 3\n')
    write_script(env.notifier_dir / "30-args", f'echo "$@" >> "{log}"\n')

    NotifierBroadcaster(env).broadcast(_event(Event.NOTIFY, Action.START, State.FAILURE))

    assert read_lines(log) == [
        "first",
        "second",
        f"-t vfio_ap-passthrough -e notify -a start -s failure -u {IDENTITY.uuid} -p matrix",
    ]
    assert "failed with status 3" in caplog.text
