"""Running external callout, locator, and notifier scripts."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Sequence
from pathlib import Path

from mdevctl.core.model import Action, DeviceIdentity, Event, State

LOGGER = logging.getLogger(__name__)


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def iter_scripts(directory: Path) -> list[Path]:
    """Scripts in `directory` in deterministic (name-sorted) order."""
    if not directory.is_dir():
        return []
    return sorted((p for p in directory.iterdir() if p.is_file()), key=lambda p: p.name)


def callout_args(
    mdev_type: str,
    event: Event,
    action: Action,
    state: State,
    identity: DeviceIdentity,
) -> list[str]:
    return [
        "-t", mdev_type,
        "-e", event.value,
        "-a", action.value,
        "-s", state.value,
        "-u", str(identity.uuid),
        "-p", identity.parent,
    ]


def run_script(
    script: Path,
    args: Sequence[str],
    stdin: str = "",
) -> subprocess.CompletedProcess[str]:
    """Run `script` to completion with `stdin`, capturing stdout and stderr.

    Raises OSError when the script cannot be spawned. There is no timeout: a
    hanging script blocks the caller.
    """
    LOGGER.debug("Executing %s %s", script, " ".join(args))
    return subprocess.run(
        [str(script), *args],
        input=stdin,
        check=False,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
    )


def log_stderr(script: Path, result: subprocess.CompletedProcess[str]) -> None:
    stderr = (result.stderr or "").strip()
    if stderr:
        LOGGER.warning("%s: %s", script.name, stderr)
    if result.returncode < 0:
        LOGGER.warning("Callout script %s was terminated by a signal", script)
