from __future__ import annotations

import shutil
import stat
from collections.abc import Callable
from pathlib import Path
from uuid import UUID

import pytest

from mdevctl.core.environment import Environment

CALLOUT_FIXTURES = Path(__file__).parent / "data" / "callouts"


def make_executable(path: Path) -> None:
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def write_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    make_executable(path)
    return path


def read_lines(path: Path) -> list[str]:
    if not path.exists():
        return []
    return path.read_text(encoding="utf-8").splitlines()


@pytest.fixture
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Environment:
    """A scratch root with every directory mdevctl expects."""
    env = Environment(root=tmp_path / "root")
    for directory in env.required_dirs():
        directory.mkdir(parents=True)
    env.mdev_base.mkdir(parents=True)
    env.parent_base.mkdir(parents=True)
    monkeypatch.setenv("MDEVCTL_ENV_ROOT", str(env.root))
    return env


@pytest.fixture
def callout_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log = tmp_path / "callouts.log"
    monkeypatch.setenv("CALLOUT_LOG", str(log))
    return log


@pytest.fixture
def notify_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log = tmp_path / "notify.log"
    monkeypatch.setenv("NOTIFY_LOG", str(log))
    return log


@pytest.fixture
def install_callout(env: Environment) -> Callable[..., Path]:
    """Copy a callout fixture into the scratch root behind a catch-all locator."""

    def _install(fixture: str, *, command: bool = True, get: bool = True, locator: str = "50-fixture") -> Path:
        target = env.scripts_base / "callouts" / fixture
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy(CALLOUT_FIXTURES / fixture, target)
        make_executable(target)
        if command:
            write_script(env.command_locator_dir / locator, f'echo "{target}"\n')
        if get:
            write_script(env.get_locator_dir / locator, f'echo "{target}"\n')
        return target

    return _install


@pytest.fixture
def install_notifier(env: Environment) -> Callable[[str], Path]:
    def _install(name: str = "10-notifier") -> Path:
        target = env.notifier_dir / name
        shutil.copy(CALLOUT_FIXTURES / "notifier.sh", target)
        make_executable(target)
        return target

    return _install


@pytest.fixture
def add_parent(env: Environment) -> Callable[..., Path]:
    """Register a parent device supporting the given types in the fake sysfs tree."""

    def _add(parent: str, types: dict[str, int], *, device_api: str = "vfio-ccw") -> Path:
        parent_dir = env.parent_base / parent
        for typename, instances in types.items():
            type_dir = parent_dir / "mdev_supported_types" / typename
            type_dir.mkdir(parents=True)
            (type_dir / "available_instances").write_text(f"{instances}\n", encoding="utf-8")
            (type_dir / "device_api").write_text(f"{device_api}\n", encoding="utf-8")
        return parent_dir

    return _add


@pytest.fixture
def add_active(env: Environment) -> Callable[..., Path]:
    """Make `uuid` appear as a running device of `mdev_type` on `parent`."""

    def _add(uuid: UUID, parent: str, mdev_type: str) -> Path:
        device_dir = env.root / "sys/devices" / parent / str(uuid)
        device_dir.mkdir(parents=True)
        type_dir = env.parent_base / parent / "mdev_supported_types" / mdev_type
        type_dir.mkdir(parents=True, exist_ok=True)
        (device_dir / "mdev_type").symlink_to(type_dir)
        (env.mdev_base / str(uuid)).symlink_to(device_dir)
        return device_dir

    return _add
