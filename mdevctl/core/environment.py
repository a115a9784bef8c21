"""Filesystem locations for sysfs, persisted configs, and scripts."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from mdevctl.core.errors import EnvironmentSetupError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Environment:
    """Every path mdevctl touches, derived from a single root.

    Tests point `root` at a scratch directory so commands never affect the
    running system.
    """

    root: Path

    @classmethod
    def from_env(cls) -> Environment:
        return cls(root=Path(os.environ.get("MDEVCTL_ENV_ROOT", "/")))

    @property
    def mdev_base(self) -> Path:
        return self.root / "sys/bus/mdev/devices"

    @property
    def parent_base(self) -> Path:
        return self.root / "sys/class/mdev_bus"

    @property
    def config_base(self) -> Path:
        return self.root / "etc/mdevctl.d"

    @property
    def scripts_base(self) -> Path:
        return self.config_base / "scripts.d"

    @property
    def command_locator_dir(self) -> Path:
        return self.scripts_base / "locators/command"

    @property
    def get_locator_dir(self) -> Path:
        return self.scripts_base / "locators/get"

    @property
    def notifier_dir(self) -> Path:
        return self.scripts_base / "notifiers"

    def required_dirs(self) -> tuple[Path, ...]:
        return (
            self.config_base,
            self.command_locator_dir,
            self.get_locator_dir,
            self.notifier_dir,
        )

    def self_check(self) -> None:
        LOGGER.debug("Checking that the environment under %s is sane", self.root)
        for directory in self.required_dirs():
            if not directory.is_dir():
                raise EnvironmentSetupError(
                    f"Required directory {directory} doesn't exist. "
                    "This may indicate a packaging or installation error"
                )
