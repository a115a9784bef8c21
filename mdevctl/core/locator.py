"""Mapping a device type to the callout script responsible for it."""

from __future__ import annotations

import logging
from pathlib import Path

from mdevctl.core.environment import Environment
from mdevctl.core.model import EventClass
from mdevctl.core.scripts import is_executable, iter_scripts, run_script

LOGGER = logging.getLogger(__name__)


class Locator:
    """Asks locator scripts, in name order, which callout handles a type.

    Each locator gets the device type as its only argument and prints a script
    path, or nothing when it does not apply. The first candidate that is an
    executable file wins. Results are cached for the life of the locator.
    """

    def __init__(self, env: Environment) -> None:
        self._dirs = {
            EventClass.COMMAND: env.command_locator_dir,
            EventClass.GET: env.get_locator_dir,
        }
        self._cache: dict[tuple[str, EventClass], Path | None] = {}

    def locate(self, mdev_type: str, event_class: EventClass) -> Path | None:
        key = (mdev_type, event_class)
        if key not in self._cache:
            self._cache[key] = self._search(mdev_type, event_class)
        return self._cache[key]

    def _search(self, mdev_type: str, event_class: EventClass) -> Path | None:
        directory = self._dirs[event_class]
        LOGGER.debug("Looking for a %s callout for type '%s' in %s", event_class.value, mdev_type, directory)
        for locator in iter_scripts(directory):
            candidate = self._ask(locator, mdev_type)
            if candidate is None:
                continue
            if not candidate.is_absolute():
                candidate = locator.parent / candidate
            if not is_executable(candidate):
                LOGGER.debug("Locator %s returned %s which is not an executable file", locator, candidate)
                continue
            LOGGER.debug("Found callout script %s for type '%s'", candidate, mdev_type)
            return candidate

        LOGGER.debug("No %s callout found for type '%s'", event_class.value, mdev_type)
        return None

    def _ask(self, locator: Path, mdev_type: str) -> Path | None:
        try:
            result = run_script(locator, [mdev_type])
        except OSError as exc:
            LOGGER.debug("Failed to execute locator script %s: %s", locator, exc)
            return None
        if result.returncode != 0:
            LOGGER.debug("Locator script %s failed with status %s", locator, result.returncode)
            return None
        output = result.stdout.strip()
        return Path(output) if output else None
