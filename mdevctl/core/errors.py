"""Domain-specific errors for mdevctl."""

from __future__ import annotations

from pathlib import Path


class MdevctlError(Exception):
    """Base error for mdevctl."""


class EnvironmentSetupError(MdevctlError):
    """Raised when required system directories are missing."""


class ConfigValidationError(MdevctlError):
    """Raised when a device config does not conform to schema or semantics."""


class ConfigLoadError(MdevctlError):
    """Raised when reading a device config fails."""


class ConfigWriteError(MdevctlError):
    """Raised when writing or removing a device config fails."""


class DeviceSelectionError(MdevctlError):
    """Raised when command arguments cannot resolve a single device."""


class SysfsError(MdevctlError):
    """Raised when the kernel view of a device rejects an operation."""


class CalloutError(MdevctlError):
    """Base callout error."""


class NegotiationError(CalloutError):
    """Raised when a script's capability declaration is absent or malformed."""


class CalloutFailure(CalloutError):
    """Raised when a resolved callout script fails or produces unusable output."""

    def __init__(
        self,
        message: str,
        *,
        script: Path,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.script = script
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class PipelineError(MdevctlError):
    """Raised when a command pipeline reports failure to its caller."""

    stage = "unknown"

    def __init__(self, identity, action, cause: Exception | None = None) -> None:
        self.identity = identity
        self.action = action
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(
            f"{action.value} of {identity.uuid} on parent {identity.parent} "
            f"failed at stage '{self.stage}'{detail}"
        )


class PreCalloutError(PipelineError):
    """Raised when a pre callout vetoes the primary action."""

    stage = "pre"


class PrimaryActionError(PipelineError):
    """Raised when the primary action itself fails."""

    stage = "execute"
