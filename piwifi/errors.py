"""
Exception hierarchy for the PiWifi control plane.

Validation errors are raised before any external side effect. Tool errors carry
the captured diagnostic text of the failing program.
"""

from typing import List, Optional, Sequence


class PiWifiError(Exception):
    """Base exception for router control plane errors."""


class ValidationError(PiWifiError, ValueError):
    """Malformed or out-of-range input."""


class NotFoundError(PiWifiError):
    """Referenced entity does not exist."""


class ConfigIOError(PiWifiError):
    """Reading or writing a configuration, alias or lease file failed."""


class ExternalToolError(PiWifiError):
    """An external program exited non-zero or could not be executed."""

    def __init__(self, program: str, returncode: Optional[int], stderr: str = "", message: Optional[str] = None):
        self.program = program
        self.returncode = returncode
        self.stderr = stderr
        if message is None:
            detail = stderr.strip() or "no output"
            message = f"{program} failed (exit {returncode}): {detail}"
        super().__init__(message)


class CommandTimeoutError(ExternalToolError):
    """An external program exceeded its wall-clock bound and was killed."""

    def __init__(self, program: str, timeout: float):
        self.timeout = timeout
        super().__init__(program, None, message=f"{program} timed out after {timeout:g}s")


class PartialApplyError(ExternalToolError):
    """A multi-step plan stopped part way through.

    Attributes:
        applied: Descriptions of the steps that completed before the failure
        failed_step: Description of the step that failed
        cause: The underlying tool error
        rolled_back: True if the applied steps were undone
    """

    def __init__(
        self,
        applied: Sequence[str],
        failed_step: str,
        cause: ExternalToolError,
        rolled_back: bool = False,
    ):
        self.applied: List[str] = list(applied)
        self.failed_step = failed_step
        self.cause = cause
        self.rolled_back = rolled_back
        state = "rolled back" if rolled_back else f"{len(self.applied)} step(s) left applied"
        super().__init__(
            cause.program,
            cause.returncode,
            cause.stderr,
            message=f"Step '{failed_step}' failed ({state}): {cause}",
        )
