"""
Asynchronous execution of the operating-system networking tools.

Every iptables, ip, nmcli, systemctl and diagnostic invocation goes through
CommandExecutor, so the rest of the package only deals with structured results
and the error taxonomy in piwifi.errors.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from ..errors import CommandTimeoutError, ExternalToolError
from ..utils.files import atomic_write_text

logger = logging.getLogger(__name__)

REDACTED = "******"


@dataclass
class CommandResult:
    """Outcome of one external program invocation."""

    args: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandExecutor:
    """Runs external programs without blocking the event loop.

    Args:
        use_sudo: Prefix privileged commands with sudo. Defaults to True
            unless the process already runs as root.
    """

    def __init__(self, use_sudo: Optional[bool] = None):
        if use_sudo is None:
            use_sudo = hasattr(os, "geteuid") and os.geteuid() != 0
        self.use_sudo = use_sudo

    def build_command(self, program: str, args: Sequence[str], privileged: bool = False) -> List[str]:
        cmd = [program, *args]
        if privileged and self.use_sudo:
            cmd = ["sudo", *cmd]
        return cmd

    @staticmethod
    def _mask(cmd: Sequence[str], redact: Iterable[str]) -> str:
        secrets = {value for value in redact if value}
        return " ".join(REDACTED if part in secrets else part for part in cmd)

    async def run(
        self,
        program: str,
        args: Sequence[str] = (),
        privileged: bool = False,
        check: bool = True,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        redact: Iterable[str] = (),
    ) -> CommandResult:
        """Run a program and capture its output.

        Args:
            program: Executable name
            args: Arguments passed verbatim (no shell)
            privileged: Run with elevated rights
            check: If True, raise ExternalToolError on non-zero exit code
            timeout: Wall-clock bound in seconds; the child is killed on expiry
            input_text: Text written to the child's stdin
            redact: Argument values masked in log and error messages

        Returns:
            CommandResult with decoded stdout/stderr
        """
        redact = tuple(redact)
        cmd = self.build_command(program, args, privileged)
        printable = self._mask(cmd, redact)
        logger.debug(f"Running command: {printable}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if input_text is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.error(f"Failed to execute {printable}: {e}")
            raise ExternalToolError(program, None, message=f"Failed to execute {program}: {e}") from e

        stdin_bytes = input_text.encode() if input_text is not None else None
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(stdin_bytes), timeout=timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            logger.warning(f"Command timed out after {timeout}s: {printable}")
            raise CommandTimeoutError(program, timeout) from e

        result = CommandResult(
            args=cmd,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
        )

        if check and not result.ok:
            error_msg = result.stderr.strip() or result.stdout.strip()
            for secret in redact:
                if secret:
                    error_msg = error_msg.replace(secret, REDACTED)
            logger.error(f"Command failed: {printable}, error: {error_msg}")
            raise ExternalToolError(program, result.returncode, error_msg)

        return result

    async def write_file(self, path: Union[str, Path], content: str, mode: int = 0o644) -> None:
        """Replace a root-owned file such as the dnsmasq drop-in or the saved ruleset.

        As root the file is written in-process via temp file and rename. Under
        sudo the content is streamed to ``install`` on stdin, which creates the
        parent directory and sets the mode.

        Raises:
            ConfigIOError: in-process write failed
            ExternalToolError: install failed
        """
        path = Path(path)
        if not self.use_sudo:
            atomic_write_text(path, content, mode)
            return
        await self.run(
            "install",
            ["-D", "-m", f"{mode:o}", "/dev/stdin", str(path)],
            privileged=True,
            input_text=content,
        )
