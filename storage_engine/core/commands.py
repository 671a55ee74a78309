"""
Typed subprocess execution for external tools (mount, ping, kopia, rsync, systemctl, podman).

Arguments are always passed as an argv list, never through a shell, and every
call carries an explicit timeout. A timeout is reported like any other failure.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence


@dataclass(frozen=True)
class CommandResult:
    argv: tuple
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0
    not_found: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def error_message(self) -> str:
        if self.not_found:
            return f"{self.argv[0]}: command not found"
        if self.timed_out:
            return f"{self.argv[0]} timed out after {self.duration_seconds:.1f}s"
        return self.stderr.strip() or self.stdout.strip() or f"exit code {self.returncode}"


class CommandRunner:
    def __init__(self, default_timeout_seconds: float = 30.0):
        self._default_timeout_seconds = default_timeout_seconds

    async def run(
        self,
        argv: Sequence[str],
        timeout_seconds: Optional[float] = None,
        redact: Iterable[str] = (),
    ) -> CommandResult:
        """
        Run argv and capture its output.

        Args:
            argv: Program and arguments.
            timeout_seconds: Hard limit; the process is killed when it expires.
            redact: Values (tokens, passwords) masked in log output.
        """
        timeout = timeout_seconds if timeout_seconds is not None else self._default_timeout_seconds
        redact = tuple(redact)
        printable = _redacted(argv, redact)
        logging.debug(f"Running: {printable}")

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError:
            logging.warning(f"Command not found: {argv[0]}")
            return CommandResult(argv=tuple(argv), returncode=None, not_found=True)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logging.error(f"Command timed out after {timeout}s: {printable}")
            process.kill()
            await process.wait()
            return CommandResult(
                argv=tuple(argv),
                returncode=None,
                timed_out=True,
                duration_seconds=time.monotonic() - started,
            )

        result = CommandResult(
            argv=tuple(argv),
            returncode=process.returncode,
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
            duration_seconds=time.monotonic() - started,
        )
        if not result.ok:
            logging.debug(f"Command failed ({result.returncode}): {printable} - {_redact_text(result.error_message, redact)}")
        return result


def _redacted(argv: Sequence[str], redact: Iterable[str]) -> str:
    return _redact_text(" ".join(argv), redact)


def _redact_text(text: str, redact: Iterable[str]) -> str:
    for secret in redact:
        if secret:
            text = text.replace(secret, "***")
    return text
