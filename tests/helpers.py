"""Shared builders for CommandRunner results."""

from storage_engine.core.commands import CommandResult


def ok_result(*argv: str, stdout: str = "") -> CommandResult:
    return CommandResult(argv=tuple(argv) or ("true",), returncode=0, stdout=stdout)


def failed_result(*argv: str, stderr: str = "boom", returncode: int = 1) -> CommandResult:
    return CommandResult(argv=tuple(argv) or ("false",), returncode=returncode, stderr=stderr)
