"""Container runtime collaborator (podman or docker CLI)."""

import logging
from pathlib import Path

from ..core.commands import CommandResult, CommandRunner


class ContainerRuntime:
    def __init__(self, runner: CommandRunner, binary: str = "podman", timeout_seconds: float = 120.0):
        self._runner = runner
        self._binary = binary
        self._timeout_seconds = timeout_seconds

    @property
    def is_podman(self) -> bool:
        return Path(self._binary).name == "podman"

    async def prune_build_cache(self) -> CommandResult:
        if self.is_podman:
            argv = [self._binary, "image", "prune", "--build-cache", "--force"]
        else:
            argv = [self._binary, "builder", "prune", "--force"]

        result = await self._runner.run(argv, timeout_seconds=self._timeout_seconds)
        if result.ok:
            logging.info(f"Pruned {self._binary} build cache")
        else:
            logging.warning(f"Build cache prune failed: {result.error_message}")
        return result

