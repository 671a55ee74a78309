"""
Backup repository access.

BackupRepository is the protocol the coordinator depends on; KopiaRepository
drives the kopia CLI through CommandRunner. Each coordinator call opens its
own session (connect ... disconnect).
"""

import json
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Protocol

from ...core.commands import CommandRunner
from ...core.exceptions import RepositoryAuthError, RepositoryError, SnapshotError
from ...models import BackupSnapshot, TagSet


class BackupRepository(Protocol):
    async def connect(self, token: str) -> None: ...

    async def snapshot(self, path: str, tags: TagSet) -> BackupSnapshot: ...

    async def list(
        self, tag_filter: Iterable[str] = (), max_results: Optional[int] = None
    ) -> List[BackupSnapshot]: ...

    async def restore(self, snapshot_id: str, destination: str) -> None: ...

    async def disconnect(self) -> None: ...


@asynccontextmanager
async def repository_session(repository: BackupRepository, token: str) -> AsyncIterator[BackupRepository]:
    """Connect, yield and always disconnect, also when connect itself failed."""
    try:
        await repository.connect(token)
        yield repository
    finally:
        try:
            await repository.disconnect()
        except RepositoryError as e:
            logging.warning(f"Repository disconnect failed: {e}")


class KopiaRepository:
    def __init__(
        self,
        runner: CommandRunner,
        binary: str = "kopia",
        connect_timeout_seconds: float = 10.0,
        snapshot_timeout_seconds: float = 3600.0,
        restore_timeout_seconds: float = 3600.0,
        list_timeout_seconds: float = 60.0,
    ):
        self._runner = runner
        self._binary = binary
        self._connect_timeout_seconds = connect_timeout_seconds
        self._snapshot_timeout_seconds = snapshot_timeout_seconds
        self._restore_timeout_seconds = restore_timeout_seconds
        self._list_timeout_seconds = list_timeout_seconds
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, token: str) -> None:
        """
        Raises:
            RepositoryAuthError: token rejected or kopia unavailable. Never retried.
        """
        result = await self._runner.run(
            [self._binary, "repository", "connect", "from-config", "--token", token],
            timeout_seconds=self._connect_timeout_seconds,
            redact=[token],
        )
        if not result.ok:
            raise RepositoryAuthError(f"Repository connect failed: {_redact(result.error_message, token)}")
        self._connected = True
        logging.info("Connected to backup repository")

    async def snapshot(self, path: str, tags: TagSet) -> BackupSnapshot:
        result = await self._runner.run(
            [self._binary, "snapshot", "create", path, "--json", *tags.as_kopia_args()],
            timeout_seconds=self._snapshot_timeout_seconds,
        )
        if not result.ok:
            raise SnapshotError(path, result.error_message)

        try:
            manifest = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise SnapshotError(path, f"unreadable kopia output: {e}") from e

        snapshot = parse_manifest(manifest, fallback_path=path, fallback_tags=tags)
        logging.info(f"Snapshot {snapshot.id} created for {path}")
        return snapshot

    async def list(
        self, tag_filter: Iterable[str] = (), max_results: Optional[int] = None
    ) -> List[BackupSnapshot]:
        """Snapshots carrying every tag in tag_filter, newest first."""
        result = await self._runner.run(
            [self._binary, "snapshot", "list", "--all", "--json"],
            timeout_seconds=self._list_timeout_seconds,
        )
        if not result.ok:
            raise RepositoryError(f"Snapshot listing failed: {result.error_message}")

        try:
            manifests = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise RepositoryError(f"Unreadable snapshot listing: {e}") from e

        required = TagSet(tag_filter)
        snapshots = [parse_manifest(m) for m in manifests]
        snapshots = [s for s in snapshots if s.tags.matches(required)]
        snapshots.sort(key=lambda s: s.created_at, reverse=True)
        if max_results is not None:
            snapshots = snapshots[:max_results]
        return snapshots

    async def restore(self, snapshot_id: str, destination: str) -> None:
        result = await self._runner.run(
            [self._binary, "snapshot", "restore", snapshot_id, destination],
            timeout_seconds=self._restore_timeout_seconds,
        )
        if not result.ok:
            raise RepositoryError(f"Restore of {snapshot_id} failed: {result.error_message}")
        logging.info(f"Restored snapshot {snapshot_id} into {destination}")

    async def disconnect(self) -> None:
        result = await self._runner.run(
            [self._binary, "repository", "disconnect"], timeout_seconds=self._connect_timeout_seconds
        )
        self._connected = False
        if not result.ok:
            raise RepositoryError(f"Repository disconnect failed: {result.error_message}")


def parse_manifest(
    manifest: Dict[str, Any],
    fallback_path: str = "",
    fallback_tags: Optional[TagSet] = None,
) -> BackupSnapshot:
    """BackupSnapshot from a kopia snapshot manifest; tags arrive as {"tag:key": "value"}."""
    raw_tags = manifest.get("tags") or {}
    tags = TagSet(f"{key[len('tag:'):]}:{value}" for key, value in raw_tags.items() if key.startswith("tag:"))
    if not tags and fallback_tags:
        tags = fallback_tags

    source = manifest.get("source") or {}
    return BackupSnapshot(
        id=str(manifest.get("id", "")),
        source_path=source.get("path") or fallback_path,
        tags=tags,
        created_at=parse_kopia_time(manifest.get("startTime")),
    )


_FRACTION = re.compile(r"\.(\d+)")


def parse_kopia_time(value: Optional[str]) -> datetime:
    """kopia writes RFC 3339 with nanoseconds; datetime takes at most microseconds."""
    if not value:
        return datetime.now(timezone.utc)
    normalized = value.replace("Z", "+00:00")
    normalized = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalized, count=1)
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        logging.warning(f"Unparseable snapshot time: {value}")
        return datetime.now(timezone.utc)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _redact(text: str, secret: str) -> str:
    return text.replace(secret, "***") if secret else text
