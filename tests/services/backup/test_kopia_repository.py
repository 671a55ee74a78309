import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from storage_engine.core.exceptions import RepositoryAuthError, RepositoryError, SnapshotError
from storage_engine.models import MANAGED_TAG, TagSet
from storage_engine.services.backup import KopiaRepository, parse_manifest, repository_session
from storage_engine.services.backup.repository import parse_kopia_time
from tests.helpers import failed_result, ok_result


def _manifest(snapshot_id, path, start, **tags):
    return {
        "id": snapshot_id,
        "source": {"host": "dagger", "userName": "root", "path": path},
        "startTime": start,
        "tags": {f"tag:{k}": v for k, v in tags.items()},
    }


LISTING = [
    _manifest("a1", "/var/lib/homebridge", "2024-05-01T02:00:00.123456789Z", service="homebridge", managed="engine"),
    _manifest("b2", "/var/lib/pihole", "2024-05-02T02:00:00Z", service="pihole", managed="engine"),
    _manifest("c3", "/var/lib/pihole", "2024-05-03T02:00:00Z", service="pihole"),
    _manifest("d4", "/var/lib/homebridge-old", "2024-05-04T02:00:00Z", service="homebridge-old", managed="engine"),
]


class TestKopiaRepository:
    @pytest.mark.asyncio
    async def test_connect_redacts_token(self, runner):
        repository = KopiaRepository(runner)

        await repository.connect("s3cr3t")

        argv = runner.run.await_args.args[0]
        assert argv == ["kopia", "repository", "connect", "from-config", "--token", "s3cr3t"]
        assert runner.run.await_args.kwargs["redact"] == ["s3cr3t"]
        assert repository.connected

    @pytest.mark.asyncio
    async def test_rejected_token_is_auth_error(self, runner):
        runner.run.side_effect = None
        runner.run.return_value = failed_result("kopia", stderr="invalid token s3cr3t")
        repository = KopiaRepository(runner)

        with pytest.raises(RepositoryAuthError) as exc_info:
            await repository.connect("s3cr3t")

        assert "s3cr3t" not in str(exc_info.value)
        assert runner.run.await_count == 1

    @pytest.mark.asyncio
    async def test_snapshot_passes_tags_and_parses_json(self, runner):
        output = json.dumps(_manifest("k9", "/var/lib/pihole", "2024-05-02T02:00:00Z", service="pihole"))
        runner.run.side_effect = None
        runner.run.return_value = ok_result("kopia", stdout=output)
        repository = KopiaRepository(runner)

        snapshot = await repository.snapshot("/var/lib/pihole", TagSet(["service:pihole", "type:persistent"]))

        argv = runner.run.await_args.args[0]
        assert argv == [
            "kopia", "snapshot", "create", "/var/lib/pihole", "--json",
            "--tags=service:pihole", "--tags=type:persistent",
        ]
        assert snapshot.id == "k9"
        assert snapshot.service == "pihole"

    @pytest.mark.asyncio
    async def test_snapshot_failure(self, runner):
        runner.run.side_effect = None
        runner.run.return_value = failed_result("kopia", stderr="no space left on device")

        with pytest.raises(SnapshotError, match="no space left"):
            await KopiaRepository(runner).snapshot("/var/lib/pihole", TagSet())

    @pytest.mark.asyncio
    async def test_list_filters_by_exact_tags_newest_first(self, runner):
        runner.run.side_effect = None
        runner.run.return_value = ok_result("kopia", stdout=json.dumps(LISTING))
        repository = KopiaRepository(runner)

        managed = await repository.list(tag_filter=[MANAGED_TAG])
        homebridge = await repository.list(tag_filter=[MANAGED_TAG, "service:homebridge"])
        limited = await repository.list(tag_filter=[MANAGED_TAG], max_results=1)

        assert [s.id for s in managed] == ["d4", "b2", "a1"]
        assert [s.id for s in homebridge] == ["a1"]
        assert [s.id for s in limited] == ["d4"]

    @pytest.mark.asyncio
    async def test_restore_failure(self, runner):
        runner.run.side_effect = None
        runner.run.return_value = failed_result("kopia", stderr="snapshot not found")

        with pytest.raises(RepositoryError):
            await KopiaRepository(runner).restore("zz", "/var/lib/pihole")


class TestRepositorySession:
    @pytest.mark.asyncio
    async def test_disconnects_after_body_error(self):
        repository = Mock()
        repository.connect = AsyncMock()
        repository.disconnect = AsyncMock()

        with pytest.raises(ValueError):
            async with repository_session(repository, "token"):
                raise ValueError("boom")

        repository.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disconnects_when_connect_fails(self):
        repository = Mock()
        repository.connect = AsyncMock(side_effect=RepositoryAuthError("rejected"))
        repository.disconnect = AsyncMock(side_effect=RepositoryError("not connected"))

        with pytest.raises(RepositoryAuthError):
            async with repository_session(repository, "token"):
                pass

        repository.disconnect.assert_awaited_once()


class TestManifestParsing:
    def test_nanosecond_timestamps(self):
        parsed = parse_kopia_time("2024-05-01T02:00:00.123456789Z")
        assert parsed == datetime(2024, 5, 1, 2, 0, 0, 123456, tzinfo=timezone.utc)

    def test_tags_without_prefix_are_ignored(self):
        snapshot = parse_manifest({"id": "x", "source": {"path": "/p"}, "tags": {"tag:service": "a", "other": "b"}})
        assert set(snapshot.tags) == {"service:a"}
