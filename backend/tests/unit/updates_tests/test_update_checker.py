"""
Unit tests for the update checker watch cycle.

Tests verify:
- Result tag selection from tag candidates
- Remote and local digest resolution when digests are watched
- Registry failures are recorded on the container, not raised
- check_all statistics and emitted container reports
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from event_bus import EventType
from updates.registry_client import ManifestDescriptor, RegistryError, RegistryRequestError
from updates.update_checker import UpdateChecker


@pytest.fixture
def checker(registry_client, event_bus):
    return UpdateChecker(registry_client, event_bus)


@pytest.fixture
def digest_container(make_container):
    return make_container(
        tag="1.2.3",
        digest_watch=True,
        digest_value="sha256:old",
        digest_repo="sha256:repo",
    )


class TestFindNewVersion:
    """UpdateChecker.find_new_version"""

    @pytest.mark.asyncio
    async def test_best_candidate_becomes_result_tag(self, checker, container):
        with patch.object(checker.registry, "list_tags", AsyncMock(return_value=["1.3.0", "1.2.3", "latest"])), \
             patch.object(checker.registry, "resolve_manifest", AsyncMock()) as resolve:
            result, image = await checker.find_new_version(container)

        assert result.tag == "1.3.0"
        assert result.digest is None
        assert image == container.image
        resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_current_tag_when_no_candidate(self, checker, make_container):
        container = make_container(tag="latest", semver=False)
        with patch.object(checker.registry, "list_tags", AsyncMock(return_value=["1.0.0", "latest"])):
            result, _ = await checker.find_new_version(container)

        assert result.tag == "latest"

    @pytest.mark.asyncio
    async def test_digest_watch_resolves_remote_and_local_digests(self, checker, digest_container):
        resolve = AsyncMock(side_effect=[
            ManifestDescriptor(digest="sha256:remote", version=2, created="2025-01-01T00:00:00.123456789Z"),
            ManifestDescriptor(digest="sha256:local", version=2),
        ])
        with patch.object(checker.registry, "list_tags", AsyncMock(return_value=["1.3.0"])), \
             patch.object(checker.registry, "resolve_manifest", resolve):
            result, image = await checker.find_new_version(digest_container)

        assert result.tag == "1.3.0"
        assert result.digest == "sha256:remote"
        assert result.created == datetime(2025, 1, 1, 0, 0, 0, 123456, tzinfo=timezone.utc)
        assert image.digest.value == "sha256:local"
        assert digest_container.image.digest.value == "sha256:old"

        remote_call, local_call = resolve.call_args_list
        assert remote_call.args[0].tag.value == "1.3.0"
        assert local_call.args[1] == "sha256:repo"

    @pytest.mark.asyncio
    async def test_legacy_manifest_keeps_local_digest(self, checker, digest_container):
        resolve = AsyncMock(return_value=ManifestDescriptor(digest="sha256:remote", version=1))
        with patch.object(checker.registry, "list_tags", AsyncMock(return_value=[])), \
             patch.object(checker.registry, "resolve_manifest", resolve):
            result, image = await checker.find_new_version(digest_container)

        assert result.digest == "sha256:remote"
        assert image.digest.value == "sha256:old"
        assert resolve.await_count == 1


class TestCheckContainer:
    """UpdateChecker.check_container"""

    @pytest.mark.asyncio
    async def test_result_is_recorded_on_copy(self, checker, container):
        with patch.object(checker.registry, "list_tags", AsyncMock(return_value=["1.3.0"])):
            checked = await checker.check_container(container)

        assert checked.result.tag == "1.3.0"
        assert checked.update_available is True
        assert container.result is None

    @pytest.mark.asyncio
    async def test_registry_failure_sets_error(self, checker, container):
        error = RegistryRequestError(500, "https://registry/v2/library/nginx/tags/list")
        with patch.object(checker.registry, "list_tags", AsyncMock(side_effect=error)):
            checked = await checker.check_container(container)

        assert checked.result is None
        assert "500" in checked.error.message
        assert checked.update_available is False

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, checker, make_container):
        container = make_container(error={"message": "previous failure"})
        with patch.object(checker.registry, "list_tags", AsyncMock(return_value=[])):
            checked = await checker.check_container(container)

        assert checked.error is None
        assert checked.result.tag == "1.2.3"


class TestCheckAll:
    """UpdateChecker.check_all"""

    @pytest.mark.asyncio
    async def test_stats_and_reports(self, checker, event_bus, make_container):
        containers = [
            make_container(id="c1", name="web"),
            make_container(id="c2", name="db"),
            make_container(id="c3", name="cache"),
        ]
        reports = []
        batches = []

        async def on_report(event):
            reports.append(event.payload)

        async def on_reports(event):
            batches.append(event.payload)

        event_bus.subscribe(EventType.CONTAINER_REPORT, on_report)
        event_bus.subscribe(EventType.CONTAINER_REPORTS, on_reports)

        list_tags = AsyncMock(side_effect=[["1.3.0"], ["1.2.3"], RegistryError("boom")])
        with patch.object(checker.registry, "list_tags", list_tags):
            checked, stats = await checker.check_all(containers)

        assert stats == {"total": 3, "checked": 2, "updates_found": 1, "errors": 1}
        assert [c.name for c in checked] == ["web", "db", "cache"]
        assert checked[2].error.message == "boom"

        assert [r.container.name for r in reports] == ["web", "db", "cache"]
        assert [r.changed for r in reports] == [True, True, False]
        assert len(batches) == 1
        assert [r.container.name for r in batches[0]] == ["web", "db", "cache"]

    @pytest.mark.asyncio
    async def test_works_without_event_bus(self, registry_client, container):
        checker = UpdateChecker(registry_client)
        with patch.object(registry_client, "list_tags", AsyncMock(return_value=["2.0.0"])):
            checked, stats = await checker.check_all([container])

        assert stats["updates_found"] == 1
        assert checked[0].update_kind.semver_diff == "major"

    @pytest.mark.asyncio
    async def test_unchanged_result_is_reported_as_unchanged(self, checker, event_bus, make_container):
        container = make_container(result={"tag": "1.3.0"})
        reports = []

        async def on_report(event):
            reports.append(event.payload)

        event_bus.subscribe(EventType.CONTAINER_REPORT, on_report)
        with patch.object(checker.registry, "list_tags", AsyncMock(return_value=["1.3.0"])):
            await checker.check_all([container])

        assert reports[0].changed is False
