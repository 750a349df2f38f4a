"""Tests for the cache-guarded media pipeline."""

import json

import pytest
from fakes import ExpiringCredentials, FakeSource, FakeTarget, RecordingSleep, no_sleep

from cms_migration.client.credentials import CredentialBroker
from cms_migration.client.exceptions import AuthExhaustedError
from cms_migration.client.target_client import TargetClient
from cms_migration.migration.fetcher import PaginatedFetcher
from cms_migration.migration.identity import IdentityMapStore
from cms_migration.migration.media import ImageCache, MediaPipeline
from cms_migration.utils.retry import fetch_policy, media_policy

LOGO_PATH = "/sites/default/files/logo.png"


@pytest.fixture
def pipeline_factory(config, source: FakeSource, target: FakeTarget):
    def factory(sleep=no_sleep, identity=None, default_uploader=None) -> MediaPipeline:
        broker = CredentialBroker(config.source, rate_limit=0, transport=source.transport())
        fetcher = PaginatedFetcher(
            broker, retry_policy=fetch_policy().with_sleep(no_sleep), sleep=no_sleep
        )
        target_client = TargetClient(
            config.target,
            rate_limit=0,
            retry_policy=fetch_policy().with_sleep(no_sleep),
            transport=target.transport(),
        )
        pipeline = MediaPipeline(
            broker,
            fetcher,
            target_client,
            ImageCache(config.paths.image_map_path).load(),
            config.paths.image_error_log_path,
            retry_policy=media_policy(2, 0.5).with_sleep(sleep),
            identity=identity,
            default_uploader=default_uploader,
        )
        return pipeline

    return factory


def downloads(source: FakeSource, path: str = LOGO_PATH) -> int:
    return source.paths().count(path)


class TestTransferAsset:
    @pytest.mark.asyncio
    async def test_two_calls_one_download_one_upload(self, pipeline_factory, source, target):
        source.add_file("file-uuid-1", "logo.png")
        pipeline = pipeline_factory()

        first = await pipeline.transfer_asset("file-uuid-1", "folder-logos")
        second = await pipeline.transfer_asset("file-uuid-1", "folder-logos")

        assert first == second == "file-1"
        assert downloads(source) == 1
        assert len(target.uploads) == 1

    @pytest.mark.asyncio
    async def test_cache_survives_restart(self, pipeline_factory, source, target, config):
        source.add_file("file-uuid-1", "logo.png")
        await pipeline_factory().transfer_asset("file-uuid-1")

        saved = json.loads(config.paths.image_map_path.read_text())
        assert saved == {"file-uuid-1": "file-1"}

        again = await pipeline_factory().transfer_asset("file-uuid-1")
        assert again == "file-1"
        assert len(target.uploads) == 1

    @pytest.mark.asyncio
    async def test_upload_carries_metadata(self, pipeline_factory, source, target, tmp_path):
        source.add_file("file-uuid-1", "logo.png", uid="user-9")
        identity = IdentityMapStore(tmp_path / "maps")
        identity.record_mapping("users", "user-9", "target-user-9")

        await pipeline_factory(identity=identity).transfer_asset("file-uuid-1", "folder-logos")

        body = target.uploads[0].content
        assert b'name="folder"' in body and b"folder-logos" in body
        assert b"target-user-9" in body
        assert b'name="filename_download"' in body
        assert b'filename="logo.png"' in body
        assert b"png-bytes" in body

    @pytest.mark.asyncio
    async def test_default_uploader_when_owner_unmapped(self, pipeline_factory, source, target):
        source.add_file("file-uuid-1", "logo.png", uid="user-unknown")

        await pipeline_factory(default_uploader="admin-id").transfer_asset("file-uuid-1")

        assert b"admin-id" in target.uploads[0].content

    @pytest.mark.asyncio
    async def test_none_id_short_circuits(self, pipeline_factory, source, target):
        assert await pipeline_factory().transfer_asset(None) is None
        assert source.requests == []
        assert target.requests == []

    @pytest.mark.asyncio
    async def test_failed_download_is_retried_then_logged(
        self, pipeline_factory, source, target, config
    ):
        source.add_file("file-uuid-1", "logo.png")
        source.statuses[LOGO_PATH] = 500
        sleep = RecordingSleep()

        result = await pipeline_factory(sleep=sleep).transfer_asset("file-uuid-1", "f")

        assert result is None
        assert downloads(source) == 3
        assert sleep.calls == [0.5, 1.0]
        assert target.uploads == []
        log = config.paths.image_error_log_path.read_text()
        assert "source_file_id='file-uuid-1'" in log
        assert "ServerError" in log

    @pytest.mark.asyncio
    async def test_empty_download_is_a_failure(self, pipeline_factory, source, target):
        source.add_file("file-uuid-1", "logo.png", content=b"")

        assert await pipeline_factory().transfer_asset("file-uuid-1") is None
        assert downloads(source) == 3
        assert target.uploads == []

    @pytest.mark.asyncio
    async def test_missing_metadata_is_a_failure(self, pipeline_factory, config):
        assert await pipeline_factory().transfer_asset("no-such-file") is None
        assert "File metadata not found" in config.paths.image_error_log_path.read_text()

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, pipeline_factory, source, target):
        source.add_file("file-uuid-1", "logo.png")
        source.statuses[LOGO_PATH] = 404
        pipeline = pipeline_factory()

        assert await pipeline.transfer_asset("file-uuid-1") is None
        del source.statuses[LOGO_PATH]
        assert await pipeline.transfer_asset("file-uuid-1") == "file-1"

    @pytest.mark.asyncio
    async def test_unauthorized_download_resets_broker(
        self, pipeline_factory, source, target, config
    ):
        source.add_file("file-uuid-1", "logo.png")
        source.statuses[LOGO_PATH] = 401
        pipeline = pipeline_factory()

        assert await pipeline.transfer_asset("file-uuid-1") is None

        assert not pipeline.broker.is_authenticated
        assert downloads(source) == 1
        assert target.uploads == []
        assert "AuthenticationError" in config.paths.image_error_log_path.read_text()

    @pytest.mark.asyncio
    async def test_failed_reauthentication_propagates(self, pipeline_factory, source, target):
        credentials = ExpiringCredentials(source)
        source.add_file("file-uuid-1", "logo.png")
        source.add_file("file-uuid-2", "avatar.png")
        source.statuses[LOGO_PATH] = 401
        pipeline = pipeline_factory()

        assert await pipeline.transfer_asset("file-uuid-1") is None
        with pytest.raises(AuthExhaustedError):
            await pipeline.transfer_asset("file-uuid-2")

        assert len(credentials.checks) == 2
        assert target.uploads == []

    @pytest.mark.asyncio
    async def test_cache_write_failure_keeps_upload(self, pipeline_factory, source, target, config):
        source.add_file("file-uuid-1", "logo.png")
        # a file where the cache directory should be
        config.paths.csv_path.write_text("occupied")
        pipeline = pipeline_factory()

        assert await pipeline.transfer_asset("file-uuid-1") == "file-1"
        assert await pipeline.transfer_asset("file-uuid-1") == "file-1"

        assert pipeline.cache.get("file-uuid-1") == "file-1"
        assert len(target.uploads) == 1


class TestImageCache:
    def test_unreadable_cache_starts_empty(self, tmp_path):
        path = tmp_path / "image_map.json"
        path.write_text("garbage")
        cache = ImageCache(path).load()
        assert len(cache) == 0

    def test_put_persists(self, tmp_path):
        cache = ImageCache(tmp_path / "csv" / "image_map.json").load()
        cache.put("src", "dst")
        assert cache.get("src") == "dst"
        assert ImageCache(cache.path).load().get("src") == "dst"
