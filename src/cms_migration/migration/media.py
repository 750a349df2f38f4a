"""Media transfer from the source site to the target file store.

Each source file is downloaded and re-uploaded at most once across runs:
the image cache (``image_map.json``) maps source file UUIDs to target file
ids and is persisted after every successful transfer.
"""

import json
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from cms_migration.client.credentials import CredentialBroker
from cms_migration.client.exceptions import (
    AuthenticationError,
    AuthExhaustedError,
    CMSMigrationError,
    MediaTransferError,
)
from cms_migration.client.target_client import TargetClient
from cms_migration.migration.fetcher import PaginatedFetcher
from cms_migration.migration.models import MediaAsset, SourceRecord
from cms_migration.reporting.error_log import ErrorLog
from cms_migration.utils.logging import get_logger
from cms_migration.utils.retry import RetryPolicy, media_policy

if TYPE_CHECKING:
    from cms_migration.migration.identity import IdentityMapStore

logger = get_logger(__name__)

FILE_RESOURCE_PATH = "/file/file"


class ImageCache:
    """Persistent ``source file UUID -> target file id`` map.

    Args:
        path: Location of ``image_map.json``
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._entries: dict[str, str] = {}

    def load(self) -> "ImageCache":
        """Read the cache file if present.

        An unreadable or malformed file is logged and treated as empty.

        Returns:
            This cache, for chaining
        """
        if not self.path.exists():
            return self
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("image_cache_unreadable", path=str(self.path), error=str(e))
            return self
        if isinstance(data, dict):
            self._entries = {str(k): v for k, v in data.items()}
        logger.info("image_cache_loaded", path=str(self.path), entries=len(self._entries))
        return self

    def save(self) -> None:
        """Write every entry to disk.

        Raises:
            OSError: If the file or its directory cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._entries, indent=2), encoding="utf-8")

    def get(self, source_file_id: str) -> str | None:
        """Return the target file id for a source file, or None if never transferred."""
        return self._entries.get(source_file_id)

    def put(self, source_file_id: str, target_file_id: str) -> None:
        """Record a transfer and persist the whole cache immediately.

        The entry is kept in memory even when the save fails.

        Raises:
            OSError: If the cache file cannot be written
        """
        self._entries[source_file_id] = target_file_id
        self.save()

    def __len__(self) -> int:
        return len(self._entries)

    def values(self) -> list[str]:
        return list(self._entries.values())


def asset_from_record(record: SourceRecord) -> MediaAsset:
    """Build a MediaAsset from a ``file--file`` resource.

    Raises:
        MediaTransferError: If the resource carries no download URL
    """
    uri = record.attr("uri", {})
    url = uri.get("url") if isinstance(uri, dict) else None
    if not url:
        url = (record.links.get("self") or {}).get("href") if record.links else None
    if not url:
        raise MediaTransferError("File resource has no download URL", record.id)

    uploader = record.relationship_ref("uid")
    return MediaAsset(
        source_file_id=record.id,
        filename=record.attr("filename") or url.rsplit("/", 1)[-1],
        url=url,
        mime_type=record.attr("filemime"),
        uploader_id=uploader.id if uploader else None,
        created=record.attr("created"),
        changed=record.attr("changed"),
    )


class MediaPipeline:
    """Cache-guarded download and re-upload of source files.

    Args:
        broker: Credential broker for authenticated downloads
        fetcher: Fetcher used to read ``file--file`` metadata
        target: Target client receiving uploads
        cache: Image cache (loaded)
        error_log_path: Path of ``image_errors.log``
        retry_policy: Policy applied to download and upload separately
        identity: Identity store used to map source uploaders to target users
        default_uploader: Target user id used when no uploader maps
    """

    def __init__(
        self,
        broker: CredentialBroker,
        fetcher: PaginatedFetcher,
        target: TargetClient,
        cache: ImageCache,
        error_log_path: str | Path,
        retry_policy: RetryPolicy | None = None,
        identity: "IdentityMapStore | None" = None,
        default_uploader: str | None = None,
    ):
        self.broker = broker
        self.fetcher = fetcher
        self.target = target
        self.cache = cache
        self.error_log = ErrorLog(error_log_path)
        self.retry_policy = retry_policy or media_policy()
        self.identity = identity
        self.default_uploader = default_uploader

    async def transfer_asset(
        self, source_file_id: str | None, target_folder: str | None = None
    ) -> str | None:
        """Return the target file id for a source file, transferring it if needed.

        Transfer failures are appended to ``image_errors.log`` and reported
        as None. A 401 from the source download resets the credential broker.

        Args:
            source_file_id: Source ``file--file`` UUID (None short-circuits)
            target_folder: Target folder id for the upload

        Returns:
            Target file id, or None when there is nothing to transfer or the transfer failed

        Raises:
            AuthExhaustedError: If the source can no longer be authenticated
        """
        if not source_file_id:
            return None

        cached = self.cache.get(source_file_id)
        if cached:
            logger.debug("media_cache_hit", source_file_id=source_file_id, file_id=cached)
            return cached

        try:
            asset = await self.resolve_asset(source_file_id)
            content = await self.retry_policy.run(self._download, asset)
            uploaded = await self.retry_policy.run(
                self.target.upload_file,
                content,
                asset.filename,
                asset.mime_type,
                self._upload_metadata(asset, target_folder),
            )
            file_id = uploaded.get("id")
            if not file_id:
                raise MediaTransferError("Upload response carried no file id", source_file_id)
        except AuthExhaustedError:
            raise
        except (CMSMigrationError, httpx.HTTPError, OSError) as e:
            logger.warning(
                "media_transfer_failed",
                source_file_id=source_file_id,
                folder=target_folder,
                error=str(e),
            )
            self.error_log.append_fields(
                source_file_id=source_file_id,
                folder=target_folder,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None

        try:
            self.cache.put(source_file_id, file_id)
        except OSError as e:
            # the upload stands; the entry is saved with the next successful put
            logger.warning(
                "image_cache_save_failed",
                path=str(self.cache.path),
                source_file_id=source_file_id,
                error=str(e),
            )

        logger.info(
            "media_transferred",
            source_file_id=source_file_id,
            file_id=file_id,
            filename=asset.filename,
            size=len(content),
        )
        return file_id

    async def resolve_asset(self, source_file_id: str) -> MediaAsset:
        """Fetch ``file--file`` metadata for a source file UUID.

        Raises:
            MediaTransferError: If the metadata is missing or has no download URL
        """
        record = await self.fetcher.fetch_entity(FILE_RESOURCE_PATH, source_file_id)
        if record is None:
            raise MediaTransferError("File metadata not found", source_file_id)
        return asset_from_record(record)

    async def _download(self, asset: MediaAsset) -> bytes:
        client = await self.broker.get_authenticated_client()
        try:
            content = await client.download(asset.url)
        except AuthenticationError:
            logger.warning("media_download_unauthorized", source_file_id=asset.source_file_id)
            await self.broker.reset_authentication()
            raise
        if not content:
            raise MediaTransferError("Downloaded file is empty", asset.source_file_id)
        return content

    def _upload_metadata(self, asset: MediaAsset, target_folder: str | None) -> dict:
        uploader = None
        if self.identity is not None and asset.uploader_id:
            uploader = self.identity.lookup("users", asset.uploader_id)
        return {
            "title": asset.filename,
            "filename_download": asset.filename,
            "folder": target_folder,
            "uploaded_by": uploader or self.default_uploader,
            "uploaded_on": asset.created,
            "modified_on": asset.changed,
        }
