from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional, Tuple
from urllib.parse import unquote, urlparse

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
)
from azure.storage.blob import BlobServiceClient, ContentSettings

from medley.errors import ArtifactNotFoundError, AssetFetchError, OutputStoreError

logger = logging.getLogger("blob_storage")

OUTPUT_PREFIX = "medley_"
OUTPUT_CONTENT_TYPE = "audio/mpeg"


def _clean_path(p: str) -> str:
    """
    Normalize blob path:
    - no leading slash
    - normalize backslashes
    - remove '.', '..' segments
    """
    s = (p or "").strip().replace("\\", "/").lstrip("/")
    segments = [seg.strip() for seg in s.split("/") if seg.strip() and seg.strip() not in (".", "..")]
    return "/".join(segments)


def parse_asset_ref(ref: str, default_container: str) -> Tuple[str, str]:
    """
    Accepts:
      az://{container}/{blob_path}
      https://{acct}.blob.core.windows.net/{container}/{blob_path}?{sas}
      s3://{bucket}/{key}            (bucket is used as the container name)
      {blob_path}                    (inside default_container)
    Returns: (container, blob_path)
    """
    s = (ref or "").strip()
    if not s:
        raise ValueError("empty asset reference")

    u = urlparse(s)
    scheme = (u.scheme or "").lower()
    if scheme in ("az", "s3"):
        container, path = u.netloc, _clean_path(unquote(u.path))
    elif scheme in ("http", "https"):
        parts = unquote(u.path or "").lstrip("/").split("/", 1)
        if len(parts) != 2:
            raise ValueError(f"blob url has no container/path: {s}")
        container, path = parts[0], _clean_path(parts[1])
    else:
        container, path = default_container, _clean_path(s)

    if not container or not path:
        raise ValueError(f"invalid asset reference: {s}")
    return container, path


def output_blob_name(file_id: str) -> str:
    return f"{OUTPUT_PREFIX}{file_id}.mp3"


def _describe(e: AzureError) -> str:
    if isinstance(e, ResourceNotFoundError):
        return "not found"
    if isinstance(e, ClientAuthenticationError):
        return "access denied"
    if isinstance(e, HttpResponseError) and e.status_code == 403:
        return "access denied"
    if isinstance(e, ServiceRequestError):
        return "storage unavailable"
    return f"storage error: {e.message if getattr(e, 'message', None) else e}"


class AzureBlobFetcher:
    """Reads catalog assets (MIDI / token blobs) as raw bytes."""

    def __init__(self, blob_service: BlobServiceClient, *, default_container: str):
        self.blob_service = blob_service
        self.default_container = default_container

    def _sync_download(self, container: str, path: str) -> bytes:
        blob_client = self.blob_service.get_blob_client(container=container, blob=path)
        return blob_client.download_blob().readall()

    async def fetch(self, ref: str) -> bytes:
        try:
            container, path = parse_asset_ref(ref, self.default_container)
        except ValueError as e:
            raise AssetFetchError(ref, str(e)) from e

        try:
            data = await asyncio.to_thread(self._sync_download, container, path)
        except AzureError as e:
            raise AssetFetchError(ref, _describe(e)) from e

        logger.debug("asset_fetched", extra={"container": container, "path": path, "bytes": len(data)})
        return data


@dataclass(frozen=True)
class StoredArtifact:
    filename: str
    size: int
    chunks: AsyncIterator[bytes]


async def _iter_chunks(downloader) -> AsyncIterator[bytes]:
    it = downloader.chunks()
    while True:
        chunk = await asyncio.to_thread(next, it, None)
        if chunk is None:
            break
        yield chunk


class AzureOutputStore:
    """Generated MP3s, stored flat as medley_{file_id}.mp3 in one container."""

    def __init__(self, blob_service: BlobServiceClient, *, container: str, auto_create: bool = True):
        self.blob_service = blob_service
        self.container = container
        self._container_client = blob_service.get_container_client(container)
        self._auto_create = auto_create
        self._container_checked = False

    def _ensure_container_exists_best_effort(self) -> None:
        if self._container_checked or not self._auto_create:
            return
        try:
            self._container_client.create_container()
        except ResourceExistsError:
            pass
        except AzureError as e:
            logger.warning("output_container_create_failed", extra={"container": self.container, "error": str(e)})
        self._container_checked = True

    def _sync_upload(self, blob_name: str, data: bytes) -> None:
        self._ensure_container_exists_best_effort()
        blob_client = self._container_client.get_blob_client(blob_name)
        blob_client.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=OUTPUT_CONTENT_TYPE),
        )

    async def put(self, file_id: str, data: bytes) -> str:
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError("data must be bytes")
        blob_name = output_blob_name(file_id)
        try:
            await asyncio.to_thread(self._sync_upload, blob_name, bytes(data))
        except AzureError as e:
            raise OutputStoreError(f"failed to store output {blob_name}: {_describe(e)}") from e

        logger.info("output_stored", extra={"container": self.container, "blob": blob_name, "bytes": len(data)})
        return blob_name

    async def open(self, file_id: str) -> StoredArtifact:
        blob_name = output_blob_name(file_id)
        blob_client = self._container_client.get_blob_client(blob_name)
        try:
            downloader = await asyncio.to_thread(blob_client.download_blob)
        except ResourceNotFoundError as e:
            raise ArtifactNotFoundError(file_id) from e

        return StoredArtifact(
            filename=blob_name,
            size=int(downloader.properties.size or 0),
            chunks=_iter_chunks(downloader),
        )

    def _sync_delete_older_than(self, cutoff: datetime) -> int:
        deleted = 0
        for blob in self._container_client.list_blobs(name_starts_with=OUTPUT_PREFIX):
            last_modified: Optional[datetime] = blob.last_modified
            if last_modified is None or last_modified >= cutoff:
                continue
            try:
                self._container_client.delete_blob(blob.name)
                deleted += 1
            except ResourceNotFoundError:
                continue
        return deleted

    async def delete_older_than(self, hours: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=int(hours))
        return await asyncio.to_thread(self._sync_delete_older_than, cutoff)

    async def ping(self) -> bool:
        try:
            await asyncio.to_thread(self._container_client.get_container_properties)
            return True
        except AzureError as e:
            logger.warning("output_store_ping_failed", extra={"error": str(e)})
            return False


def blob_service_from_connection_string(connection_string: Optional[str]) -> BlobServiceClient:
    cs = (connection_string or "").strip()
    if not cs:
        raise RuntimeError("missing_azure_storage_connection_string")
    return BlobServiceClient.from_connection_string(cs)
