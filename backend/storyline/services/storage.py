"""Storage service for storyline media backed by MinIO (or any S3-compatible host)."""

from __future__ import annotations

import asyncio
import io
import json
from typing import Iterator, List, Optional, Sequence
from urllib.parse import urlparse

import httpx
import structlog
from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error

from storyline.core.config import Settings
from storyline.core.errors import ProviderConfigurationError, ProviderError

logger = structlog.get_logger(__name__)


def public_read_policy(bucket: str) -> str:
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"AWS": ["*"]},
                    "Action": ["s3:GetObject"],
                    "Resource": [f"arn:aws:s3:::{bucket}/*"],
                }
            ],
        }
    )


class _ChunkReader(io.RawIOBase):
    """File-like view over an iterator of byte chunks so MinIO can read it part by part."""

    def __init__(self, chunks: Iterator[bytes]) -> None:
        self._chunks = chunks
        self._buffer = b""

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data = self._buffer + b"".join(self._chunks)
            self._buffer = b""
            return data
        while len(self._buffer) < size:
            try:
                self._buffer += next(self._chunks)
            except StopIteration:
                break
        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data


class MinioBlobStorage:
    """Public-read blob storage; every upload returns a URL anyone can fetch."""

    def __init__(
        self,
        *,
        client: Minio,
        public_base_url: str,
        chunk_size: int = 10 * 1024 * 1024,
        http_timeout: float = 120.0,
    ) -> None:
        self._client = client
        self._public_base_url = public_base_url.rstrip("/")
        self._chunk_size = chunk_size
        self._http_timeout = http_timeout

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self._public_base_url}/{bucket}/{key}"

    def key_from_public_url(self, bucket: str, url: str) -> Optional[str]:
        prefix = f"{self._public_base_url}/{bucket}/"
        if url.startswith(prefix):
            return url[len(prefix):] or None
        path = urlparse(url).path.lstrip("/")
        if path.startswith(f"{bucket}/"):
            return path[len(bucket) + 1:] or None
        return None

    def ensure_bucket(self, bucket: str) -> None:
        """Idempotently create ``bucket`` and open it for anonymous reads."""

        try:
            if not self._client.bucket_exists(bucket):
                self._client.make_bucket(bucket)
            self._client.set_bucket_policy(bucket, public_read_policy(bucket))
        except S3Error as exc:  # pragma: no cover - network side effect
            raise ProviderConfigurationError(f"Unable to ensure bucket '{bucket}': {exc}") from exc

    async def ensure_buckets(self, buckets: Sequence[str]) -> None:
        for bucket in buckets:
            await asyncio.to_thread(self.ensure_bucket, bucket)
            logger.info("storage.bucket_ready", bucket=bucket)

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                bucket,
                key,
                io.BytesIO(data),
                len(data),
                content_type=content_type,
            )
        except S3Error as exc:
            raise ProviderError(f"Upload of {bucket}/{key} failed: {exc}") from exc
        return self.public_url(bucket, key)

    def _stream_into_bucket(self, bucket: str, key: str, source_url: str, content_type: str) -> None:
        with httpx.Client(timeout=httpx.Timeout(self._http_timeout), follow_redirects=True) as client:
            with client.stream("GET", source_url) as response:
                response.raise_for_status()
                reader = _ChunkReader(response.iter_bytes(self._chunk_size))
                self._client.put_object(
                    bucket,
                    key,
                    reader,
                    length=-1,
                    part_size=self._chunk_size,
                    content_type=content_type,
                )

    async def upload_from_url(self, bucket: str, key: str, source_url: str, content_type: str) -> str:
        logger.info("storage.stream_upload.start", bucket=bucket, key=key)
        try:
            await asyncio.to_thread(self._stream_into_bucket, bucket, key, source_url, content_type)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Could not download {source_url}: {exc}") from exc
        except S3Error as exc:
            raise ProviderError(f"Upload of {bucket}/{key} failed: {exc}") from exc
        logger.info("storage.stream_upload.done", bucket=bucket, key=key)
        return self.public_url(bucket, key)

    async def list_keys(self, bucket: str, prefix: str) -> List[str]:
        def _list() -> List[str]:
            return [
                obj.object_name
                for obj in self._client.list_objects(bucket, prefix=prefix, recursive=True)
            ]

        try:
            return await asyncio.to_thread(_list)
        except S3Error as exc:
            raise ProviderError(f"Listing {bucket}/{prefix} failed: {exc}") from exc

    async def remove(self, bucket: str, keys: Sequence[str]) -> None:
        if not keys:
            return

        def _remove() -> None:
            errors = list(
                self._client.remove_objects(bucket, [DeleteObject(key) for key in keys])
            )
            for error in errors:
                logger.warning("storage.remove_failed", bucket=bucket, error=str(error))

        try:
            await asyncio.to_thread(_remove)
        except S3Error as exc:
            raise ProviderError(f"Removing objects from {bucket} failed: {exc}") from exc


def build_storage_service(settings: Settings) -> MinioBlobStorage:
    """Instantiate the storage service from application settings."""

    if not settings.storage_configured:
        raise ProviderConfigurationError("S3/MinIO environment variables are not fully set")

    parsed = urlparse(str(settings.s3_endpoint_url))
    secure = settings.s3_secure if settings.s3_secure is not None else parsed.scheme == "https"
    client = Minio(
        parsed.netloc or parsed.path,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key,
        secure=secure,
        region=settings.s3_region,
    )
    return MinioBlobStorage(
        client=client,
        public_base_url=settings.storage_public_base_url or str(settings.s3_endpoint_url),
        chunk_size=settings.storage_stream_chunk_mb * 1024 * 1024,
    )
