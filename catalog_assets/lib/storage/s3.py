"""S3 storage backend (object store A)."""

from __future__ import annotations

import asyncio
import hashlib
import io
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, BinaryIO

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from catalog_assets.lib.exceptions import (
    AssetNotFound,
    InvalidKey,
    StorageQuotaExceeded,
    StorageUnavailable,
)
from catalog_assets.lib.storage.base import StoredFile, is_direct_child, require_prefix

if TYPE_CHECKING:
    from catalog_assets.config import StorageConfig

NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})
QUOTA_CODES = frozenset({"QuotaExceeded", "StorageQuotaExceeded", "InsufficientStorage"})


@contextmanager
def translate_client_errors(key: str) -> Iterator[None]:
    """Map botocore failures onto the storage error taxonomy."""
    try:
        yield
    except ClientError as exc:
        code = str(exc.response.get("Error", {}).get("Code", ""))
        if code in NOT_FOUND_CODES:
            raise AssetNotFound(key) from exc
        if code in QUOTA_CODES:
            raise StorageQuotaExceeded(f"Quota exceeded writing {key!r}", key=key) from exc
        raise StorageUnavailable(f"Object store error {code or 'unknown'} on {key!r}", key=key) from exc
    except BotoCoreError as exc:
        raise StorageUnavailable(f"Object store unreachable for {key!r}: {exc}", key=key) from exc


def _drain(key: str, stream: BinaryIO) -> bytes:
    """Read a stream to the end and close it."""
    try:
        return stream.read()
    except OSError as exc:
        raise StorageUnavailable(f"Failed reading upload for {key!r}: {exc}", key=key) from exc
    finally:
        stream.close()


class S3StorageBackend:
    """Store objects in an S3 bucket."""

    # Upper bound for keys per DeleteObjects request
    delete_batch_size = 1000

    def __init__(self, config: StorageConfig, session: aioboto3.Session | None = None) -> None:
        self._config = config
        self._bucket = config.bucket_or_root_path
        self._session = session or aioboto3.Session()

    def _endpoint_url(self) -> str | None:
        return self._config.endpoint_url

    def _client_kwargs(self) -> dict:
        kwargs: dict = {
            "region_name": self._config.region,
        }
        endpoint_url = self._endpoint_url()
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        credentials = self._config.credentials
        if credentials.get("access_key_id"):
            kwargs["aws_access_key_id"] = credentials["access_key_id"]
        if credentials.get("secret_access_key"):
            kwargs["aws_secret_access_key"] = credentials["secret_access_key"]
        if credentials.get("session_token"):
            kwargs["aws_session_token"] = credentials["session_token"]
        return kwargs

    def _client(self):
        return self._session.client("s3", **self._client_kwargs())

    def _full_key(self, key: str) -> str:
        if self._config.prefix:
            return f"{self._config.prefix.rstrip('/')}/{key}"
        return key

    def _relative_key(self, full_key: str) -> str:
        if self._config.prefix:
            return full_key[len(self._config.prefix.rstrip("/")) + 1:]
        return full_key

    async def put(self, key: str, stream: BinaryIO, content_type: str) -> StoredFile:
        if not key:
            stream.close()
            raise InvalidKey("Object key must not be empty")

        data = await asyncio.to_thread(_drain, key, stream)
        put_kwargs: dict = {
            "Bucket": self._bucket,
            "Key": self._full_key(key),
            "Body": data,
            "ContentType": content_type,
        }
        if self._config.acl:
            put_kwargs["ACL"] = self._config.acl

        with translate_client_errors(key):
            async with self._client() as s3:
                await s3.put_object(**put_kwargs)

        return StoredFile(
            key=key,
            content_type=content_type,
            size=len(data),
            content_hash=hashlib.sha256(data).hexdigest(),
        )

    async def get(self, key: str) -> BinaryIO:
        with translate_client_errors(key):
            async with self._client() as s3:
                response = await s3.get_object(Bucket=self._bucket, Key=self._full_key(key))
                return io.BytesIO(await response["Body"].read())

    async def delete(self, key: str) -> None:
        try:
            with translate_client_errors(key):
                async with self._client() as s3:
                    await s3.delete_object(Bucket=self._bucket, Key=self._full_key(key))
        except AssetNotFound:
            return

    async def delete_prefix(self, prefix: str) -> int:
        require_prefix(prefix)
        keys = [key async for key in self.list_keys(prefix, recursive=True)]
        if keys:
            await self._delete_many(keys)
        return len(keys)

    async def _delete_many(self, keys: list[str]) -> None:
        with translate_client_errors(keys[0]):
            async with self._client() as s3:
                for start in range(0, len(keys), self.delete_batch_size):
                    batch = keys[start:start + self.delete_batch_size]
                    response = await s3.delete_objects(
                        Bucket=self._bucket,
                        Delete={
                            "Objects": [{"Key": self._full_key(key)} for key in batch],
                            "Quiet": True,
                        },
                    )
                    errors = [
                        err for err in response.get("Errors", [])
                        if err.get("Code") not in NOT_FOUND_CODES
                    ]
                    if errors:
                        first = errors[0]
                        raise StorageUnavailable(
                            f"Failed to delete {len(errors)} object(s); "
                            f"first {first.get('Key')!r}: {first.get('Code')}",
                            key=self._relative_key(first.get("Key", "")),
                        )

    async def exists(self, key: str) -> bool:
        try:
            with translate_client_errors(key):
                async with self._client() as s3:
                    await s3.head_object(Bucket=self._bucket, Key=self._full_key(key))
        except AssetNotFound:
            return False
        return True

    async def list_keys(self, prefix: str = "", *, recursive: bool = False) -> AsyncIterator[str]:
        params: dict = {"Bucket": self._bucket, "Prefix": self._full_key(prefix)}
        if not recursive:
            params["Delimiter"] = "/"

        with translate_client_errors(prefix):
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(**params):
                    for obj in page.get("Contents", []):
                        key = self._relative_key(obj["Key"])
                        if recursive or is_direct_child(key, prefix):
                            yield key

    def _public_object_url(self, full_key: str) -> str:
        if self._config.endpoint_url:
            base = self._config.endpoint_url.rstrip("/")
            return f"{base}/{self._bucket}/{full_key}"
        return f"https://{self._bucket}.s3.{self._config.region}.amazonaws.com/{full_key}"

    async def get_url(self, key: str) -> str:
        full_key = self._full_key(key)

        # CDN / custom public URL
        if self._config.public_url:
            base = self._config.public_url.rstrip("/")
            return f"{base}/{full_key}"

        if self._config.acl == "public-read":
            return self._public_object_url(full_key)

        # Private: generate presigned URL
        with translate_client_errors(key):
            async with self._client() as s3:
                return await s3.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": self._bucket, "Key": full_key},
                    ExpiresIn=self._config.presign_ttl,
                )

    async def close(self) -> None:
        """No persistent resources to clean up."""
