"""Google Cloud Storage backend (object store B).

Talks to the bucket through the S3-interoperable XML API with HMAC keys, so
it reuses the S3 client code. That API has no multi-object delete, and it
answers deletes of missing objects with ``NoSuchKey``.
"""

from __future__ import annotations

from catalog_assets.lib.storage.s3 import S3StorageBackend

GCS_XML_ENDPOINT = "https://storage.googleapis.com"


class GCSStorageBackend(S3StorageBackend):
    """Store objects in a Google Cloud Storage bucket."""

    def _endpoint_url(self) -> str | None:
        return self._config.endpoint_url or GCS_XML_ENDPOINT

    def _public_object_url(self, full_key: str) -> str:
        return f"{GCS_XML_ENDPOINT}/{self._bucket}/{full_key}"

    async def _delete_many(self, keys: list[str]) -> None:
        # One request per exact key; delete() already tolerates missing keys.
        for key in keys:
            await self.delete(key)
