from __future__ import annotations

"""Google Cloud Storage lake."""

from typing import Any, List

from relay.sinks.lake import LakeSink
from relay.sinks.google import google_credentials
from relay.utils.logger import logger

__all__ = ["GCSSink"]


class GCSSink(LakeSink):
    name = "gcs"

    _client: Any = None
    _bucket: Any = None

    def _connect(self) -> None:
        from google.cloud import storage  # local import: optional extra

        self._client = storage.Client(
            project=self.credentials["project"],
            credentials=google_credentials(self.credentials),
        )
        self._bucket = self._client.bucket(self.credentials["bucket"])

    def _ensure_container(self) -> bool:
        if self._bucket.exists():
            return True
        logger.info("%s bucket %s does not exist, creating", self.tag, self._bucket.name)
        self._bucket = self._client.create_bucket(self._bucket.name)
        return bool(self._bucket.exists())

    def _put(self, key: str, body: bytes, *, gzipped: bool = False) -> None:
        blob = self._bucket.blob(key)
        if gzipped:
            blob.content_encoding = "gzip"
        blob.upload_from_string(body, content_type="application/x-ndjson" if gzipped else "text/plain")

    def _get(self, key: str) -> bytes:
        return self._bucket.blob(key).download_as_bytes()

    def _list(self) -> List[str]:
        return [blob.name for blob in self._client.list_blobs(self._bucket)]

    def _delete(self, keys: List[str]) -> None:
        for key in keys:
            self._bucket.blob(key).delete()
