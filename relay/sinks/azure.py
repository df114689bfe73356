from __future__ import annotations

"""Azure Blob Storage lake.

Authenticates with a connection string when one is configured, otherwise
with the account name + key.
"""

from typing import Any, List

from relay.sinks.lake import LakeSink
from relay.utils.logger import logger

__all__ = ["AzureSink"]


class AzureSink(LakeSink):
    name = "azure"

    _service: Any = None
    _container: Any = None

    def _connect(self) -> None:
        from azure.storage.blob import BlobServiceClient  # local import: optional extra

        conn = self.credentials.get("connection_string")
        if conn:
            self._service = BlobServiceClient.from_connection_string(conn)
        else:
            account = self.credentials["account"]
            self._service = BlobServiceClient(
                account_url=f"https://{account}.blob.core.windows.net",
                credential={"account_name": account, "account_key": self.credentials["key"]},
            )
        self._service.get_account_information()
        self._container = self._service.get_container_client(self.credentials["container"])

    def _ensure_container(self) -> bool:
        if self._container.exists():
            return True
        logger.info("%s container %s does not exist, creating", self.tag, self._container.container_name)
        self._container.create_container()
        return bool(self._container.exists())

    def _put(self, key: str, body: bytes, *, gzipped: bool = False) -> None:
        from azure.storage.blob import ContentSettings

        settings = ContentSettings(content_type="application/x-ndjson", content_encoding="gzip") if gzipped else None
        self._container.upload_blob(key, body, overwrite=True, content_settings=settings)

    def _get(self, key: str) -> bytes:
        return self._container.download_blob(key).readall()

    def _list(self) -> List[str]:
        return [blob.name for blob in self._container.list_blobs()]

    def _delete(self, keys: List[str]) -> None:
        for key in keys:
            self._container.delete_blob(key)
