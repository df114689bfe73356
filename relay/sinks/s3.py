from __future__ import annotations

"""Amazon S3 lake (boto3)."""

from typing import Any, List

from relay.sinks.lake import LakeSink
from relay.utils.logger import logger

__all__ = ["S3Sink"]


class S3Sink(LakeSink):
    name = "s3"

    _client: Any = None

    @property
    def bucket(self) -> str:
        return self.credentials["bucket"]

    def _connect(self) -> None:
        import boto3  # local import: optional extra

        self._client = boto3.client(
            "s3",
            region_name=self.credentials.get("region"),
            aws_access_key_id=self.credentials.get("access_key_id"),
            aws_secret_access_key=self.credentials.get("secret_access_key"),
        )
        self._client.list_buckets()

    def _ensure_container(self) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client.head_bucket(Bucket=self.bucket)
            return True
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") not in {"404", "NoSuchBucket", "NotFound"}:
                raise
        logger.info("%s bucket %s does not exist, creating", self.tag, self.bucket)
        region = self.credentials.get("region")
        kwargs: dict[str, Any] = {"Bucket": self.bucket}
        if region and region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
        self._client.create_bucket(**kwargs)
        self._client.get_waiter("bucket_exists").wait(Bucket=self.bucket)
        return True

    def _put(self, key: str, body: bytes, *, gzipped: bool = False) -> None:
        extra = {"ContentEncoding": "gzip", "ContentType": "application/x-ndjson"} if gzipped else {}
        self._client.put_object(Bucket=self.bucket, Key=key, Body=body, **extra)

    def _get(self, key: str) -> bytes:
        return self._client.get_object(Bucket=self.bucket, Key=key)["Body"].read()

    def _list(self) -> List[str]:
        keys: List[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    def _delete(self, keys: List[str]) -> None:
        # DeleteObjects accepts at most 1000 keys per call
        for start in range(0, len(keys), 1000):
            chunk = keys[start:start + 1000]
            self._client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in chunk], "Quiet": True},
            )
