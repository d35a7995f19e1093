"""
GCP Cloud Storage Object Store

Reads the daily JSON billing export from a GCS bucket. The google-cloud
client is synchronous, so calls run in a worker thread.
"""

import asyncio
import base64
import binascii
import logging
from typing import List, Optional

import structlog
import tenacity
from google.api_core.exceptions import DeadlineExceeded, GoogleAPIError, ServiceUnavailable
from google.cloud import storage

from billing_exporter.shared.adapters.base import ObjectInfo, ObjectStore
from billing_exporter.shared.core.exceptions import AdapterError

logger = structlog.get_logger()

# Retry decorator for GCP transient failures
gcp_retry = tenacity.retry(
    retry=tenacity.retry_if_exception_type((ServiceUnavailable, DeadlineExceeded)),
    wait=tenacity.wait_exponential(multiplier=1, min=2, max=10),
    stop=tenacity.stop_after_attempt(3),
    reraise=True,
    before_sleep=tenacity.before_sleep_log(logger, logging.WARNING)
)


def decode_base32_label(value: str) -> str:
    """
    Decode an owner label value.

    GCP label values only allow lowercase letters, digits, '-' and '_', so
    owners are stored base32 encoded with '_' in place of the '=' padding.
    Returns "" when the value does not decode.
    """
    try:
        return base64.b32decode(value.upper().replace("_", "=")).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        logger.warning("label_decode_failed", value=value, error=str(e))
        return ""


class GCSObjectStore(ObjectStore):
    def __init__(self, bucket_name: str, client: Optional[storage.Client] = None):
        self.bucket_name = bucket_name
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    @gcp_retry
    def _list_blobs(self, prefix: str) -> List[ObjectInfo]:
        return [
            ObjectInfo(
                key=blob.name,
                content_hash=blob.md5_hash or blob.etag or "",
                size=blob.size or 0,
            )
            for blob in self.client.list_blobs(self.bucket_name, prefix=prefix)
        ]

    @gcp_retry
    def _download(self, key: str) -> bytes:
        return self.client.bucket(self.bucket_name).blob(key).download_as_bytes()

    async def list(self, prefix: str) -> List[ObjectInfo]:
        try:
            objects = await asyncio.to_thread(self._list_blobs, prefix)
        except GoogleAPIError as e:
            logger.error("gcs_list_failed", bucket=self.bucket_name, prefix=prefix, error=str(e))
            raise AdapterError(f"Error listing GCP bucket '{self.bucket_name}': {e}") from e

        logger.debug("gcs_objects_listed", bucket=self.bucket_name, prefix=prefix, count=len(objects))
        return objects

    async def get(self, key: str) -> bytes:
        try:
            return await asyncio.to_thread(self._download, key)
        except GoogleAPIError as e:
            logger.error("gcs_download_failed", bucket=self.bucket_name, key=key, error=str(e))
            raise AdapterError(f"Error downloading '{key}' from GCP bucket '{self.bucket_name}': {e}") from e

    def describe(self) -> str:
        return f"gs://{self.bucket_name}"
