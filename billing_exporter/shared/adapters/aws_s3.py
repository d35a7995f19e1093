"""
AWS S3 Object Store

Lists and downloads billing reports from an S3 bucket with aioboto3.
The ETag (quotes stripped) is used as content hash.
"""

from typing import List, Optional

import aioboto3
import structlog

from billing_exporter.shared.adapters.aws_utils import AWS_ERRORS, client_kwargs, get_boto_session
from billing_exporter.shared.adapters.base import ObjectInfo, ObjectStore
from billing_exporter.shared.core.exceptions import AdapterError

logger = structlog.get_logger()


class S3ObjectStore(ObjectStore):
    def __init__(
        self,
        bucket_name: str,
        region: Optional[str] = None,
        session: Optional[aioboto3.Session] = None,
        endpoint_url: Optional[str] = None,
    ):
        self.bucket_name = bucket_name
        self.region = region
        self.session = session or get_boto_session()
        self.endpoint_url = endpoint_url

    def _client(self):
        return self.session.client(**client_kwargs("s3", self.region, self.endpoint_url))

    async def list(self, prefix: str) -> List[ObjectInfo]:
        objects: List[ObjectInfo] = []
        try:
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                    for obj in page.get("Contents", []):
                        objects.append(ObjectInfo(
                            key=obj["Key"],
                            content_hash=obj.get("ETag", "").strip('"'),
                            size=obj.get("Size", 0),
                        ))
        except AWS_ERRORS as e:
            logger.error("s3_list_failed", bucket=self.bucket_name, prefix=prefix, error=str(e))
            raise AdapterError(f"Error listing AWS bucket '{self.bucket_name}': {e}") from e

        logger.debug("s3_objects_listed", bucket=self.bucket_name, prefix=prefix, count=len(objects))
        return objects

    async def get(self, key: str) -> bytes:
        try:
            async with self._client() as s3:
                response = await s3.get_object(Bucket=self.bucket_name, Key=key)
                async with response["Body"] as stream:
                    return await stream.read()
        except AWS_ERRORS as e:
            logger.error("s3_download_failed", bucket=self.bucket_name, key=key, error=str(e))
            raise AdapterError(f"Error downloading '{key}' from AWS bucket '{self.bucket_name}': {e}") from e

    def describe(self) -> str:
        return f"s3://{self.bucket_name}"
