"""
Object store adapters for uploaded files.

Absence is reported with a sentinel (None / False) so callers can react to
a missing object as a normal state. Only access/permission failures are
raised, as StoreAccessError.
"""

import io
import hashlib
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from file_alloc.errors import StoreAccessError
from file_alloc.schemas import ObjectInfo, StoredObject

try:
    from mypy_boto3_s3 import S3Client
except ImportError:
    ...

logger = logging.getLogger(__name__)

# Lifetime of pre-signed URLs: one minute to upload or download
URL_EXPIRATION_SECONDS = 60

# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000

ACCESS_DENIED_CODES = {
    "AccessDenied",
    "AllAccessDisabled",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "403",
}

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}

Body = Union[bytes, str]


def _error_code(error: Exception) -> Optional[str]:
    if isinstance(error, ClientError):
        return str(error.response.get("Error", {}).get("Code"))
    return None


def _raise_on_access_denied(error: Exception, key: Optional[str]) -> None:
    if _error_code(error) in ACCESS_DENIED_CODES:
        raise StoreAccessError(key if key is not None else "*") from error


def _as_bytes(body: Body) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else bytes(body)


class BaseFileStore:
    """Base class for object stores (to be extended by specific implementations)"""

    async def get_post_url(self, key: str) -> str:
        raise NotImplementedError

    async def get_signed_url(self, key: str) -> str:
        raise NotImplementedError

    async def create_object(self, key: str, body: Body) -> bool:
        raise NotImplementedError

    async def put_object(self, key: str, data: Body, content_type: Optional[str] = None) -> None:
        raise NotImplementedError

    async def get_object(self, key: str) -> Optional[StoredObject]:
        raise NotImplementedError

    async def get_object_info(self, key: str) -> Optional[ObjectInfo]:
        raise NotImplementedError

    async def get_object_stream(self, key: str):
        stored = await self.get_object(key)
        return stored.stream if stored is not None else None

    async def delete_object(self, key: str) -> bool:
        raise NotImplementedError

    async def delete_objects(self, keys: Iterable[str]) -> bool:
        raise NotImplementedError

    async def list_objects(self) -> Optional[List[str]]:
        raise NotImplementedError

    async def check_object_exists(self, key: str) -> bool:
        raise NotImplementedError

    async def copy_objects(self, keys: Iterable[str], source_bucket: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class S3FileStore(BaseFileStore):
    """Object store backed by one S3 bucket"""

    def __init__(
        self,
        bucket_name: str,
        s3_client: Optional["S3Client"] = None,
        url_expiration: int = URL_EXPIRATION_SECONDS,
        content_type: Optional[str] = None,
    ):
        self.bucket_name = bucket_name
        self.url_expiration = url_expiration
        self.content_type = content_type
        self._s3_client = s3_client

    @property
    def client(self) -> "S3Client":
        if self._s3_client is None:
            self._s3_client = boto3.client("s3")
        return self._s3_client

    def _presign(self, operation: str, key: str) -> str:
        params = {"Bucket": self.bucket_name, "Key": key}
        if self.content_type and operation == "put_object":
            params["ContentType"] = self.content_type
        return self.client.generate_presigned_url(
            ClientMethod=operation,
            Params=params,
            ExpiresIn=self.url_expiration,
        )

    async def get_post_url(self, key: str) -> str:
        """Pre-signed URL the client PUTs the file bytes to."""
        return self._presign("put_object", key)

    async def get_signed_url(self, key: str) -> str:
        """Pre-signed URL to download the file."""
        return self._presign("get_object", key)

    async def create_object(self, key: str, body: Body) -> bool:
        try:
            self.client.put_object(Bucket=self.bucket_name, Key=key, Body=_as_bytes(body))
            return True
        except (ClientError, BotoCoreError) as e:
            _raise_on_access_denied(e, key)
            logger.error(f"Error creating object {key} in S3: {str(e)}")
            return False

    async def put_object(self, key: str, data: Body, content_type: Optional[str] = None) -> None:
        self.client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=_as_bytes(data),
            ContentType=content_type or "application/octet-stream",
        )

    async def get_object(self, key: str) -> Optional[StoredObject]:
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            _raise_on_access_denied(e, key)
            return None
        return StoredObject(
            stream=response["Body"],
            size=response.get("ContentLength"),
            hash=response.get("ETag", "").strip('"') or None,
            creation=response.get("LastModified"),
        )

    async def get_object_info(self, key: str) -> Optional[ObjectInfo]:
        try:
            response = self.client.head_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            _raise_on_access_denied(e, key)
            return None
        return ObjectInfo(
            size=response.get("ContentLength"),
            hash=response.get("ETag", "").strip('"') or None,
            creation=response.get("LastModified"),
        )

    async def delete_object(self, key: str) -> bool:
        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=key)
            return True
        except (ClientError, BotoCoreError) as e:
            _raise_on_access_denied(e, key)
            logger.error(f"Error deleting object {key} from S3: {str(e)}")
            return False

    async def delete_objects(self, keys: Iterable[str]) -> bool:
        keys = list(keys)
        ok = True
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as e:
                _raise_on_access_denied(e, None)
                logger.error(f"Error deleting {len(batch)} object(s) from S3: {str(e)}")
                return False
            errors = response.get("Errors") or []
            if errors:
                for error in errors:
                    logger.error(f"S3 refused to delete {error.get('Key')}: {error.get('Code')}")
                ok = False
        return ok

    async def list_objects(self) -> Optional[List[str]]:
        """List every key in the bucket, or None when the listing fails."""
        try:
            keys = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name):
                keys.extend(item["Key"] for item in page.get("Contents", []))
            return keys
        except (ClientError, BotoCoreError) as e:
            _raise_on_access_denied(e, None)
            logger.error(f"Error listing objects of bucket {self.bucket_name}: {str(e)}")
            return None

    async def check_object_exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            _raise_on_access_denied(e, key)
            if _error_code(e) in NOT_FOUND_CODES:
                return False
            raise

    async def copy_objects(self, keys: Iterable[str], source_bucket: str) -> None:
        """Copy objects with the same keys from another bucket into this one."""
        for key in keys:
            self.client.copy_object(
                CopySource={"Bucket": source_bucket, "Key": key},
                Bucket=self.bucket_name,
                Key=key,
            )

    async def close(self) -> None:
        if self._s3_client is not None:
            self._s3_client.close()
            self._s3_client = None


class MemoryFileStore(BaseFileStore):
    """In-process object store used by tests and local runs

    Stores register under their bucket name so `copy_objects` can name its
    source bucket as it does with S3.
    """

    _buckets: Dict[str, "MemoryFileStore"] = {}

    def __init__(self, base_url: str = "memory://", bucket_name: str = "memory"):
        self.base_url = base_url
        self.bucket_name = bucket_name
        self._objects: Dict[str, Tuple[bytes, datetime]] = {}
        MemoryFileStore._buckets[bucket_name] = self

    def clear(self) -> None:
        self._objects.clear()

    def _info(self, key: str) -> Optional[ObjectInfo]:
        if key not in self._objects:
            return None
        data, creation = self._objects[key]
        return ObjectInfo(size=len(data), hash=hashlib.md5(data).hexdigest(), creation=creation)

    async def get_post_url(self, key: str) -> str:
        return f"{self.base_url}{key}"

    async def get_signed_url(self, key: str) -> str:
        return f"{self.base_url}{key}"

    async def create_object(self, key: str, body: Body) -> bool:
        self._objects[key] = (_as_bytes(body), datetime.now(timezone.utc))
        return True

    async def put_object(self, key: str, data: Body, content_type: Optional[str] = None) -> None:
        await self.create_object(key, data)

    async def get_object(self, key: str) -> Optional[StoredObject]:
        info = self._info(key)
        if info is None:
            return None
        data, _ = self._objects[key]
        return StoredObject(stream=io.BytesIO(data), size=info.size, hash=info.hash, creation=info.creation)

    async def get_object_info(self, key: str) -> Optional[ObjectInfo]:
        return self._info(key)

    async def delete_object(self, key: str) -> bool:
        if key in self._objects:
            del self._objects[key]
            return True
        return False

    async def delete_objects(self, keys: Iterable[str]) -> bool:
        for key in keys:
            await self.delete_object(key)
        return True

    async def list_objects(self) -> Optional[List[str]]:
        return list(self._objects.keys())

    async def check_object_exists(self, key: str) -> bool:
        return key in self._objects

    async def copy_objects(self, keys: Iterable[str], source_bucket: str) -> None:
        source = self._buckets.get(source_bucket)
        if source is None:
            raise ValueError(f"Unknown memory bucket: {source_bucket}")
        for key in keys:
            data, _ = source._objects[key]
            await self.create_object(key, data)


def create_file_store(settings) -> BaseFileStore:
    """Build the S3 file store described by the settings."""
    client_kwargs = {"region_name": settings.aws_region}
    if settings.aws_access_key_id:
        client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
    if settings.aws_secret_access_key:
        client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
    if settings.aws_endpoint_url and settings.deployment_mode in ["local-dev", "aws-mock"]:
        client_kwargs["endpoint_url"] = settings.aws_endpoint_url

    s3_client = boto3.client("s3", **client_kwargs)
    logger.info(f"Using S3 bucket: {settings.s3_bucket_name}")
    return S3FileStore(
        settings.s3_bucket_name,
        s3_client=s3_client,
        url_expiration=settings.url_expiration_seconds,
    )
