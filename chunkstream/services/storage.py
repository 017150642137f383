"""
MinIO object-storage capability.

`ObjectStorage` is the boundary between the chunked-upload/streaming services
and the storage backend; `MinioObjectStorage` implements it on the MinIO SDK.
Tests substitute an in-memory fake.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from io import BytesIO
from typing import BinaryIO, Iterable, Optional, Protocol, runtime_checkable

from minio import Minio
from minio.commonconfig import ComposeSource
from minio.error import MinioException, S3Error
from urllib3.exceptions import HTTPError

from ..core.config import Settings
from ..core.exceptions import BucketNotEmpty, ObjectNotFound, StorageError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"NoSuchKey", "NoSuchBucket", "NoSuchObject", "ResourceNotFound"}
_ALREADY_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}


@dataclass(frozen=True)
class ObjectStat:
    """Metadata of a stored object, as reported by the backend."""
    bucket: str
    object_name: str
    size: int
    etag: str
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None


@dataclass(frozen=True)
class ObjectWrite:
    """Result of a put or compose."""
    bucket: str
    object_name: str
    etag: str


@runtime_checkable
class ObjectStorage(Protocol):
    """
    Object-storage capability used by ChunkStore.

    Missing objects/buckets on stat and read raise ObjectNotFound; removing a
    bucket that still holds objects raises BucketNotEmpty; every other
    backend failure raises StorageError. Streams returned by get_object
    support read(n) and close().
    """

    def bucket_exists(self, bucket: str) -> bool: ...

    def make_bucket(self, bucket: str) -> bool: ...

    def remove_bucket(self, bucket: str) -> None: ...

    def put_object(self, bucket: str, key: str, data: bytes, content_type: str = ...) -> ObjectWrite: ...

    def get_object(self, bucket: str, key: str, offset: int = 0, length: Optional[int] = None) -> BinaryIO: ...

    def stat_object(self, bucket: str, key: str) -> ObjectStat: ...

    def remove_object(self, bucket: str, key: str) -> None: ...

    def list_object_names(self, bucket: str) -> list[str]: ...

    def compose_object(self, dest_bucket: str, dest_key: str, sources: Iterable[tuple[str, str]]) -> ObjectWrite: ...

    def presigned_get_url(self, bucket: str, key: str, expires: timedelta) -> str: ...

    def set_bucket_policy(self, bucket: str, policy: str) -> None: ...


def read_only_policy(bucket: str) -> str:
    """Anonymous read-only policy: list the bucket and get its objects."""
    policy = {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"AWS": ["*"]},
                "Action": ["s3:GetBucketLocation", "s3:ListBucket"],
                "Resource": [f"arn:aws:s3:::{bucket}"],
            },
            {
                "Effect": "Allow",
                "Principal": {"AWS": ["*"]},
                "Action": ["s3:GetObject"],
                "Resource": [f"arn:aws:s3:::{bucket}/*"],
            },
        ],
    }
    return json.dumps(policy)


class _MinioStream:
    """Wraps a urllib3 response so close() also returns the connection to the pool."""

    def __init__(self, response):
        self._response = response

    def read(self, amt: Optional[int] = None) -> bytes:
        try:
            return self._response.read(amt)
        except HTTPError as e:
            raise StorageError(f"Read failed: {e}") from e

    def close(self) -> None:
        self._response.close()
        self._response.release_conn()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class MinioObjectStorage:
    """ObjectStorage implementation backed by a MinIO (S3-compatible) server."""

    def __init__(self, client: Minio):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "MinioObjectStorage":
        client = Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
            region=settings.MINIO_REGION,
        )
        logger.info(f"🗄️  MinIO client initialized: {settings.MINIO_ENDPOINT}")
        return cls(client)

    def bucket_exists(self, bucket: str) -> bool:
        try:
            return self.client.bucket_exists(bucket)
        except (MinioException, HTTPError) as e:
            raise StorageError(f"bucket_exists({bucket}) failed: {e}") from e

    def make_bucket(self, bucket: str) -> bool:
        """Create bucket; returns False if it already existed."""
        try:
            self.client.make_bucket(bucket)
            logger.info(f"✅ Created bucket: {bucket}")
            return True
        except S3Error as e:
            if e.code in _ALREADY_EXISTS_CODES:
                return False
            raise StorageError(f"make_bucket({bucket}) failed: {e}") from e
        except (MinioException, HTTPError) as e:
            raise StorageError(f"make_bucket({bucket}) failed: {e}") from e

    def remove_bucket(self, bucket: str) -> None:
        try:
            self.client.remove_bucket(bucket)
        except S3Error as e:
            if e.code == "NoSuchBucket":
                raise ObjectNotFound(bucket, "") from e
            if e.code == "BucketNotEmpty":
                raise BucketNotEmpty(bucket) from e
            raise StorageError(f"remove_bucket({bucket}) failed: {e}") from e
        except (MinioException, HTTPError) as e:
            raise StorageError(f"remove_bucket({bucket}) failed: {e}") from e

    def put_object(self, bucket: str, key: str, data: bytes,
                   content_type: str = "application/octet-stream") -> ObjectWrite:
        try:
            result = self.client.put_object(
                bucket_name=bucket,
                object_name=key,
                data=BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except (MinioException, HTTPError) as e:
            raise StorageError(f"put_object({bucket}/{key}) failed: {e}") from e
        return ObjectWrite(bucket=result.bucket_name, object_name=result.object_name, etag=result.etag)

    def get_object(self, bucket: str, key: str, offset: int = 0, length: Optional[int] = None):
        try:
            response = self.client.get_object(
                bucket_name=bucket,
                object_name=key,
                offset=offset,
                length=length or 0,
            )
        except S3Error as e:
            if e.code in _MISSING_CODES:
                raise ObjectNotFound(bucket, key) from e
            raise StorageError(f"get_object({bucket}/{key}) failed: {e}") from e
        except (MinioException, HTTPError) as e:
            raise StorageError(f"get_object({bucket}/{key}) failed: {e}") from e
        return _MinioStream(response)

    def stat_object(self, bucket: str, key: str) -> ObjectStat:
        try:
            info = self.client.stat_object(bucket_name=bucket, object_name=key)
        except S3Error as e:
            if e.code in _MISSING_CODES:
                raise ObjectNotFound(bucket, key) from e
            raise StorageError(f"stat_object({bucket}/{key}) failed: {e}") from e
        except (MinioException, HTTPError) as e:
            raise StorageError(f"stat_object({bucket}/{key}) failed: {e}") from e
        return ObjectStat(
            bucket=info.bucket_name,
            object_name=info.object_name,
            size=info.size,
            etag=info.etag,
            content_type=info.content_type,
            last_modified=info.last_modified,
        )

    def remove_object(self, bucket: str, key: str) -> None:
        try:
            self.client.remove_object(bucket_name=bucket, object_name=key)
        except (MinioException, HTTPError) as e:
            raise StorageError(f"remove_object({bucket}/{key}) failed: {e}") from e

    def list_object_names(self, bucket: str) -> list[str]:
        try:
            return [obj.object_name for obj in self.client.list_objects(bucket_name=bucket, recursive=True)]
        except S3Error as e:
            if e.code == "NoSuchBucket":
                return []
            raise StorageError(f"list_objects({bucket}) failed: {e}") from e
        except (MinioException, HTTPError) as e:
            raise StorageError(f"list_objects({bucket}) failed: {e}") from e

    def compose_object(self, dest_bucket: str, dest_key: str,
                       sources: Iterable[tuple[str, str]]) -> ObjectWrite:
        """
        Concatenate sources, in the given order, into dest_bucket/dest_key.

        MinIO requires every source except the last to be at least 5 MiB.
        """
        compose_sources = [ComposeSource(bucket_name=b, object_name=k) for b, k in sources]
        try:
            result = self.client.compose_object(
                bucket_name=dest_bucket,
                object_name=dest_key,
                sources=compose_sources,
            )
        except (MinioException, HTTPError, ValueError) as e:
            raise StorageError(f"compose_object({dest_bucket}/{dest_key}) failed: {e}") from e
        return ObjectWrite(bucket=result.bucket_name, object_name=result.object_name, etag=result.etag)

    def presigned_get_url(self, bucket: str, key: str, expires: timedelta) -> str:
        try:
            return self.client.presigned_get_object(bucket_name=bucket, object_name=key, expires=expires)
        except (MinioException, HTTPError, ValueError) as e:
            raise StorageError(f"presign({bucket}/{key}) failed: {e}") from e

    def set_bucket_policy(self, bucket: str, policy: str) -> None:
        try:
            self.client.set_bucket_policy(bucket_name=bucket, policy=policy)
        except (MinioException, HTTPError) as e:
            raise StorageError(f"set_bucket_policy({bucket}) failed: {e}") from e
