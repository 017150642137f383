"""
Chunk staging on top of the object-storage capability.

Each upload session owns one staging bucket named after the session digest.
Chunks are stored as objects named by their zero-based index and composed,
in index order, into the default bucket on merge.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from ..core.exceptions import BucketNotEmpty, ObjectNotFound
from .storage import ObjectStat, ObjectStorage, read_only_policy

logger = logging.getLogger(__name__)

# S3 bucket names are limited to 63 characters
_MAX_BUCKET_NAME = 63

# empty-then-remove cycles before a forced drop gives up
DROP_ATTEMPTS = 5


@dataclass(frozen=True)
class StoredChunk:
    """Where a chunk was written, and for which original file."""
    bucket: str
    object_name: str
    etag: str
    original_file_name: Optional[str] = None


class ChunkStore:
    """Session bucket lifecycle, chunk writes and compose-to-final."""

    def __init__(self, storage: ObjectStorage, default_bucket: str, url_expiry_seconds: int = 604800):
        self.storage = storage
        self.default_bucket = default_bucket
        self.url_expiry = timedelta(seconds=url_expiry_seconds)

    @staticmethod
    def session_bucket(digest: str) -> str:
        return digest.lower()[:_MAX_BUCKET_NAME]

    def ensure_default_bucket(self, public_read: bool = False) -> None:
        """Create the default bucket if missing, optionally opening it for anonymous reads."""
        if not self.storage.bucket_exists(self.default_bucket):
            self.storage.make_bucket(self.default_bucket)
        else:
            logger.info(f"✅ Default bucket exists: {self.default_bucket}")
        if public_read:
            self.storage.set_bucket_policy(self.default_bucket, read_only_policy(self.default_bucket))
            logger.info(f"🔓 Applied read-only policy to {self.default_bucket}")

    def ensure_session(self, digest: str) -> str:
        bucket = self.session_bucket(digest)
        if not self.storage.bucket_exists(bucket):
            self.storage.make_bucket(bucket)
        return bucket

    def write_chunk(self, digest: str, index: int, data: bytes, file_name: Optional[str] = None) -> StoredChunk:
        """Write (or overwrite) chunk `index` of the session."""
        bucket = self.ensure_session(digest)
        written = self.storage.put_object(bucket, str(index), data)
        return StoredChunk(
            bucket=written.bucket,
            object_name=written.object_name,
            etag=written.etag,
            original_file_name=file_name,
        )

    def list_chunk_keys(self, digest: str) -> list[str]:
        """Numerically named chunk keys of the session, in index order."""
        bucket = self.session_bucket(digest)
        names = [name for name in self.storage.list_object_names(bucket) if name.isascii() and name.isdigit()]
        return sorted(names, key=int)

    def compose_session(self, digest: str, chunk_keys: list[str], dest_key: str) -> str:
        """Compose the given chunks into the default bucket; returns dest_key."""
        bucket = self.session_bucket(digest)
        self.storage.compose_object(
            self.default_bucket,
            dest_key,
            [(bucket, key) for key in chunk_keys],
        )
        logger.info(f"🧩 Composed {len(chunk_keys)} chunks from {bucket} into {self.default_bucket}/{dest_key}")
        return dest_key

    def drop_session(self, digest: str, force: bool = True) -> None:
        """
        Remove the staging bucket.

        With force, every remaining object is removed first, and the
        empty-then-remove cycle repeats when chunks land in between, up to
        DROP_ATTEMPTS times. A bucket that is already gone is not an error.
        """
        bucket = self.session_bucket(digest)
        attempts = DROP_ATTEMPTS if force else 1
        for attempt in range(1, attempts + 1):
            if force:
                for name in self.storage.list_object_names(bucket):
                    self.storage.remove_object(bucket, name)
            try:
                self.storage.remove_bucket(bucket)
            except ObjectNotFound:
                logger.info(f"Staging bucket {bucket} already removed")
                return
            except BucketNotEmpty:
                if attempt == attempts:
                    raise
                logger.info(f"Late chunks in {bucket}, emptying again ({attempt}/{attempts})")
                continue
            logger.info(f"🗑️  Removed staging bucket {bucket}")
            return

    def open_object(self, bucket: str, key: str):
        return self.storage.get_object(bucket, key)

    def open_range(self, bucket: str, key: str, offset: int, length: int):
        return self.storage.get_object(bucket, key, offset=offset, length=length)

    def stat(self, bucket: str, key: str) -> ObjectStat:
        return self.storage.stat_object(bucket, key)

    def delete_object(self, bucket: str, key: str) -> None:
        self.storage.remove_object(bucket, key)
        logger.info(f"🗑️  Deleted {bucket}/{key}")

    def sign_url(self, bucket: str, key: str) -> str:
        return self.storage.presigned_get_url(bucket, key, self.url_expiry)
