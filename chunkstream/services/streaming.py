"""
Byte-range streaming of stored media.

Serves an object as an HTTP range-capable stream: resolves size/etag through
the stream-metadata cache, parses the Range header into an inclusive window
and copies exactly that window from storage.
"""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, AsyncIterator, Optional

from starlette.requests import ClientDisconnect

from ..core.config import PLAYABLE_MEDIA_TYPES
from ..core.exceptions import (
    ChunkStreamError,
    ObjectNotFound,
    RangeNotSatisfiable,
    UnsupportedMediaType,
)
from .cache import STREAM_METADATA_NAMESPACE, HashCache, stream_metadata_key
from .chunk_store import ChunkStore
from .storage import ObjectStat

logger = logging.getLogger(__name__)

RANGE_PREFIX = "bytes="


@dataclass(frozen=True)
class StreamMetadata:
    """Size and entity tag of a streamable object."""
    bucket: str
    object_name: str
    size: int
    etag: str

    @classmethod
    def from_stat(cls, stat: ObjectStat) -> "StreamMetadata":
        return cls(
            bucket=stat.bucket,
            object_name=stat.object_name,
            size=stat.size,
            etag=stat.etag,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StreamMetadata":
        return cls(
            bucket=data["bucket"],
            object_name=data["object_name"],
            size=int(data["size"]),
            etag=data["etag"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "bucket": self.bucket,
            "object_name": self.object_name,
            "size": self.size,
            "etag": self.etag,
        }


@dataclass(frozen=True)
class ByteRange:
    """Inclusive [start, end] window of an object of `size` bytes."""
    start: int
    end: int
    size: int
    partial: bool = False

    @property
    def length(self) -> int:
        return max(self.end - self.start + 1, 0)

    @property
    def status_code(self) -> int:
        return 206 if self.partial else 200

    @property
    def content_range(self) -> str:
        if self.size == 0:
            return "bytes */0"
        return f"bytes {self.start}-{self.end}/{self.size}"


def _parse_offset(value: str) -> int:
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        raise ValueError(value)
    return int(value)


def parse_range(header: Optional[str], size: int) -> ByteRange:
    """
    Serving window for a `Range: bytes=...` header.

    Supported forms: `-N` (last N bytes), `N-` (N to end) and `N-M`.
    No header, or one without the `bytes=` prefix, selects the whole object.
    Malformed numbers fall back to the whole object rather than failing.
    Raises RangeNotSatisfiable when the bounds do not fit the object.
    """
    full = ByteRange(start=0, end=size - 1, size=size)
    if not header or not header.startswith(RANGE_PREFIX):
        return full

    ranges = header[len(RANGE_PREFIX):]
    try:
        if ranges.startswith("-"):
            end = size - 1
            start = end - _parse_offset(ranges[1:]) + 1
        elif ranges.endswith("-"):
            start = _parse_offset(ranges[:-1])
            end = size - 1
        else:
            parts = ranges.split("-")
            if len(parts) == 2:
                start = _parse_offset(parts[0])
                end = _parse_offset(parts[1])
            else:
                start = _parse_offset(ranges.replace("-", ""))
                end = size - 1
    except ValueError:
        logger.error(f"{header} is not a number")
        return full

    if start < 0 or end < 0 or end >= size or start > end:
        raise RangeNotSatisfiable(header, size)
    return ByteRange(start=start, end=end, size=size, partial=True)


def is_client_disconnect(exc: BaseException) -> bool:
    """True for errors caused by the client going away mid-transfer (seek/scrub)."""
    return isinstance(exc, (ConnectionError, ClientDisconnect, asyncio.CancelledError, GeneratorExit))


class RangeStreamer:
    """Per-request range playback; holds no state between requests besides the cache."""

    def __init__(
        self,
        store: ChunkStore,
        cache: HashCache,
        buffer_size: int = 8192,
        media_types: Optional[dict[str, str]] = None,
    ):
        self.store = store
        self.cache = cache
        self.buffer_size = buffer_size
        self.media_types = media_types if media_types is not None else PLAYABLE_MEDIA_TYPES

    def media_type_of(self, object_name: str) -> str:
        ext = PurePosixPath(object_name).suffix.lstrip(".").lower()
        if ext not in self.media_types:
            raise UnsupportedMediaType(object_name)
        return self.media_types[ext]

    def resolve(self, bucket: str, object_name: str) -> StreamMetadata:
        """
        Size/etag for the object, from cache or a storage stat.

        On a cache miss the object must exist (ObjectNotFound otherwise) and
        have a playable extension (UnsupportedMediaType otherwise) before it
        is cached.
        """
        key = stream_metadata_key(bucket, object_name)
        try:
            cached = self.cache.get(STREAM_METADATA_NAMESPACE, key)
        except ChunkStreamError:
            logger.warning(f"Stream metadata cache unavailable for {key}", exc_info=True)
            cached = None
        if cached is not None:
            return StreamMetadata.from_dict(cached)

        try:
            stat = self.store.stat(bucket, object_name)
        except ChunkStreamError as e:
            logger.error(f"{object_name} does not exist in {bucket}: {e}")
            raise ObjectNotFound(bucket, object_name) from e

        self.media_type_of(object_name)
        metadata = StreamMetadata.from_stat(stat)
        try:
            self.cache.put(STREAM_METADATA_NAMESPACE, key, metadata.to_dict())
        except ChunkStreamError:
            logger.warning(f"Could not cache stream metadata for {key}", exc_info=True)
        return metadata

    def headers(self, metadata: StreamMetadata, window: ByteRange) -> dict[str, str]:
        return {
            "Accept-Ranges": "bytes",
            "Content-Range": window.content_range,
            "Content-Length": str(window.length),
            "Content-Type": self.media_type_of(metadata.object_name),
            "ETag": f'"{metadata.etag}"',
        }

    async def stream(self, metadata: StreamMetadata, window: ByteRange) -> AsyncIterator[bytes]:
        """
        Yield exactly the bytes of `window`.

        Blocking storage reads run in the default executor so the event loop
        keeps serving other requests. A client aborting the transfer is
        expected while seeking and is only logged at debug level.
        """
        if window.length == 0:
            return

        loop = asyncio.get_running_loop()
        response = None
        try:
            response = await loop.run_in_executor(
                None,
                self.store.open_range,
                metadata.bucket,
                metadata.object_name,
                window.start,
                window.length,
            )
            remaining = window.length
            while remaining > 0:
                chunk = await loop.run_in_executor(None, response.read, min(self.buffer_size, remaining))
                if not chunk:
                    logger.error(
                        f"Streaming {metadata.bucket}/{metadata.object_name} ended early: "
                        f"{remaining} of {window.length} bytes missing"
                    )
                    break
                remaining -= len(chunk)
                yield chunk
        except (asyncio.CancelledError, GeneratorExit):
            logger.debug(f"Client aborted stream of {metadata.bucket}/{metadata.object_name}")
            raise
        except (ChunkStreamError, OSError, ClientDisconnect) as e:
            if is_client_disconnect(e):
                logger.debug(f"Client aborted stream of {metadata.bucket}/{metadata.object_name}")
            else:
                logger.error(f"Streaming {metadata.bucket}/{metadata.object_name} failed: {e}")
        finally:
            if response is not None:
                response.close()
