"""
Hash-keyed cache shared by the upload and streaming paths.

Values live in named hashes (namespaces) with no expiry:
    file:digests   content digest -> signed URL of the merged object
    media:objects  "bucket:object" -> {bucket, object_name, size, etag}
"""
import json
import logging
import threading
from typing import Any, Optional, Protocol, runtime_checkable

import redis
from redis.exceptions import RedisError

from ..core.config import Settings
from ..core.exceptions import StorageError

logger = logging.getLogger(__name__)

DEDUP_NAMESPACE = "file:digests"
STREAM_METADATA_NAMESPACE = "media:objects"


def stream_metadata_key(bucket: str, object_name: str) -> str:
    return f"{bucket}:{object_name}"


@runtime_checkable
class HashCache(Protocol):
    """get/put/delete on a namespaced key-value store; delete is the invalidation hook."""

    def get(self, namespace: str, key: str) -> Optional[Any]: ...

    def put(self, namespace: str, key: str, value: Any) -> None: ...

    def delete(self, namespace: str, key: str) -> None: ...


class InMemoryHashCache:
    """Process-local cache; suitable for a single server or tests."""

    def __init__(self):
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, namespace: str, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(namespace, {}).get(key)

    def put(self, namespace: str, key: str, value: Any) -> None:
        with self._lock:
            self._data.setdefault(namespace, {})[key] = value

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._data.get(namespace, {}).pop(key, None)


class RedisHashCache:
    """Cache stored in Redis hashes named `<prefix>:<namespace>`, values JSON-encoded."""

    def __init__(self, client: "redis.Redis", prefix: str = "chunkstream"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisHashCache":
        client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info(f"🧠 Redis cache configured: {settings.REDIS_URL}")
        return cls(client, prefix=settings.CACHE_KEY_PREFIX)

    def _hash_name(self, namespace: str) -> str:
        return f"{self.prefix}:{namespace}"

    def get(self, namespace: str, key: str) -> Optional[Any]:
        try:
            raw = self.client.hget(self._hash_name(namespace), key)
        except RedisError as e:
            raise StorageError(f"Cache read failed for {namespace}/{key}: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StorageError(f"Cache entry {namespace}/{key} is not valid JSON: {e}") from e

    def put(self, namespace: str, key: str, value: Any) -> None:
        try:
            self.client.hset(self._hash_name(namespace), key, json.dumps(value))
        except RedisError as e:
            raise StorageError(f"Cache write failed for {namespace}/{key}: {e}") from e

    def delete(self, namespace: str, key: str) -> None:
        try:
            self.client.hdel(self._hash_name(namespace), key)
        except RedisError as e:
            raise StorageError(f"Cache delete failed for {namespace}/{key}: {e}") from e


def cache_from_settings(settings: Settings) -> HashCache:
    backend = settings.CACHE_BACKEND.lower()
    if backend == "redis":
        return RedisHashCache.from_settings(settings)
    if backend == "memory":
        return InMemoryHashCache()
    raise ValueError(f"Unsupported CACHE_BACKEND: {settings.CACHE_BACKEND}")
