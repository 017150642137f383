"""
Tests for the hash cache backends.
"""
import json

import pytest

from chunkstream.core.config import Settings
from chunkstream.core.exceptions import StorageError
from chunkstream.services.cache import (
    DEDUP_NAMESPACE,
    STREAM_METADATA_NAMESPACE,
    HashCache,
    InMemoryHashCache,
    RedisHashCache,
    cache_from_settings,
)
from tests.fakes import FakeRedis


@pytest.fixture(params=["memory", "redis"])
def any_cache(request):
    if request.param == "memory":
        return InMemoryHashCache()
    return RedisHashCache(FakeRedis(), prefix="test")


def test_backends_satisfy_protocol(any_cache):
    assert isinstance(any_cache, HashCache)


def test_put_get_delete(any_cache):
    assert any_cache.get(DEDUP_NAMESPACE, "abc") is None

    any_cache.put(DEDUP_NAMESPACE, "abc", "http://minio/bucket/obj.mp4")
    assert any_cache.get(DEDUP_NAMESPACE, "abc") == "http://minio/bucket/obj.mp4"

    any_cache.delete(DEDUP_NAMESPACE, "abc")
    assert any_cache.get(DEDUP_NAMESPACE, "abc") is None


def test_namespaces_are_isolated(any_cache):
    any_cache.put(DEDUP_NAMESPACE, "k", "url")
    assert any_cache.get(STREAM_METADATA_NAMESPACE, "k") is None


def test_structured_values_round_trip(any_cache):
    value = {"bucket": "b", "object_name": "o.mp4", "size": 10, "etag": "e"}
    any_cache.put(STREAM_METADATA_NAMESPACE, "b:o.mp4", value)
    assert any_cache.get(STREAM_METADATA_NAMESPACE, "b:o.mp4") == value


def test_delete_of_missing_key_is_a_no_op(any_cache):
    any_cache.delete(DEDUP_NAMESPACE, "never-written")


def test_redis_layout():
    client = FakeRedis()
    cache = RedisHashCache(client, prefix="chunkstream")

    cache.put(DEDUP_NAMESPACE, "abc", "url")

    assert client.hashes == {"chunkstream:file:digests": {"abc": json.dumps("url")}}


@pytest.mark.parametrize("operation", ["get", "put", "delete"])
def test_redis_errors_become_storage_errors(operation):
    client = FakeRedis()
    client.down = True
    cache = RedisHashCache(client)

    args = (DEDUP_NAMESPACE, "abc") + (("url",) if operation == "put" else ())
    with pytest.raises(StorageError):
        getattr(cache, operation)(*args)


def test_cache_from_settings_memory():
    settings = Settings()
    settings.CACHE_BACKEND = "memory"
    assert isinstance(cache_from_settings(settings), InMemoryHashCache)


def test_cache_from_settings_redis():
    settings = Settings()
    settings.CACHE_BACKEND = "Redis"
    settings.REDIS_URL = "redis://localhost:6379/0"
    cache = cache_from_settings(settings)
    assert isinstance(cache, RedisHashCache)
    assert cache.prefix == settings.CACHE_KEY_PREFIX


def test_cache_from_settings_rejects_unknown_backend():
    settings = Settings()
    settings.CACHE_BACKEND = "memcached"
    with pytest.raises(ValueError, match="memcached"):
        cache_from_settings(settings)


def test_redis_undecodable_entry_becomes_storage_error():
    client = FakeRedis()
    client.hashes["chunkstream:file:digests"] = {"abc": "http://not-json"}
    cache = RedisHashCache(client, prefix="chunkstream")

    with pytest.raises(StorageError, match="not valid JSON"):
        cache.get(DEDUP_NAMESPACE, "abc")
