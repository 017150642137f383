"""
Shared fixtures: services wired onto in-memory storage and cache.
"""
import hashlib

import pytest
from fastapi.testclient import TestClient

from chunkstream.api.dependencies import get_range_streamer, get_upload_coordinator
from chunkstream.main import app
from chunkstream.services.cache import InMemoryHashCache
from chunkstream.services.chunk_store import ChunkStore
from chunkstream.services.streaming import RangeStreamer
from chunkstream.services.upload import UploadCoordinator
from chunkstream.services.verifier import HashVerifier
from tests.fakes import FakeObjectStorage

DEFAULT_BUCKET = "chunkstream"

# 24-byte ISO-BMFF ftyp box: major brand mp42, compatible mp42 + isom
MP4_HEADER = b"\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00mp42isom"


def make_mp4(payload_size: int = 10_000) -> bytes:
    body = bytes(i % 251 for i in range(payload_size))
    return MP4_HEADER + body


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def split_chunks(data: bytes, count: int) -> list[bytes]:
    size = -(-len(data) // count)
    return [data[i * size:(i + 1) * size] for i in range(count)]


@pytest.fixture
def storage():
    fake = FakeObjectStorage()
    fake.make_bucket(DEFAULT_BUCKET)
    return fake


@pytest.fixture
def store(storage):
    return ChunkStore(storage, default_bucket=DEFAULT_BUCKET, url_expiry_seconds=3600)


@pytest.fixture
def cache():
    return InMemoryHashCache()


@pytest.fixture
def verifier(store):
    return HashVerifier(store, algorithm="md5")


@pytest.fixture
def coordinator(store, verifier, cache):
    return UploadCoordinator(store, verifier, cache, merge_lock=True)


@pytest.fixture
def streamer(store, cache):
    return RangeStreamer(store, cache, buffer_size=1024)


@pytest.fixture
def mp4_content():
    return make_mp4()


@pytest.fixture
def upload_session(coordinator):
    """Ingest `content` as `count` chunks under its md5; returns the digest."""

    def _upload(content: bytes, count: int = 3, file_name: str = "clip.mp4") -> str:
        digest = md5_hex(content)
        for index, chunk in enumerate(split_chunks(content, count)):
            coordinator.ingest_chunk(digest, index, count, chunk, file_name)
        return digest

    return _upload


@pytest.fixture
def client(coordinator, streamer):
    """TestClient without the lifespan, so no MinIO connection is attempted."""
    app.dependency_overrides[get_upload_coordinator] = lambda: coordinator
    app.dependency_overrides[get_range_streamer] = lambda: streamer
    yield TestClient(app)
    app.dependency_overrides.clear()
