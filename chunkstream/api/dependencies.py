"""
Service wiring for the API layer.

Services are created on first use from settings and shared across requests.
Tests replace them through app.dependency_overrides.
"""
from ..core.config import settings
from ..services.cache import HashCache, cache_from_settings
from ..services.chunk_store import ChunkStore
from ..services.storage import MinioObjectStorage
from ..services.streaming import RangeStreamer
from ..services.upload import UploadCoordinator
from ..services.verifier import HashVerifier

# Initialized on first use
chunk_store = None
hash_cache = None
upload_coordinator = None
range_streamer = None


def get_chunk_store() -> ChunkStore:
    global chunk_store
    if chunk_store is None:
        chunk_store = ChunkStore(
            MinioObjectStorage.from_settings(settings),
            default_bucket=settings.MINIO_BUCKET,
            url_expiry_seconds=settings.PRESIGNED_URL_EXPIRY_SECONDS,
        )
    return chunk_store


def get_cache() -> HashCache:
    global hash_cache
    if hash_cache is None:
        hash_cache = cache_from_settings(settings)
    return hash_cache


def get_upload_coordinator() -> UploadCoordinator:
    global upload_coordinator
    if upload_coordinator is None:
        store = get_chunk_store()
        upload_coordinator = UploadCoordinator(
            store,
            HashVerifier(store, algorithm=settings.HASH_ALGORITHM),
            get_cache(),
            merge_lock=settings.MERGE_LOCK_ENABLED,
        )
    return upload_coordinator


def get_range_streamer() -> RangeStreamer:
    global range_streamer
    if range_streamer is None:
        range_streamer = RangeStreamer(
            get_chunk_store(),
            get_cache(),
            buffer_size=settings.STREAM_BUFFER_SIZE,
        )
    return range_streamer
