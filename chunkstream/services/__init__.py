"""Services module exports"""
from .storage import MinioObjectStorage, ObjectStorage, ObjectStat, ObjectWrite
from .chunk_store import ChunkStore, StoredChunk
from .cache import HashCache, InMemoryHashCache, RedisHashCache, cache_from_settings
from .verifier import HashVerifier, VerificationReport, detect_types, compute_digest
from .upload import UploadCoordinator, CheckResult, MergeResult
from .streaming import RangeStreamer, StreamMetadata, ByteRange, parse_range

__all__ = [
    "MinioObjectStorage",
    "ObjectStorage",
    "ObjectStat",
    "ObjectWrite",
    "ChunkStore",
    "StoredChunk",
    "HashCache",
    "InMemoryHashCache",
    "RedisHashCache",
    "cache_from_settings",
    "HashVerifier",
    "VerificationReport",
    "detect_types",
    "compute_digest",
    "UploadCoordinator",
    "CheckResult",
    "MergeResult",
    "RangeStreamer",
    "StreamMetadata",
    "ByteRange",
    "parse_range",
]
