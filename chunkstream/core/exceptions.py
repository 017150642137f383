"""
Error taxonomy shared by the upload and streaming paths.

Coordinating services catch these at their boundary and turn them into
status codes; only the streaming endpoint maps them onto HTTP statuses.
"""


class ChunkStreamError(Exception):
    """Base class for all chunkstream errors."""


class ParameterError(ChunkStreamError):
    """A required input is missing or logically invalid."""


class NotFound(ChunkStreamError):
    """No dedup record, or the requested object is absent."""


class ObjectNotFound(NotFound):
    """The object (or its bucket) does not exist in storage."""

    def __init__(self, bucket: str, object_name: str):
        super().__init__(f"{bucket}/{object_name} not found")
        self.bucket = bucket
        self.object_name = object_name


class VerificationFailure(ChunkStreamError):
    """Recomputed digest or detected type disagrees with the client's claim."""


class RangeNotSatisfiable(ChunkStreamError):
    """The requested byte range does not fit the object."""

    def __init__(self, header: str, size: int):
        super().__init__(f"Range {header!r} not satisfiable for size {size}")
        self.header = header
        self.size = size


class UnsupportedMediaType(ChunkStreamError):
    """The object cannot be streamed because of its extension."""

    def __init__(self, object_name: str):
        super().__init__(f"Unsupported media type: {object_name}")
        self.object_name = object_name


class StorageError(ChunkStreamError):
    """Any failure reported by the object-storage or cache backend."""


class BucketNotEmpty(StorageError):
    """A bucket removal found objects that were written after it was emptied."""

    def __init__(self, bucket: str):
        super().__init__(f"Bucket {bucket} is not empty")
        self.bucket = bucket
