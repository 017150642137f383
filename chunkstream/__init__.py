"""Chunked, deduplicated uploads to MinIO with byte-range playback."""

__version__ = "1.0.0"
