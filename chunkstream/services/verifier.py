"""
Content verification for merged uploads.

Two independent checks run against a stored object:
- a streaming digest over the full content (md5 by default)
- libmagic identification of the leading bytes, widened to every type label
  the content plausibly matches, so a claimed type is accepted if it is any of them
"""
import hashlib
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import BinaryIO, Optional

import magic

from ..core.exceptions import ChunkStreamError
from .chunk_store import ChunkStore

logger = logging.getLogger(__name__)

DIGEST_BLOCK_SIZE = 65536  # 64KB
HEADER_SIZE = 4096

# libmagic answers for content it could not identify
_UNIDENTIFIED = frozenset({"application/octet-stream", "inode/x-empty", "application/x-empty"})

_OLE2 = frozenset({"doc", "xls", "ppt", "msi", "application/msword",
                   "application/vnd.ms-excel", "application/vnd.ms-powerpoint"})

# Container formats share a MIME type; every member is a plausible label
_MIME_FAMILIES = {
    "application/zip": frozenset({"zip", "docx", "xlsx", "pptx", "jar", "apk", "epub", "odt", "ods", "odp"}),
    "application/x-ole-storage": _OLE2,
    "application/cdfv2": _OLE2,
    "application/vnd.ms-office": _OLE2,
    "application/msword": _OLE2,
    "application/gzip": frozenset({"gz", "tgz"}),
    "application/x-gzip": frozenset({"gz", "tgz", "application/gzip"}),
    "audio/x-wav": frozenset({"wav", "audio/wav"}),
    "audio/wav": frozenset({"wav", "audio/x-wav"}),
    "audio/x-m4a": frozenset({"m4a", "audio/mp4"}),
    "image/jpeg": frozenset({"jpg", "jpeg"}),
    "video/x-matroska": frozenset({"mkv", "webm", "video/webm"}),
    "video/webm": frozenset({"webm", "mkv", "video/x-matroska"}),
}

_MP4 = frozenset({"mp4", "video/mp4"})
_FTYP_BRANDS = {
    b"isom": _MP4, b"iso2": _MP4, b"iso4": _MP4, b"iso5": _MP4, b"iso6": _MP4,
    b"mp41": _MP4, b"mp42": _MP4, b"avc1": _MP4, b"dash": _MP4, b"mmp4": _MP4,
    b"M4V ": frozenset({"m4v", "mp4", "video/x-m4v"}),
    b"M4A ": frozenset({"m4a", "audio/mp4", "audio/x-m4a"}),
    b"M4B ": frozenset({"m4b", "m4a", "audio/mp4"}),
    b"qt  ": frozenset({"mov", "video/quicktime"}),
    b"3gp4": frozenset({"3gp", "video/3gpp"}),
    b"3gp5": frozenset({"3gp", "video/3gpp"}),
    b"heic": frozenset({"heic", "heif", "image/heic"}),
    b"mif1": frozenset({"heif", "heic", "image/heif"}),
    b"avif": frozenset({"avif", "image/avif"}),
}

_TEXT_EXTENSIONS = frozenset({
    "txt", "csv", "tsv", "json", "xml", "md", "html", "htm", "css", "js",
    "log", "yaml", "yml", "ini", "conf", "srt", "vtt", "svg", "sql",
})


@dataclass(frozen=True)
class VerificationReport:
    """Recomputed digest (None if the read failed) and detected type labels."""
    digest: Optional[str]
    types: frozenset[str] = field(default_factory=frozenset)
    size: Optional[int] = None

    def matches(self, claimed_digest: str, claimed_type: str) -> bool:
        return (
            bool(self.digest)
            and bool(self.types)
            and self.digest.lower() == claimed_digest.lower()
            and claimed_type.lower() in self.types
        )


def _extension(file_name: Optional[str]) -> str:
    if not file_name:
        return ""
    return PurePosixPath(file_name).suffix.lstrip(".").lower()


def _mime_labels(mime: str) -> set[str]:
    labels = {mime.lower()}
    labels.update(ext.lstrip(".").lower() for ext in mimetypes.guess_all_extensions(mime))
    labels |= _MIME_FAMILIES.get(mime.lower(), frozenset())
    return labels


def _iso_bmff_types(header: bytes) -> frozenset[str]:
    box_size = int.from_bytes(header[0:4], "big")
    brands = [header[8:12]]
    end = min(box_size, len(header)) if box_size >= 16 else 16
    brands.extend(header[i:i + 4] for i in range(16, end - 3, 4))
    labels: set[str] = set()
    for brand in brands:
        labels |= _FTYP_BRANDS.get(brand, frozenset())
    return frozenset(labels)


def _text_types(ext: str) -> set[str]:
    labels = {"txt", "text/plain"}
    if ext in _TEXT_EXTENSIONS:
        labels.add(ext)
        guessed, _ = mimetypes.guess_type(f"file.{ext}")
        if guessed:
            labels.add(guessed)
    return labels


def detect_types(header: bytes, file_name: Optional[str] = None, size: Optional[int] = None) -> frozenset[str]:
    """
    Every type label (extension and MIME type) the content plausibly matches.

    libmagic names one MIME type for `header`; it is widened with its known
    extensions, the members of its container family and, for ISO-BMFF, the
    brands in the ftyp box. Text content also takes the file name's
    extension when that is a text format. Empty content matches nothing.
    """
    if not header or size == 0:
        return frozenset()

    try:
        mime = magic.from_buffer(header, mime=True)
    except magic.MagicException:
        logger.exception(f"libmagic could not identify {file_name}")
        return frozenset()

    labels: set[str] = set()
    if mime not in _UNIDENTIFIED:
        labels |= _mime_labels(mime)
    if header[4:8] == b"ftyp":
        labels |= _iso_bmff_types(header)
    if mime.startswith("text/"):
        labels |= _text_types(_extension(file_name))
    return frozenset(labels)


def compute_digest(stream: BinaryIO, algorithm: str = "md5") -> str:
    """Hex digest of the whole stream, read in 64KB blocks."""
    hasher = hashlib.new(algorithm)
    while True:
        block = stream.read(DIGEST_BLOCK_SIZE)
        if not block:
            break
        hasher.update(block)
    return hasher.hexdigest()


class HashVerifier:
    """Recomputes the digest and type set of a stored object from independent reads."""

    def __init__(self, store: ChunkStore, algorithm: str = "md5"):
        hashlib.new(algorithm)  # raises ValueError for unknown algorithms
        self.store = store
        self.algorithm = algorithm

    def digest_of(self, bucket: str, object_name: str) -> str:
        stream = self.store.open_object(bucket, object_name)
        try:
            return compute_digest(stream, self.algorithm)
        finally:
            stream.close()

    def types_of(self, bucket: str, object_name: str, file_name: Optional[str], size: int) -> frozenset[str]:
        if size == 0:
            return frozenset()
        stream = self.store.open_range(bucket, object_name, 0, min(HEADER_SIZE, size))
        try:
            header = stream.read(HEADER_SIZE)
        finally:
            stream.close()
        return detect_types(header, file_name, size)

    def verify(self, bucket: str, object_name: str, file_name: Optional[str] = None,
               expected_size: Optional[int] = None) -> VerificationReport:
        """
        Run both checks. A failing read yields an empty half of the report
        rather than an exception, so the caller rejects the object.
        """
        try:
            size = self.store.stat(bucket, object_name).size
        except (ChunkStreamError, OSError):
            logger.exception(f"Could not stat {bucket}/{object_name} for verification")
            return VerificationReport(digest=None)

        if expected_size is not None and expected_size != size:
            logger.warning(f"⚠️  Size mismatch for {bucket}/{object_name}: expected {expected_size}, stored {size}")

        digest = None
        try:
            digest = self.digest_of(bucket, object_name)
        except (ChunkStreamError, OSError):
            logger.exception(f"Digest read failed for {bucket}/{object_name}")

        types: frozenset[str] = frozenset()
        try:
            types = self.types_of(bucket, object_name, file_name, size)
        except (ChunkStreamError, OSError):
            logger.exception(f"Type read failed for {bucket}/{object_name}")

        return VerificationReport(digest=digest, types=types, size=size)
