"""
Chunked upload protocol: per-chunk ingestion, merge, verification and
content-addressed deduplication.
"""
import logging
import threading
import uuid
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable, Optional

from ..core.exceptions import ChunkStreamError, ParameterError, VerificationFailure
from ..core.status import UploadStatus
from .cache import DEDUP_NAMESPACE, STREAM_METADATA_NAMESPACE, HashCache, stream_metadata_key
from .chunk_store import ChunkStore
from .verifier import HashVerifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    status: UploadStatus
    url: Optional[str] = None


@dataclass(frozen=True)
class MergeResult:
    status: UploadStatus
    object_name: Optional[str] = None
    url: Optional[str] = None


class KeyedLock:
    """One lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [lock, users]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class MergeSaga:
    """
    Compensating actions for the non-transactional merge.

    Steps register their undo as they complete; compensate() runs them in
    reverse order. Compensation failures are logged and do not stop the rest.
    """

    def __init__(self, name: str):
        self.name = name
        self._compensations: list[tuple[str, Callable[[], None]]] = []

    def completed(self, step: str, compensation: Optional[Callable[[], None]] = None) -> None:
        logger.debug(f"[{self.name}] step done: {step}")
        if compensation is not None:
            self._compensations.append((step, compensation))

    def compensate(self) -> None:
        while self._compensations:
            step, action = self._compensations.pop()
            try:
                action()
                logger.info(f"[{self.name}] compensated: {step}")
            except (ChunkStreamError, OSError):
                logger.exception(f"[{self.name}] compensation failed: {step}")


def _check_chunk_params(session_digest: Optional[str], index: int, total_count: int,
                        data: Optional[bytes]) -> None:
    if not session_digest or data is None:
        raise ParameterError("digest and data are required")
    if index < 0 or total_count <= 0 or index >= total_count:
        raise ParameterError(f"index={index} is outside total={total_count}")


def merged_object_name(file_name: Optional[str]) -> str:
    """Fresh opaque name that keeps the original extension."""
    suffix = PurePosixPath(file_name).suffix if file_name else ""
    return f"{uuid.uuid4()}{suffix}"


class UploadCoordinator:
    """Drives chunk ingestion and merging against ChunkStore, HashVerifier and the cache."""

    def __init__(
        self,
        store: ChunkStore,
        verifier: HashVerifier,
        cache: HashCache,
        merge_lock: bool = True,
    ):
        self.store = store
        self.verifier = verifier
        self.cache = cache
        self._merge_locks = KeyedLock() if merge_lock else None

    def check_uploaded(self, digest: Optional[str]) -> CheckResult:
        """Dedup lookup so clients can skip uploading content the server already has."""
        if not digest:
            return CheckResult(status=UploadStatus.PARAM_ERROR)
        try:
            url = self.cache.get(DEDUP_NAMESPACE, digest.lower())
        except ChunkStreamError:
            logger.exception(f"Dedup lookup failed for {digest}")
            return CheckResult(status=UploadStatus.FAILURE)
        if not url:
            return CheckResult(status=UploadStatus.NOT_FOUND)
        return CheckResult(status=UploadStatus.SUCCESS, url=url)

    def ingest_chunk(
        self,
        session_digest: Optional[str],
        index: int,
        total_count: int,
        data: Optional[bytes],
        file_name: Optional[str] = None,
    ) -> UploadStatus:
        """
        Store one chunk of a session, overwriting any earlier copy of it.

        The result only says whether this call carried the last index; it does
        not check that the other chunks are present.
        """
        try:
            _check_chunk_params(session_digest, index, total_count, data)
        except ParameterError as e:
            logger.info(f"Rejected chunk for {session_digest}: {e}")
            return UploadStatus.PARAM_ERROR

        logger.info(f"index: {index}, total: {total_count}, fileName: {file_name}, md5: {session_digest}")
        try:
            chunk = self.store.write_chunk(session_digest, index, data, file_name)
        except ChunkStreamError:
            logger.exception(f"Failed to store chunk {index} of {session_digest}")
            return UploadStatus.FAILURE

        logger.info(f"📦 Chunk {chunk.object_name} stored in {chunk.bucket} ({len(data)} bytes)")
        if index + 1 == total_count:
            return UploadStatus.ALL_CHUNK_UPLOAD_SUCCESS
        return UploadStatus.ALONE_CHUNK_UPLOAD_SUCCESS

    def merge_session(
        self,
        expected_chunk_count: int,
        file_name: Optional[str],
        claimed_digest: Optional[str],
        claimed_type: Optional[str],
        expected_size: Optional[int] = None,
    ) -> MergeResult:
        """
        Compose the session's chunks into the default bucket and keep the
        result only if its recomputed digest and detected type agree with the
        client's claims.

        Flow:
        1. List chunks; a count mismatch fails before anything is mutated
        2. Compose into <uuid>.<ext> in the default bucket
        3. Force-remove the staging bucket
        4. Verify digest and type from two fresh reads
        5. Sign a URL and record digest -> url, or delete the merged object
        """
        if not claimed_digest or not claimed_type:
            return MergeResult(status=UploadStatus.FAILURE)

        gate = self._merge_locks.hold(claimed_digest.lower()) if self._merge_locks else nullcontext()
        with gate:
            return self._merge(expected_chunk_count, file_name, claimed_digest, claimed_type, expected_size)

    def _merge(
        self,
        expected_chunk_count: int,
        file_name: Optional[str],
        claimed_digest: str,
        claimed_type: str,
        expected_size: Optional[int],
    ) -> MergeResult:
        bucket = self.store.default_bucket
        saga = MergeSaga(f"merge {claimed_digest}")

        try:
            chunk_keys = self.store.list_chunk_keys(claimed_digest)
            if len(chunk_keys) != expected_chunk_count:
                logger.info(
                    f"Chunk count mismatch for {claimed_digest}: expected {expected_chunk_count}, found {len(chunk_keys)}"
                )
                return MergeResult(status=UploadStatus.FAILURE)

            object_name = merged_object_name(file_name)
            self.store.compose_session(claimed_digest, chunk_keys, object_name)
            saga.completed("compose", lambda: self._discard_merged(bucket, object_name))

            self.store.drop_session(claimed_digest, force=True)
            saga.completed("drop staging bucket")
        except ChunkStreamError:
            logger.exception(f"Merge of {claimed_digest} failed")
            return MergeResult(status=UploadStatus.FAILURE)

        try:
            report = self.verifier.verify(bucket, object_name, file_name, expected_size)
            if not report.matches(claimed_digest, claimed_type):
                logger.info(
                    f"Rejected upload: chunks={expected_chunk_count}, fileName={file_name}, "
                    f"digest={report.digest}, types={sorted(report.types)}, size={report.size}"
                )
                raise VerificationFailure(
                    f"Client claimed: chunks={expected_chunk_count}, fileName={file_name}, "
                    f"digest={claimed_digest}, type={claimed_type}, size={expected_size}"
                )
            saga.completed("verify")

            url = self.store.sign_url(bucket, object_name)
            self.cache.put(DEDUP_NAMESPACE, claimed_digest.lower(), url)
        except VerificationFailure as e:
            logger.info(str(e))
            saga.compensate()
            return MergeResult(status=UploadStatus.FAILURE)
        except ChunkStreamError:
            logger.exception(f"Could not publish {bucket}/{object_name}")
            saga.compensate()
            return MergeResult(status=UploadStatus.FAILURE)

        logger.info(f"✅ Merged {claimed_digest} into {bucket}/{object_name}")
        return MergeResult(status=UploadStatus.SUCCESS, object_name=object_name, url=url)

    def _discard_merged(self, bucket: str, object_name: str) -> None:
        self.store.delete_object(bucket, object_name)
        self.cache.delete(STREAM_METADATA_NAMESPACE, stream_metadata_key(bucket, object_name))
