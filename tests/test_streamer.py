"""
Tests for RangeStreamer: metadata resolution, headers and the byte copy.
"""
import asyncio
import logging

import pytest

from chunkstream.core.exceptions import ObjectNotFound, StorageError, UnsupportedMediaType
from chunkstream.services.cache import STREAM_METADATA_NAMESPACE, InMemoryHashCache, stream_metadata_key
from chunkstream.services.streaming import RangeStreamer, StreamMetadata, parse_range
from tests.conftest import DEFAULT_BUCKET, make_mp4, md5_hex


def collect(agen) -> bytes:
    async def _run():
        return b"".join([chunk async for chunk in agen])
    return asyncio.run(_run())


@pytest.fixture
def video(storage):
    content = make_mp4(5000)
    storage.put_object(DEFAULT_BUCKET, "movie.mp4", content)
    return content


class TestResolve:

    def test_stat_result_is_cached(self, streamer, storage, cache, video):
        metadata = streamer.resolve(DEFAULT_BUCKET, "movie.mp4")

        assert metadata == StreamMetadata(DEFAULT_BUCKET, "movie.mp4", len(video), md5_hex(video))
        cached = cache.get(STREAM_METADATA_NAMESPACE, stream_metadata_key(DEFAULT_BUCKET, "movie.mp4"))
        assert StreamMetadata.from_dict(cached) == metadata

        streamer.resolve(DEFAULT_BUCKET, "movie.mp4")
        assert storage.count("stat_object") == 1

    def test_missing_object(self, streamer, cache):
        with pytest.raises(ObjectNotFound):
            streamer.resolve(DEFAULT_BUCKET, "ghost.mp4")
        assert cache.get(STREAM_METADATA_NAMESPACE, stream_metadata_key(DEFAULT_BUCKET, "ghost.mp4")) is None

    def test_non_playable_extension_is_refused_before_reading(self, streamer, storage, cache):
        storage.put_object(DEFAULT_BUCKET, "notes.txt", b"hello")

        with pytest.raises(UnsupportedMediaType):
            streamer.resolve(DEFAULT_BUCKET, "notes.txt")

        assert storage.count("get_object") == 0
        assert cache.get(STREAM_METADATA_NAMESPACE, stream_metadata_key(DEFAULT_BUCKET, "notes.txt")) is None

    def test_extension_match_ignores_case(self, streamer, storage):
        storage.put_object(DEFAULT_BUCKET, "MOVIE.MP4", make_mp4(10))
        assert streamer.resolve(DEFAULT_BUCKET, "MOVIE.MP4").size == 34

    def test_cache_outage_falls_back_to_stat(self, store, storage, video):
        class BrokenCache(InMemoryHashCache):
            def get(self, namespace, key):
                raise StorageError("redis down")

            def put(self, namespace, key, value):
                raise StorageError("redis down")

        streamer = RangeStreamer(store, BrokenCache())
        assert streamer.resolve(DEFAULT_BUCKET, "movie.mp4").size == len(video)


def test_headers_for_partial_window(streamer, video):
    metadata = streamer.resolve(DEFAULT_BUCKET, "movie.mp4")
    window = parse_range("bytes=10-19", metadata.size)

    headers = streamer.headers(metadata, window)

    assert headers == {
        "Accept-Ranges": "bytes",
        "Content-Range": f"bytes 10-19/{len(video)}",
        "Content-Length": "10",
        "Content-Type": "video/mp4",
        "ETag": f'"{md5_hex(video)}"',
    }


class TestStream:

    @pytest.mark.parametrize("header", [None, "bytes=0-0", "bytes=1000-3999", "bytes=-100", "bytes=4000-"])
    def test_yields_exactly_the_window(self, streamer, video, header):
        metadata = streamer.resolve(DEFAULT_BUCKET, "movie.mp4")
        window = parse_range(header, metadata.size)

        body = collect(streamer.stream(metadata, window))

        assert body == video[window.start:window.end + 1]

    def test_reads_in_buffer_sized_pieces(self, streamer, video):
        metadata = streamer.resolve(DEFAULT_BUCKET, "movie.mp4")

        async def _sizes():
            return [len(chunk) async for chunk in streamer.stream(metadata, parse_range(None, metadata.size))]

        sizes = asyncio.run(_sizes())
        assert all(size <= streamer.buffer_size for size in sizes)
        assert sum(sizes) == len(video)

    def test_empty_window_reads_nothing(self, streamer, storage):
        storage.put_object(DEFAULT_BUCKET, "empty.mp4", b"")
        metadata = streamer.resolve(DEFAULT_BUCKET, "empty.mp4")

        assert collect(streamer.stream(metadata, parse_range(None, 0))) == b""
        assert storage.count("get_object") == 0

    def test_client_abort_is_not_an_error(self, streamer, storage, video, caplog):
        metadata = streamer.resolve(DEFAULT_BUCKET, "movie.mp4")

        async def _first_then_abort():
            agen = streamer.stream(metadata, parse_range(None, metadata.size))
            first = await agen.__anext__()
            await agen.aclose()
            return first

        with caplog.at_level(logging.DEBUG, logger="chunkstream.services.streaming"):
            first = asyncio.run(_first_then_abort())

        assert first == video[:streamer.buffer_size]
        assert storage.streams[-1].closed
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert "Client aborted" in caplog.text

    def test_connection_reset_is_not_an_error(self, streamer, storage, video, caplog):
        metadata = streamer.resolve(DEFAULT_BUCKET, "movie.mp4")
        storage.read_errors[(DEFAULT_BUCKET, "movie.mp4")] = (2048, ConnectionResetError("reset by peer"))

        body = collect(streamer.stream(metadata, parse_range(None, metadata.size)))

        assert body == video[:2048]
        assert storage.streams[-1].closed
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    def test_storage_failure_mid_stream_is_logged(self, streamer, storage, video, caplog):
        metadata = streamer.resolve(DEFAULT_BUCKET, "movie.mp4")
        storage.read_errors[(DEFAULT_BUCKET, "movie.mp4")] = (1024, StorageError("connection to MinIO lost"))

        body = collect(streamer.stream(metadata, parse_range(None, metadata.size)))

        assert body == video[:1024]
        assert storage.streams[-1].closed
        errors = [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert len(errors) == 1
        assert "movie.mp4" in errors[0].getMessage()

    def test_object_shorter_than_promised_is_logged(self, streamer, storage, video, caplog):
        metadata = streamer.resolve(DEFAULT_BUCKET, "movie.mp4")
        # object replaced behind the cached metadata
        storage.buckets[DEFAULT_BUCKET]["movie.mp4"] = video[:3000]

        body = collect(streamer.stream(metadata, parse_range(None, metadata.size)))

        assert body == video[:3000]
        assert storage.streams[-1].closed
        errors = [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert len(errors) == 1
        assert f"{len(video) - 3000} of {len(video)} bytes missing" in errors[0].getMessage()
