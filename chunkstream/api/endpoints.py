"""
FastAPI endpoints for chunked upload and range playback

Provides:
    - GET  /file/check: Dedup lookup by content digest
    - POST /file/upload: Upload one chunk (multipart/form-data)
    - GET  /file/merge: Merge uploaded chunks and verify the result
    - GET  /video/play/{bucket_name}/{object_name}: Range-capable playback
"""
import asyncio
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, Header, Query, UploadFile
from fastapi.responses import JSONResponse, Response, StreamingResponse

from ..core.exceptions import ObjectNotFound, RangeNotSatisfiable, UnsupportedMediaType
from ..core.status import Result, UploadStatus
from ..schemas import ChunkUploadResponse, MergeResponse, UploadCheckResponse
from ..services.streaming import RangeStreamer, parse_range
from ..services.upload import UploadCoordinator
from .dependencies import get_range_streamer, get_upload_coordinator

logger = logging.getLogger(__name__)

file_router = APIRouter(prefix="/file", tags=["files"])
video_router = APIRouter(prefix="/video", tags=["video"])


@file_router.get("/check", response_model=UploadCheckResponse, response_model_exclude_none=True)
async def check_file_exists(
    coordinator: Annotated[UploadCoordinator, Depends(get_upload_coordinator)],
    md5: Optional[str] = None,
):
    """
    Check whether content with this digest was already uploaded.

    Lets clients skip the upload entirely ("instant upload") when it was.
    """
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(None, coordinator.check_uploaded, md5)
    return UploadCheckResponse(status=int(result.status), url=result.url)


@file_router.post("/upload", response_model=ChunkUploadResponse)
async def upload_chunk(
    coordinator: Annotated[UploadCoordinator, Depends(get_upload_coordinator)],
    index: Annotated[int, Form(description="Zero-based chunk index")],
    total: Annotated[int, Form(description="Total number of chunks")],
    md5: Annotated[Optional[str], Form(description="Digest of the complete file")] = None,
    name: Annotated[Optional[str], Form(description="Original file name")] = None,
    data: Annotated[Optional[UploadFile], File(description="Chunk bytes")] = None,
):
    """
    Upload a single chunk of a file.

    Idempotent per index: re-sending a chunk overwrites the previous copy,
    so clients can simply retry failed chunks.
    """
    if data is None:
        return ChunkUploadResponse(status=int(UploadStatus.FAILURE))

    content = await data.read()
    loop = asyncio.get_running_loop()
    status = await loop.run_in_executor(
        None, coordinator.ingest_chunk, md5, index, total, content, name
    )
    return ChunkUploadResponse(status=int(status))


@file_router.get("/merge", response_model=MergeResponse, response_model_exclude_none=True)
async def merge_chunks(
    coordinator: Annotated[UploadCoordinator, Depends(get_upload_coordinator)],
    shard_count: Annotated[int, Query(alias="shardCount")],
    file_name: Annotated[Optional[str], Query(alias="fileName")] = None,
    md5: Optional[str] = None,
    file_type: Annotated[Optional[str], Query(alias="fileType")] = None,
    file_size: Annotated[Optional[int], Query(alias="fileSize")] = None,
):
    """Merge all uploaded chunks of `md5` into one verified object."""
    logger.info(f"🧩 Merge request: md5={md5} shards={shard_count} fileName={file_name}")
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(
        None, coordinator.merge_session, shard_count, file_name, md5, file_type, file_size
    )
    return MergeResponse(status=int(result.status), object_name=result.object_name, url=result.url)


@video_router.get("/play/{bucket_name}/{object_name}")
async def play_video(
    bucket_name: str,
    object_name: str,
    streamer: Annotated[RangeStreamer, Depends(get_range_streamer)],
    range_header: Annotated[Optional[str], Header(alias="Range")] = None,
):
    """
    Stream a stored video with HTTP Range support (seekable playback).

    Returns 200 for the full object, 206 for a satisfiable range, 404 with a
    JSON body when the object is missing, 415 for non-playable types and 416
    (no body) for unsatisfiable ranges.
    """
    loop = asyncio.get_running_loop()
    try:
        metadata = await loop.run_in_executor(None, streamer.resolve, bucket_name, object_name)
    except ObjectNotFound:
        return JSONResponse(
            status_code=404,
            content=Result.error(UploadStatus.NOT_FOUND).model_dump(),
        )
    except UnsupportedMediaType as e:
        logger.info(f"Refusing to stream {bucket_name}/{object_name}: {e}")
        return JSONResponse(
            status_code=415,
            content=Result.error_message(str(e), code=int(UploadStatus.PARAM_ERROR)).model_dump(),
        )

    try:
        window = parse_range(range_header, metadata.size)
    except RangeNotSatisfiable as e:
        return Response(status_code=416, headers={"Content-Range": f"bytes */{e.size}"})

    return StreamingResponse(
        streamer.stream(metadata, window),
        status_code=window.status_code,
        headers=streamer.headers(metadata, window),
    )
