"""Schemas module exports"""
from .upload import UploadCheckResponse, ChunkUploadResponse, MergeResponse

__all__ = ["UploadCheckResponse", "ChunkUploadResponse", "MergeResponse"]
