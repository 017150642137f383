"""
Pydantic schemas for upload-path responses
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class UploadCheckResponse(BaseModel):
    """Dedup lookup result; url is present only when the content already exists"""
    status: int
    url: Optional[str] = None


class ChunkUploadResponse(BaseModel):
    """20001 for an intermediate chunk, 20002 for the last one"""
    status: int


class MergeResponse(BaseModel):
    """Merge outcome; objectName and url are set on success"""
    model_config = ConfigDict(populate_by_name=True)

    status: int
    object_name: Optional[str] = Field(None, alias="objectName")
    url: Optional[str] = None
