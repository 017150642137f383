"""Core module exports"""
from .config import settings, Settings, PLAYABLE_MEDIA_TYPES
from .status import UploadStatus, Result

__all__ = ["settings", "Settings", "PLAYABLE_MEDIA_TYPES", "UploadStatus", "Result"]
