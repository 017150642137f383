"""API module exports"""
from .endpoints import file_router, video_router

__all__ = ["file_router", "video_router"]
