"""
Wire status codes and the structured result envelope
"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class UploadStatus(int, Enum):
    """Status codes returned in the body of upload-path responses"""

    SUCCESS = 20000
    ALONE_CHUNK_UPLOAD_SUCCESS = 20001
    ALL_CHUNK_UPLOAD_SUCCESS = 20002
    PARAM_ERROR = 40000
    NOT_FOUND = 40004
    FAILURE = 50000
    CUSTOM_FAILURE = 50001

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES = {
    UploadStatus.SUCCESS: "Operation succeeded",
    UploadStatus.ALONE_CHUNK_UPLOAD_SUCCESS: "Chunk uploaded",
    UploadStatus.ALL_CHUNK_UPLOAD_SUCCESS: "All chunks uploaded",
    UploadStatus.PARAM_ERROR: "Invalid parameter",
    UploadStatus.NOT_FOUND: "Resource not found",
    UploadStatus.FAILURE: "Internal failure",
    UploadStatus.CUSTOM_FAILURE: "Custom failure",
}


class Result(BaseModel):
    """Structured error/success envelope: {message, code, data}"""
    message: str
    code: int
    data: Optional[Any] = None

    @classmethod
    def error(cls, status: UploadStatus = UploadStatus.FAILURE, data: Any = None) -> "Result":
        return cls(message=status.message, code=int(status), data=data)

    @classmethod
    def error_message(cls, message: str, code: int = int(UploadStatus.CUSTOM_FAILURE), data: Any = None) -> "Result":
        return cls(message=message, code=code, data=data)
