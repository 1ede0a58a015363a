from __future__ import annotations

from enum import Enum
from typing import Dict


class ErrorKind(str, Enum):
    MISSING_INPUT = "MissingInput"
    MALFORMED_INPUT = "MalformedInput"
    VALIDATION_ERROR = "ValidationError"
    TOO_MANY_FILES = "TooManyFiles"
    STORE_ERROR = "StoreError"


STATUS_CODES: Dict[ErrorKind, int] = {
    ErrorKind.MISSING_INPUT: 400,
    ErrorKind.MALFORMED_INPUT: 400,
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.TOO_MANY_FILES: 400,
    ErrorKind.STORE_ERROR: 500,
}


class UploadError(Exception):
    """
    A failed upload request. The kind decides the HTTP status; the message is shown to the caller.
    """

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.value}, {self.message!r})"


class StoreError(UploadError):
    """Transport, permission or timeout failure from the object store."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorKind.STORE_ERROR, message)


class SizeLimitExceeded(StoreError):
    def __init__(self, max_bytes: int) -> None:
        super().__init__(f"Object exceeds {max_bytes} bytes")
        self.max_bytes = max_bytes
