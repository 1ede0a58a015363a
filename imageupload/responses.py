"""
Turns upload outcomes into the JSON bodies the API returns.

Every response carries ``success`` and ``message``; successes add ``data``
(one object or a list), failures pick their status from the error kind.
"""
from __future__ import annotations

from typing import List, Union

from fastapi.responses import JSONResponse

from .errors import UploadError
from .models import ErrorResponse, UploadedFile, UploadResponse
from .object_store import StoreResult

UploadOutcome = Union[StoreResult, List[StoreResult]]

SINGLE_SUCCESS_MESSAGE = "File uploaded successfully"
MULTIPLE_SUCCESS_MESSAGE = "Files uploaded successfully"
NOT_FOUND_MESSAGE = "Route not found"
INTERNAL_ERROR_MESSAGE = "Internal Server Error"


def to_uploaded_file(result: StoreResult) -> UploadedFile:
    return UploadedFile(url=result.public_url, key=result.key, etag=result.etag)


def success_body(outcome: UploadOutcome) -> UploadResponse:
    if isinstance(outcome, list):
        return UploadResponse(
            message=MULTIPLE_SUCCESS_MESSAGE,
            data=[to_uploaded_file(r) for r in outcome],
        )
    return UploadResponse(message=SINGLE_SUCCESS_MESSAGE, data=to_uploaded_file(outcome))


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(message=message).model_dump())


def failure_response(exc: UploadError) -> JSONResponse:
    return error_response(exc.status_code, exc.message)
