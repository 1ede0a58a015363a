from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class UploadedFile(BaseModel):
    url: str
    key: str
    etag: str


class UploadResponse(BaseModel):
    success: bool = True
    message: str
    data: Union[UploadedFile, List[UploadedFile]]


class ErrorResponse(BaseModel):
    success: bool = False
    message: str


class HealthResponse(BaseModel):
    status: str = "healthy"


class Base64UploadRequest(BaseModel):
    # Both fields are optional here so that absence is reported as MissingInput, not a 422.
    base64_data: Optional[str] = Field(default=None, alias="base64Data")
    filename: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)
