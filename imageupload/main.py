from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, File, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config, models, responses
from .errors import ErrorKind, UploadError
from .limits import BodySizeLimitMiddleware
from .object_store import InMemoryObjectStore, MinioObjectStore, ObjectStore, PublicUrlBuilder
from .service import UploadService


# ---- App Setup ----
settings = config.get_settings()
app = FastAPI(title=settings.APP_NAME, version=settings.VERSION)
log = logging.getLogger("imageupload")
logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(
    BodySizeLimitMiddleware,
    max_bytes=settings.MAX_JSON_BODY_BYTES,
    paths={"/api/upload-base64"},
)


# ---- DI Setup ----
def get_settings() -> config.Settings:
    return config.get_settings()


@lru_cache()
def get_object_store() -> ObjectStore:
    current = get_settings()
    if current.USE_MEMORY_STORE:
        return InMemoryObjectStore(
            PublicUrlBuilder(current.S3_BUCKET_NAME or "local", current.AWS_REGION, current.PUBLIC_URL_TEMPLATE)
        )
    return MinioObjectStore.from_settings(current)


def get_upload_service(
    store: ObjectStore = Depends(get_object_store),
    current: config.Settings = Depends(get_settings),
) -> UploadService:
    return UploadService(store, timeout_seconds=current.UPLOAD_TIMEOUT_SECONDS)


@app.on_event("startup")
async def startup():
    current = get_settings()
    if current.S3_CREATE_BUCKET and not current.USE_MEMORY_STORE:
        store = get_object_store()
        store.ensure_bucket(region=current.AWS_REGION)
    log.info("%s ready on port %s", current.APP_NAME, current.PORT)


# ---- API Endpoints ----
@app.get("/api/health", response_model=models.HealthResponse)
async def health() -> models.HealthResponse:
    return models.HealthResponse()


@app.post("/api/upload", response_model=models.UploadResponse)
async def upload_image(
    image: Optional[List[UploadFile]] = File(default=None),
    service: UploadService = Depends(get_upload_service),
) -> models.UploadResponse:
    result = await service.upload_single(image)
    return responses.success_body(result)


@app.post("/api/upload-base64", response_model=models.UploadResponse)
async def upload_base64(
    body: Optional[models.Base64UploadRequest] = None,
    service: UploadService = Depends(get_upload_service),
) -> models.UploadResponse:
    body = body or models.Base64UploadRequest()
    result = await service.upload_base64(body.base64_data, body.filename)
    return responses.success_body(result)


@app.post("/api/upload-multiple", response_model=models.UploadResponse)
async def upload_multiple(
    images: Optional[List[UploadFile]] = File(default=None),
    service: UploadService = Depends(get_upload_service),
) -> models.UploadResponse:
    results = await service.upload_multiple(images)
    return responses.success_body(results)


# ---- Error Handling ----
@app.exception_handler(UploadError)
async def upload_error_handler(request, exc: UploadError):
    return responses.failure_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    log.warning("Malformed request to %s: %s", request.url.path, exc.errors())
    return responses.failure_response(UploadError(ErrorKind.MALFORMED_INPUT, "Malformed request"))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    # Unknown paths and unsupported methods are both "no such route".
    if exc.status_code in (404, 405):
        return responses.error_response(404, responses.NOT_FOUND_MESSAGE)
    return responses.error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request, exc):
    log.error("Unhandled error: %s", exc, exc_info=True)
    return responses.error_response(500, responses.INTERNAL_ERROR_MESSAGE)
