from __future__ import annotations

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Callable, Dict, Optional
from urllib.parse import quote

import urllib3
from minio import Minio
from minio.credentials import AWSConfigProvider, ChainedProvider, EnvAWSProvider, IamAwsProvider
from minio.error import MinioException

from .config import Settings
from .errors import SizeLimitExceeded, StoreError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
DEFAULT_URL_TEMPLATE = "https://{bucket}.s3.{region}.amazonaws.com/{key}"


@dataclass(frozen=True)
class StoreResult:
    key: str
    public_url: str
    etag: str


class PublicUrlBuilder:
    """
    Renders the public URL of a key from a template with ``{bucket}``, ``{region}`` and ``{key}``.
    """

    def __init__(self, bucket: str, region: str, template: str = DEFAULT_URL_TEMPLATE) -> None:
        self.bucket = bucket
        self.region = region
        self.template = template

    def __call__(self, key: str) -> str:
        return self.template.format(bucket=self.bucket, region=self.region, key=quote(key, safe="/"))


class BoundedStream:
    """
    File-like wrapper that fails the read once more than ``max_bytes`` came through
    or once ``cancel_event`` is set.
    """

    def __init__(
        self,
        source: BinaryIO,
        max_bytes: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.source = source
        self.max_bytes = max_bytes
        self.cancel_event = cancel_event
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise StoreError("Upload aborted")
        chunk = self.source.read(size)
        self.bytes_read += len(chunk)
        if self.bytes_read > self.max_bytes:
            raise SizeLimitExceeded(self.max_bytes)
        return chunk


class ObjectStore(ABC):
    """
    Port for writing uploaded objects; backed by S3/MinIO or memory.
    """

    def __init__(self, url_for: Callable[[str], str]) -> None:
        self._url_for = url_for

    def url_for(self, key: str) -> str:
        return self._url_for(key)

    @abstractmethod
    def put(
        self,
        key: str,
        content_type: str,
        byte_source: BinaryIO,
        max_bytes: int,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> StoreResult:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError


class MinioObjectStore(ObjectStore):
    def __init__(
        self,
        client: Minio,
        bucket: str,
        url_for: Callable[[str], str],
        part_size: int = 5 * 1024 * 1024,
    ) -> None:
        super().__init__(url_for)
        self.client = client
        self.bucket = bucket
        self.part_size = part_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "MinioObjectStore":
        if not settings.S3_BUCKET_NAME:
            raise ValueError("S3_BUCKET_NAME is not configured")

        if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            client = Minio(
                endpoint=settings.S3_ENDPOINT,
                access_key=settings.AWS_ACCESS_KEY_ID,
                secret_key=settings.AWS_SECRET_ACCESS_KEY,
                secure=settings.S3_SECURE,
                region=settings.AWS_REGION,
            )
        else:
            logger.debug("No explicit keys; using ambient AWS credentials")
            client = Minio(
                endpoint=settings.S3_ENDPOINT,
                secure=settings.S3_SECURE,
                region=settings.AWS_REGION,
                credentials=ChainedProvider([EnvAWSProvider(), AWSConfigProvider(), IamAwsProvider()]),
            )

        url_for = PublicUrlBuilder(settings.S3_BUCKET_NAME, settings.AWS_REGION, settings.PUBLIC_URL_TEMPLATE)
        return cls(client, settings.S3_BUCKET_NAME, url_for, part_size=settings.UPLOAD_PART_SIZE)

    def ensure_bucket(self, region: Optional[str] = None) -> None:
        if not self.client.bucket_exists(bucket_name=self.bucket):
            self.client.make_bucket(bucket_name=self.bucket, location=region)
            logger.info("Created bucket %s", self.bucket)

    def put(
        self,
        key: str,
        content_type: str,
        byte_source: BinaryIO,
        max_bytes: int,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> StoreResult:
        # A failed single PUT stores nothing and minio aborts failed multipart uploads.
        stream = BoundedStream(byte_source, max_bytes, cancel_event)
        try:
            result = self.client.put_object(
                bucket_name=self.bucket,
                object_name=key,
                data=stream,
                length=-1,
                content_type=content_type,
                part_size=self.part_size,
            )
        except (MinioException, urllib3.exceptions.HTTPError, OSError) as exc:
            logger.error("Failed to store %s/%s: %s", self.bucket, key, exc)
            raise StoreError(str(exc) or "Object store write failed") from exc

        if cancel_event is not None and cancel_event.is_set():
            self.delete(key)
            raise StoreError("Upload aborted")

        return StoreResult(key=key, public_url=self.url_for(key), etag=result.etag)

    def delete(self, key: str) -> None:
        try:
            self.client.remove_object(bucket_name=self.bucket, object_name=key)
        except (MinioException, urllib3.exceptions.HTTPError, OSError) as exc:
            raise StoreError(str(exc) or "Object store delete failed") from exc


@dataclass
class StoredObject:
    content_type: str
    data: bytes
    etag: str


class InMemoryObjectStore(ObjectStore):
    """
    Dict-backed store for tests and local development. Objects only appear once fully read.
    """

    def __init__(self, url_for: Optional[Callable[[str], str]] = None) -> None:
        super().__init__(url_for or PublicUrlBuilder("local", "us-east-1"))
        self.objects: Dict[str, StoredObject] = {}
        self.put_calls = 0
        self._lock = threading.Lock()

    def put(
        self,
        key: str,
        content_type: str,
        byte_source: BinaryIO,
        max_bytes: int,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> StoreResult:
        with self._lock:
            self.put_calls += 1

        stream = BoundedStream(byte_source, max_bytes, cancel_event)
        buffer = bytearray()
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            buffer.extend(chunk)

        if cancel_event is not None and cancel_event.is_set():
            raise StoreError("Upload aborted")

        data = bytes(buffer)
        etag = hashlib.md5(data).hexdigest()
        with self._lock:
            self.objects[key] = StoredObject(content_type=content_type, data=data, etag=etag)
        return StoreResult(key=key, public_url=self.url_for(key), etag=etag)

    def delete(self, key: str) -> None:
        with self._lock:
            self.objects.pop(key, None)
