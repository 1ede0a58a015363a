from __future__ import annotations

import asyncio
import io
import logging
import threading
from typing import List, Optional, Sequence

from fastapi import UploadFile

from .errors import ErrorKind, SizeLimitExceeded, StoreError, UploadError
from .ingestion import (
    ALLOWED_SUBTYPES,
    MAX_FILES,
    MAX_SIZE_BYTES,
    REJECT_MESSAGES,
    RejectReason,
    UploadCandidate,
    decode_payload,
    ensure_valid,
    parse_data_url,
)
from .keys import generate_key
from .object_store import ObjectStore, StoreResult

logger = logging.getLogger(__name__)


def candidate_from_upload(upload: UploadFile) -> UploadCandidate:
    upload.file.seek(0)
    return UploadCandidate(
        filename=upload.filename or "",
        declared_content_type=upload.content_type or "",
        byte_source=upload.file,
        declared_size=upload.size,
    )


class WriteHandle:
    """
    Hand-off between a store write running in a worker thread and the request
    waiting on it. Exactly one side wins: either the write completes for the
    caller, or the caller abandons it and the write must be removed.
    """

    def __init__(self) -> None:
        self.cancel_event = threading.Event()
        self.result: Optional[StoreResult] = None
        self._lock = threading.Lock()

    def complete(self, result: StoreResult) -> bool:
        with self._lock:
            if self.cancel_event.is_set():
                return False
            self.result = result
            return True

    def abandon(self) -> Optional[StoreResult]:
        """Stop the write; returns the result if it had already completed."""
        with self._lock:
            self.cancel_event.set()
            return self.result


class UploadService:
    """
    Runs each ingestion mode through the same steps: validate every candidate,
    generate keys, then stream to the object store.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        max_bytes: int = MAX_SIZE_BYTES,
        max_files: int = MAX_FILES,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.store = store
        self.max_bytes = max_bytes
        self.max_files = max_files
        self.timeout_seconds = timeout_seconds

    async def upload_single(self, files: Optional[Sequence[UploadFile]]) -> StoreResult:
        if not files:
            raise UploadError(ErrorKind.MISSING_INPUT, "No file uploaded")
        if len(files) > 1:
            raise UploadError(ErrorKind.MALFORMED_INPUT, "Unexpected field")
        candidate = candidate_from_upload(files[0])
        self._check(candidate)
        return await self._write(candidate)

    async def upload_multiple(self, files: Optional[Sequence[UploadFile]]) -> List[StoreResult]:
        if not files:
            raise UploadError(ErrorKind.MISSING_INPUT, "No files uploaded")
        if len(files) > self.max_files:
            raise UploadError(ErrorKind.TOO_MANY_FILES, "Too many files")

        candidates = [candidate_from_upload(f) for f in files]
        # Nothing is written unless every part passes.
        for candidate in candidates:
            self._check(candidate)

        writes = [asyncio.ensure_future(self._write(c)) for c in candidates]
        try:
            outcomes = await asyncio.gather(*writes, return_exceptions=True)
        except asyncio.CancelledError:
            for write in writes:
                if write.done() and not write.cancelled() and write.exception() is None:
                    self._schedule_delete(write.result().key)
            raise
        failures = [o for o in outcomes if isinstance(o, BaseException)]
        if failures:
            await self._discard([o.key for o in outcomes if isinstance(o, StoreResult)])
            raise failures[0]
        return list(outcomes)

    async def upload_base64(self, base64_data: Optional[str], filename: Optional[str]) -> StoreResult:
        if not base64_data or not filename:
            raise UploadError(ErrorKind.MISSING_INPUT, "Missing required fields")

        subtype, payload = parse_data_url(base64_data)
        if subtype not in ALLOWED_SUBTYPES:
            logger.warning("Rejected base64 upload %r: image/%s", filename, subtype)
            raise UploadError(ErrorKind.VALIDATION_ERROR, REJECT_MESSAGES[RejectReason.UNSUPPORTED_TYPE])

        data = decode_payload(payload)
        candidate = UploadCandidate(
            filename=filename,
            declared_content_type=f"image/{subtype}",
            byte_source=io.BytesIO(data),
            declared_size=len(data),
        )
        self._check(candidate)
        return await self._write(candidate)

    def _check(self, candidate: UploadCandidate) -> None:
        try:
            ensure_valid(candidate, self.max_bytes)
        except UploadError as exc:
            logger.warning(
                "Rejected upload %r (%s, %s bytes): %s",
                candidate.filename,
                candidate.declared_content_type,
                candidate.declared_size,
                exc.message,
            )
            raise

    async def _write(self, candidate: UploadCandidate) -> StoreResult:
        key = generate_key(candidate.filename)
        handle = WriteHandle()
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self._put, key, candidate, handle),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            if handle.abandon() is not None:
                self._schedule_delete(key)
            logger.warning("Timed out storing %s after %ss", key, self.timeout_seconds)
            raise StoreError("Upload timed out") from exc
        except asyncio.CancelledError:
            if handle.abandon() is not None:
                self._schedule_delete(key)
            raise
        except SizeLimitExceeded as exc:
            raise UploadError(ErrorKind.VALIDATION_ERROR, REJECT_MESSAGES[RejectReason.TOO_LARGE]) from exc

        logger.info("Stored %s (%s)", key, candidate.declared_content_type)
        return result

    def _put(self, key: str, candidate: UploadCandidate, handle: WriteHandle) -> StoreResult:
        # Runs in a worker thread.
        result = self.store.put(
            key,
            candidate.declared_content_type,
            candidate.byte_source,
            self.max_bytes,
            cancel_event=handle.cancel_event,
        )
        if not handle.complete(result):
            self._delete_quietly(key)
            raise StoreError("Upload aborted")
        return result

    def _delete_quietly(self, key: str) -> None:
        try:
            self.store.delete(key)
        except StoreError as exc:
            logger.warning("Could not remove abandoned object %s: %s", key, exc.message)

    def _schedule_delete(self, key: str) -> None:
        asyncio.get_running_loop().run_in_executor(None, self._delete_quietly, key)

    async def _discard(self, keys: List[str]) -> None:
        for key in keys:
            try:
                await asyncio.to_thread(self.store.delete, key)
            except StoreError as exc:
                logger.warning("Could not remove %s after failed batch: %s", key, exc.message)
