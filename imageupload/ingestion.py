from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Optional, Tuple

from .errors import ErrorKind, UploadError

MAX_SIZE_BYTES = 10 * 1024 * 1024  # 10 MiB per file
MAX_FILES = 10
ALLOWED_CONTENT_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})
ALLOWED_SUBTYPES = frozenset(ct.split("/", 1)[1] for ct in ALLOWED_CONTENT_TYPES)

_DATA_URL_RE = re.compile(r"^data:image/([^;,/]+);base64,(.*)$", re.DOTALL)


class RejectReason(str, Enum):
    UNSUPPORTED_TYPE = "UnsupportedType"
    TOO_LARGE = "TooLarge"


REJECT_MESSAGES = {
    RejectReason.UNSUPPORTED_TYPE: "Only images are allowed",
    RejectReason.TOO_LARGE: "File too large",
}


@dataclass
class UploadCandidate:
    filename: str
    declared_content_type: str
    byte_source: BinaryIO
    declared_size: Optional[int] = None


def validate(
    content_type: Optional[str],
    size_bytes: Optional[int] = None,
    max_bytes: int = MAX_SIZE_BYTES,
) -> Optional[RejectReason]:
    """Return None when the upload is acceptable, otherwise the reason it is not."""
    if content_type not in ALLOWED_CONTENT_TYPES:
        return RejectReason.UNSUPPORTED_TYPE
    if size_bytes is not None and size_bytes > max_bytes:
        return RejectReason.TOO_LARGE
    return None


def ensure_valid(candidate: UploadCandidate, max_bytes: int = MAX_SIZE_BYTES) -> None:
    reason = validate(candidate.declared_content_type, candidate.declared_size, max_bytes)
    if reason is not None:
        raise UploadError(ErrorKind.VALIDATION_ERROR, REJECT_MESSAGES[reason])


def parse_data_url(data_url: str) -> Tuple[str, str]:
    """
    Split ``data:image/<subtype>;base64,<payload>`` into (subtype, payload).
    """
    match = _DATA_URL_RE.match(data_url)
    if not match:
        raise UploadError(ErrorKind.MALFORMED_INPUT, "Invalid base64 format")
    return match.group(1), match.group(2)


def decode_payload(payload: str) -> bytes:
    compact = "".join(payload.split())
    try:
        data = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise UploadError(ErrorKind.MALFORMED_INPUT, "Invalid base64 data") from exc
    if not data:
        raise UploadError(ErrorKind.MALFORMED_INPUT, "Invalid base64 data")
    return data
