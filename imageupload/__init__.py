"""Image upload service: multipart and base64 ingestion into S3-compatible storage."""

__version__ = "0.1.0"
