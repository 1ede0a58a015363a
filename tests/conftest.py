from __future__ import annotations

import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from imageupload.main import app, get_object_store
from imageupload.object_store import InMemoryObjectStore, PublicUrlBuilder

TEST_BUCKET = "test-bucket"
TEST_REGION = "us-east-1"


def make_image(fmt: str = "JPEG", size=(32, 32)) -> bytes:
    img = Image.effect_noise(size, 60).convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return make_image("JPEG")


@pytest.fixture()
def png_bytes() -> bytes:
    return make_image("PNG")


@pytest.fixture()
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore(PublicUrlBuilder(TEST_BUCKET, TEST_REGION))


@pytest.fixture()
def client(store):
    app.dependency_overrides[get_object_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
