from __future__ import annotations

import base64
import re

import pytest
from fastapi.testclient import TestClient

from imageupload.errors import StoreError
from imageupload.ingestion import MAX_SIZE_BYTES
from imageupload.main import app, get_object_store, settings
from imageupload.object_store import InMemoryObjectStore

KEY_RE = re.compile(
    r"images/\d+-[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}-(?P<name>.+)"
)


class BrokenStore(InMemoryObjectStore):
    def put(self, key, content_type, byte_source, max_bytes, *, cancel_event=None):
        raise StoreError("Access Denied")


def test_health(client) -> None:
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.json() == {"status": "healthy"}


def test_single_upload_jpeg(client, store, jpeg_bytes) -> None:
    res = client.post("/api/upload", files={"image": ("sunset.jpg", jpeg_bytes, "image/jpeg")})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["message"] == "File uploaded successfully"

    data = body["data"]
    match = KEY_RE.fullmatch(data["key"])
    assert match and match.group("name") == "sunset.jpg"
    assert data["url"] == f"https://test-bucket.s3.us-east-1.amazonaws.com/{data['key']}"
    assert data["etag"] == store.objects[data["key"]].etag
    assert store.objects[data["key"]].data == jpeg_bytes


def test_single_upload_without_file(client) -> None:
    res = client.post("/api/upload", data={"note": "nothing here"})
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "No file uploaded"}


def test_single_upload_wrong_type(client, store) -> None:
    res = client.post("/api/upload", files={"image": ("notes.txt", b"hello", "text/plain")})
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Only images are allowed"}
    assert store.put_calls == 0


def test_single_upload_too_large(client, store) -> None:
    big = b"\0" * (MAX_SIZE_BYTES + 1)
    res = client.post("/api/upload", files={"image": ("big.png", big, "image/png")})
    assert res.status_code == 400
    assert res.json()["message"] == "File too large"
    assert store.objects == {}


def test_base64_upload(client, store) -> None:
    res = client.post(
        "/api/upload-base64",
        json={"base64Data": "data:image/png;base64,aGVsbG8=", "filename": "a.png"},
    )
    assert res.status_code == 200
    data = res.json()["data"]
    assert isinstance(data, dict)
    assert KEY_RE.fullmatch(data["key"]).group("name") == "a.png"
    assert store.objects[data["key"]].data == b"hello"
    assert store.objects[data["key"]].content_type == "image/png"


@pytest.mark.parametrize(
    "payload,message",
    [
        ({"filename": "a.png"}, "Missing required fields"),
        ({"base64Data": "data:image/png;base64,aGVsbG8="}, "Missing required fields"),
        ({}, "Missing required fields"),
        ({"base64Data": "aGVsbG8=", "filename": "a.png"}, "Invalid base64 format"),
        ({"base64Data": "data:image/tiff;base64,aGVsbG8=", "filename": "a.tiff"}, "Only images are allowed"),
        ({"base64Data": "data:image/png;base64,@@@@", "filename": "a.png"}, "Invalid base64 data"),
    ],
)
def test_base64_upload_failures(client, store, payload, message) -> None:
    res = client.post("/api/upload-base64", json=payload)
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": message}
    assert store.put_calls == 0


def test_base64_upload_without_body(client) -> None:
    res = client.post("/api/upload-base64")
    assert res.status_code == 400
    assert res.json()["message"] == "Missing required fields"


def test_base64_upload_with_non_object_body(client) -> None:
    res = client.post("/api/upload-base64", json=["not", "an", "object"])
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_multiple_upload(client, store, png_bytes, jpeg_bytes) -> None:
    files = [
        ("images", ("first.png", png_bytes, "image/png")),
        ("images", ("second.jpg", jpeg_bytes, "image/jpeg")),
        ("images", ("third.webp", b"RIFF0000WEBP", "image/webp")),
    ]
    res = client.post("/api/upload-multiple", files=files)
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Files uploaded successfully"
    names = [KEY_RE.fullmatch(item["key"]).group("name") for item in body["data"]]
    assert names == ["first.png", "second.jpg", "third.webp"]
    assert len(store.objects) == 3


def test_multiple_upload_single_file_is_still_a_list(client, png_bytes) -> None:
    res = client.post("/api/upload-multiple", files=[("images", ("only.png", png_bytes, "image/png"))])
    assert res.status_code == 200
    assert isinstance(res.json()["data"], list)
    assert len(res.json()["data"]) == 1


def test_multiple_upload_without_files(client) -> None:
    res = client.post("/api/upload-multiple", data={"x": "y"})
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "No files uploaded"}


def test_multiple_upload_eleven_files(client, store, png_bytes) -> None:
    files = [("images", (f"{i}.png", png_bytes, "image/png")) for i in range(11)]
    res = client.post("/api/upload-multiple", files=files)
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Too many files"}
    assert store.put_calls == 0


@pytest.mark.parametrize("bad_index", [0, 1, 2, 3])
def test_multiple_upload_all_or_nothing(client, store, png_bytes, bad_index) -> None:
    files = [("images", (f"{i}.png", png_bytes, "image/png")) for i in range(3)]
    files.insert(bad_index, ("images", ("evil.svg", b"<svg/>", "image/svg+xml")))
    res = client.post("/api/upload-multiple", files=files)
    assert res.status_code == 400
    assert res.json()["message"] == "Only images are allowed"
    assert store.put_calls == 0


def test_same_bytes_same_etag_across_modes(client, jpeg_bytes) -> None:
    form = client.post("/api/upload", files={"image": ("p.jpg", jpeg_bytes, "image/jpeg")}).json()
    b64 = client.post(
        "/api/upload-base64",
        json={"base64Data": "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode(), "filename": "p.jpg"},
    ).json()
    assert form["data"]["etag"] == b64["data"]["etag"]


def test_store_failure_is_500() -> None:
    app.dependency_overrides[get_object_store] = lambda: BrokenStore()
    try:
        res = TestClient(app).post(
            "/api/upload-base64",
            json={"base64Data": "data:image/png;base64,aGVsbG8=", "filename": "a.png"},
        )
    finally:
        app.dependency_overrides.clear()
    assert res.status_code == 500
    assert res.json() == {"success": False, "message": "Access Denied"}


@pytest.mark.parametrize("method,path", [("get", "/api/nope"), ("post", "/upload"), ("get", "/api/upload")])
def test_unmatched_route(client, method, path) -> None:
    res = getattr(client, method)(path)
    assert res.status_code == 404
    assert res.json() == {"success": False, "message": "Route not found"}


def test_single_upload_with_two_image_parts(client, store, png_bytes) -> None:
    files = [
        ("image", ("a.png", png_bytes, "image/png")),
        ("image", ("b.png", png_bytes, "image/png")),
    ]
    res = client.post("/api/upload", files=files)
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Unexpected field"}
    assert store.put_calls == 0


def test_base64_upload_keeps_directory_parts_in_key(client, store) -> None:
    res = client.post(
        "/api/upload-base64",
        json={"base64Data": "data:image/png;base64,aGVsbG8=", "filename": "albums/2024/a.png"},
    )
    assert res.status_code == 200
    key = res.json()["data"]["key"]
    assert KEY_RE.fullmatch(key).group("name") == "albums/2024/a.png"
    assert store.objects[key].data == b"hello"


def test_base64_body_over_limit_is_not_parsed(client, store) -> None:
    oversized = "A" * settings.MAX_JSON_BODY_BYTES
    res = client.post(
        "/api/upload-base64",
        json={"base64Data": f"data:image/png;base64,{oversized}", "filename": "big.png"},
    )
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Request body too large"}
    assert store.put_calls == 0
