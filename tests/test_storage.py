import json
import re

import httpx
import pytest

from app.errors import UploadFailed
from storage.client import StorageClient, object_name
from storage.images import (
    MAX_SIZE,
    replace_image,
    unique_file_name,
    upload_images,
    validate_image_file,
)

BASE_URL = "https://store.example.co/storage/v1"
PUBLIC = f"{BASE_URL}/object/public/product-images"


class FakeStorage:
    """Records requests and answers them like the storage API."""

    def __init__(self, fail_uploads=False, fail_deletes=False, content=b""):
        self.requests = []
        self.fail_uploads = fail_uploads
        self.fail_deletes = fail_deletes
        self.content = content

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            if self.fail_uploads:
                return httpx.Response(500, json={"error": "internal"})
            return httpx.Response(200, json={"Key": request.url.path})
        if request.method == "DELETE":
            if self.fail_deletes:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=[])
        return httpx.Response(200, content=self.content)

    def methods(self):
        return [request.method for request in self.requests]


def make_client(handler) -> StorageClient:
    return StorageClient(
        base_url=BASE_URL,
        api_key="service-key",
        bucket="product-images",
        transport=httpx.MockTransport(handler),
    )


def test_upload_posts_object_and_returns_public_url():
    fake = FakeStorage()
    with make_client(fake) as client:
        url = client.upload(b"jpeg-bytes", "kurta.jpg", "image/jpeg")

    [request] = fake.requests
    assert request.method == "POST"
    assert request.url.path == "/storage/v1/object/product-images/kurta.jpg"
    assert request.headers["x-upsert"] == "false"
    assert request.headers["content-type"] == "image/jpeg"
    assert request.headers["authorization"] == "Bearer service-key"
    assert request.content == b"jpeg-bytes"
    assert url == f"{PUBLIC}/kurta.jpg"


def test_upload_failure_raises():
    with make_client(FakeStorage(fail_uploads=True)) as client:
        with pytest.raises(UploadFailed):
            client.upload(b"jpeg-bytes", "kurta.jpg")


def test_delete_sends_object_name_as_prefix():
    fake = FakeStorage()
    with make_client(fake) as client:
        assert client.delete(f"{PUBLIC}/old.jpg") is True

    [request] = fake.requests
    assert request.method == "DELETE"
    assert request.url.path == "/storage/v1/object/product-images"
    assert json.loads(request.content) == {"prefixes": ["old.jpg"]}


def test_delete_failure_is_reported_not_raised():
    with make_client(FakeStorage(fail_deletes=True)) as client:
        assert client.delete(f"{PUBLIC}/old.jpg") is False


def test_download_by_public_url():
    fake = FakeStorage(content=b"png-bytes")
    with make_client(fake) as client:
        assert client.download(f"{PUBLIC}/old.png") == b"png-bytes"

    assert str(fake.requests[0].url) == f"{PUBLIC}/old.png"


def test_client_requires_configuration(monkeypatch):
    monkeypatch.delenv("STORAGE_BASE_URL", raising=False)
    monkeypatch.delenv("STORAGE_API_KEY", raising=False)

    with pytest.raises(ValueError):
        StorageClient()


def test_object_name_is_last_path_segment():
    assert object_name(f"{PUBLIC}/1700000000000-abc.png") == "1700000000000-abc.png"


@pytest.mark.parametrize("content_type, size, error", [
    ("image/png", 1024, None),
    ("image/webp", MAX_SIZE, None),
    ("image/gif", 1024, "Please select a valid image file (JPEG, PNG, or WebP)"),
    (None, 1024, "Please select a valid image file (JPEG, PNG, or WebP)"),
    ("image/jpeg", MAX_SIZE + 1, "Image size must be less than 10MB"),
])
def test_validate_image_file(content_type, size, error):
    assert validate_image_file(content_type, size) == (error is None, error)


def test_unique_file_name_keeps_extension():
    name = unique_file_name("Summer Look.PNG")

    assert re.fullmatch(r"\d{13}-[0-9a-z]{11}\.png", name)
    assert unique_file_name("a.png") != unique_file_name("a.png")


def test_upload_images_uploads_in_order():
    fake = FakeStorage()
    with make_client(fake) as client:
        urls = upload_images(client, [
            (b"one", "first.jpg", "image/jpeg"),
            (b"two", "second.png", "image/png"),
        ])

    assert [request.content for request in fake.requests] == [b"one", b"two"]
    assert urls[0].endswith(".jpg") and urls[1].endswith(".png")
    assert all(url.startswith(PUBLIC) for url in urls)


def test_replace_image_swaps_entry_and_leaves_old_file():
    fake = FakeStorage()
    images = [f"{PUBLIC}/front.jpg", f"{PUBLIC}/back.jpg"]

    with make_client(fake) as client:
        updated, old_url = replace_image(client, images, 1, b"edited")

    assert fake.methods() == ["POST"]
    assert fake.requests[0].content == b"edited"
    assert updated[0] == images[0]
    assert updated[1] != images[1] and updated[1].startswith(PUBLIC)
    assert old_url == f"{PUBLIC}/back.jpg"
    assert images[1] == f"{PUBLIC}/back.jpg"


def test_replace_image_with_bad_index_touches_nothing():
    fake = FakeStorage()

    with make_client(fake) as client:
        with pytest.raises(IndexError):
            replace_image(client, [f"{PUBLIC}/front.jpg"], 3, b"edited")

    assert fake.requests == []


def test_failed_upload_keeps_original_image():
    fake = FakeStorage(fail_uploads=True)

    with make_client(fake) as client:
        with pytest.raises(UploadFailed):
            replace_image(client, [f"{PUBLIC}/front.jpg"], 0, b"edited")

    assert fake.methods() == ["POST"]
