"""Helpers for product image files: validation, naming, upload and replacement."""
import random
import string
import time
from typing import Iterable, List, Optional, Tuple

import logging

from .client import StorageClient

logger = logging.getLogger(__name__)

VALID_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")
MAX_SIZE = 10 * 1024 * 1024  # 10MB

_BASE36 = string.digits + string.ascii_lowercase


def validate_image_file(content_type: Optional[str], size: int) -> Tuple[bool, Optional[str]]:
    """
    Checks an image before upload.

    Returns:
        (is_valid, error message or None)
    """
    if content_type not in VALID_TYPES:
        return False, "Please select a valid image file (JPEG, PNG, or WebP)"

    if size > MAX_SIZE:
        return False, "Image size must be less than 10MB"

    return True, None


def unique_file_name(file_name: str) -> str:
    """`<epoch ms>-<random base36>.<original extension>`"""
    extension = file_name.rsplit(".", 1)[-1] if "." in file_name else "jpg"
    suffix = "".join(random.choices(_BASE36, k=11))
    return f"{int(time.time() * 1000)}-{suffix}.{extension.lower() or 'jpg'}"


def upload_image(client: StorageClient, data: bytes, file_name: str, content_type: Optional[str] = None) -> str:
    """Uploads under a generated unique name and returns the public URL."""
    return client.upload(data, unique_file_name(file_name), content_type or "image/jpeg")


def upload_images(client: StorageClient, files: Iterable[Tuple[bytes, str, Optional[str]]]) -> List[str]:
    """
    Uploads (data, file_name, content_type) tuples one after another.

    Stops at the first failure; files uploaded before it stay in storage.
    """
    urls = []
    for data, file_name, content_type in files:
        urls.append(upload_image(client, data, file_name, content_type))
    return urls


def replace_image(client: StorageClient, images: List[str], index: int, edited: bytes) -> Tuple[List[str], str]:
    """
    Uploads an edited image in place of images[index].

    The old file is left in storage; callers delete it once the new list is saved.

    Returns:
        (new image list, replaced URL); the input list is not modified
    """
    if index < 0 or index >= len(images):
        raise IndexError(f"No image at position {index}")

    new_url = upload_image(client, edited, "edited-image.jpg", "image/jpeg")

    updated = list(images)
    updated[index] = new_url
    return updated, images[index]
