"""
Image upload handling for post creation.

Files are validated as a batch against the MIME allow-list before anything
is written, then stored as `<field>-<timestamp>.<ext>` under IMAGES_DIR.
"""

import logging
import os
import shutil
import time
from typing import List, Optional

from fastapi import UploadFile

import config
from errors import InvalidInput

logger = logging.getLogger(__name__)

FIELD_NAME = "images"
PUBLIC_PREFIX = "images"

IMAGES_DIR = config.IMAGES_DIR


def validate_images(files: Optional[List[UploadFile]]) -> List[UploadFile]:
    files = [f for f in (files or []) if f is not None and f.filename]
    if len(files) > config.MAX_IMAGES:
        raise InvalidInput(f"Too many files. At most {config.MAX_IMAGES} images allowed")
    for f in files:
        if f.content_type not in config.ALLOWED_IMAGE_TYPES:
            raise InvalidInput("Invalid file type. Only JPG, PNG, and WEBP allowed")
    return files


def _extension(upload: UploadFile) -> str:
    # Named from the validated MIME type, never from the client's filename
    return config.ALLOWED_IMAGE_TYPES[upload.content_type]


def _create_file(directory: str, field: str, ext: str):
    """Atomically claim `<field>-<timestamp><ext>`; returns (name, open binary file)."""
    stamp = int(time.time() * 1000)
    while True:
        name = f"{field}-{stamp}{ext}"
        try:
            return name, open(os.path.join(directory, name), "xb")
        except FileExistsError:
            stamp += 1


def save_images(files: Optional[List[UploadFile]], field: str = FIELD_NAME) -> List[str]:
    """Validate and persist the batch. Returns relative paths in receive order.

    If writing any file fails, the files already written are removed.
    """
    files = validate_images(files)
    os.makedirs(IMAGES_DIR, exist_ok=True)
    saved = []
    try:
        for upload in files:
            name, out = _create_file(IMAGES_DIR, field, _extension(upload))
            saved.append(f"{PUBLIC_PREFIX}/{name}")
            with out:
                shutil.copyfileobj(upload.file, out)
    except OSError:
        discard(saved)
        raise
    logger.info("Stored %d image(s): %s", len(saved), saved)
    return saved


def discard(paths: List[str]) -> None:
    """Delete files previously returned by save_images."""
    for rel in paths:
        path = os.path.join(IMAGES_DIR, os.path.basename(rel))
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("Could not remove orphaned upload %s", path)
