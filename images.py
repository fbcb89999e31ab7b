"""Content-addressed image storage.

Stored names are the SHA-256 of the uploaded bytes plus ``.jpg``. The
client's original filename plays no part, so two uploads of the same
picture always land on the same file.
"""

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from errors import StorageError

logger = logging.getLogger(__name__)

IMAGE_EXTENSION = ".jpg"
DEFAULT_IMAGE = "default" + IMAGE_EXTENSION


class InvalidImageName(ValueError):
    """Requested image name is not a plain ``.jpg`` filename."""


def derive_name(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest() + IMAGE_EXTENSION


def save_image(image_dir, data: bytes) -> str:
    """Write ``data`` under ``image_dir`` and return its stored name.

    Identical content is written only once. The bytes go to a temporary
    file first, so the final name never holds a partial write.
    """
    filename = derive_name(data)
    path = Path(image_dir) / filename
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Could not create image directory %s: %s", path.parent, e)
        raise StorageError(f"could not store image {filename}") from e

    if path.exists():
        logger.debug("Image already stored: %s", filename)
        return filename

    tmp_path = None
    try:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
        os.close(fd)
        tmp_path = Path(tmp_name)
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    except OSError as e:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        logger.error("Could not store image %s: %s", filename, e)
        raise StorageError(f"could not store image {filename}") from e
    logger.info("Stored image %s (%d bytes)", filename, len(data))
    return filename


def resolve_image_path(image_dir, filename: str) -> Path:
    if not filename.endswith(IMAGE_EXTENSION):
        raise InvalidImageName(f"Image path does not end with {IMAGE_EXTENSION}")
    if Path(filename).name != filename or filename.startswith("."):
        raise InvalidImageName(f"Invalid image name: {filename}")

    path = Path(image_dir) / filename
    if not path.is_file():
        logger.debug("Image not found: %s", path)
        path = Path(image_dir) / DEFAULT_IMAGE
    return path
