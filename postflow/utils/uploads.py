import os
import random
import time
from typing import Optional

import structlog
from fastapi import UploadFile

logger = structlog.get_logger(__name__)

# ── upload policy ──────────────────────────────────────────
ALLOWED_EXTS = {".jpeg", ".jpg", ".png", ".gif", ".webp"}
ALLOWED_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10MB
CHUNK_SIZE = 64 * 1024

UPLOAD_SUBDIR = "uploads"
PUBLIC_PREFIX = "/uploads/"


class UploadError(Exception):
    pass


class UnsupportedFileType(UploadError):
    def __init__(self, message: str = "Only image files are allowed (jpeg, jpg, png, gif, webp)"):
        super().__init__(message)


class FileTooLarge(UploadError):
    def __init__(self, limit: int = MAX_UPLOAD_SIZE):
        self.limit = limit
        super().__init__(f"File exceeds the {limit // (1024 * 1024)}MB limit")


def upload_dir_for(static_dir: str) -> str:
    return os.path.join(static_dir, UPLOAD_SUBDIR)


def generate_filename(original: str, field_name: str = "image") -> str:
    ext = os.path.splitext(original)[1].lower()
    unique_suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return f"{field_name}-{unique_suffix}{ext}"


def check_image(file: UploadFile):
    ext = os.path.splitext(file.filename or "")[1].lower()
    mime = (file.content_type or "").lower()
    if ext not in ALLOWED_EXTS or mime not in ALLOWED_MIME_TYPES:
        raise UnsupportedFileType()


def _create_upload_file(upload_dir: str, original: str):
    # exclusive create: an existing upload is never overwritten
    while True:
        filename = generate_filename(original)
        try:
            return filename, open(os.path.join(upload_dir, filename), "xb")
        except FileExistsError:
            continue


def save_image(static_dir: str, file: Optional[UploadFile], max_size: int = MAX_UPLOAD_SIZE) -> Optional[str]:
    """
    Save one uploaded image and return its public path (/uploads/<name>).

    Returns None when the form carried no file. Raises UnsupportedFileType or
    FileTooLarge; an oversized file is removed before raising.
    """
    if not file or not file.filename:
        return None

    check_image(file)

    upload_dir = upload_dir_for(static_dir)
    os.makedirs(upload_dir, exist_ok=True)

    filename, out = _create_upload_file(upload_dir, file.filename)
    path = os.path.join(upload_dir, filename)

    written = 0
    try:
        with out:
            while True:
                chunk = file.file.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_size:
                    raise FileTooLarge(max_size)
                out.write(chunk)
    except Exception:
        os.remove(path)
        raise

    logger.info("upload_saved", filename=filename, size=written, content_type=file.content_type)
    return PUBLIC_PREFIX + filename


def image_file_path(static_dir: str, image: str) -> Optional[str]:
    """Map a public /uploads/<name> path to a file inside the upload directory."""
    if not image or not image.startswith(PUBLIC_PREFIX):
        return None
    upload_dir = os.path.abspath(upload_dir_for(static_dir))
    path = os.path.abspath(os.path.join(upload_dir, image[len(PUBLIC_PREFIX):]))
    if os.path.dirname(path) != upload_dir:
        return None
    return path


def remove_image(static_dir: str, image: Optional[str]) -> bool:
    """Best-effort delete of an uploaded image. Never raises."""
    if not image:
        return False
    path = image_file_path(static_dir, image)
    if path is None:
        logger.warning("upload_remove_rejected", image=image)
        return False
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("upload_remove_failed", image=image, error=str(exc))
        return False
    logger.info("upload_removed", image=image)
    return True
