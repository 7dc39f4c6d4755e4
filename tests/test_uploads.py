import os
import re

import pytest

from conftest import JPEG_BYTES, PNG_BYTES, make_upload
from postflow.utils import uploads
from postflow.utils.uploads import (
    MAX_UPLOAD_SIZE,
    FileTooLarge,
    UnsupportedFileType,
    generate_filename,
    image_file_path,
    remove_image,
    save_image,
)


def stored_path(static_dir, public_path):
    return os.path.join(static_dir, "uploads", public_path.rsplit("/", 1)[1])


def test_save_image_writes_file_under_uploads(static_dir):
    public_path = save_image(static_dir, make_upload("cat.png"))

    assert public_path.startswith("/uploads/image-")
    assert public_path.endswith(".png")
    with open(stored_path(static_dir, public_path), "rb") as f:
        assert f.read() == PNG_BYTES


def test_save_image_creates_upload_directory(static_dir):
    assert not os.path.exists(static_dir)
    save_image(static_dir, make_upload("cat.png"))
    assert os.path.isdir(os.path.join(static_dir, "uploads"))


def test_extension_is_matched_case_insensitively(static_dir):
    public_path = save_image(static_dir, make_upload("HOLIDAY.JPG", JPEG_BYTES, "image/jpeg"))
    assert public_path.endswith(".jpg")


@pytest.mark.parametrize("filename,content_type", [
    ("notes.txt", "text/plain"),
    ("script.png", "application/javascript"),
    ("photo.bmp", "image/bmp"),
    ("noextension", "image/png"),
    ("photo.svg", "image/svg+xml"),
])
def test_unsupported_types_are_rejected(static_dir, filename, content_type):
    with pytest.raises(UnsupportedFileType):
        save_image(static_dir, make_upload(filename, b"data", content_type))
    assert not os.path.exists(os.path.join(static_dir, "uploads"))


def test_oversized_file_is_rejected_and_removed(static_dir):
    upload = make_upload("big.png", b"\x00" * (MAX_UPLOAD_SIZE + 1))
    with pytest.raises(FileTooLarge) as excinfo:
        save_image(static_dir, upload)

    assert excinfo.value.limit == MAX_UPLOAD_SIZE
    assert os.listdir(os.path.join(static_dir, "uploads")) == []


def test_file_exactly_at_limit_is_accepted(static_dir):
    assert save_image(static_dir, make_upload("edge.png", b"\x00" * 1024), max_size=1024)


def test_missing_file_means_no_image(static_dir):
    assert save_image(static_dir, None) is None
    assert save_image(static_dir, make_upload("", b"")) is None


def test_generated_filenames_are_unique_and_keep_extension():
    names = {generate_filename("photo.WEBP") for _ in range(200)}
    assert len(names) == 200
    for name in names:
        assert re.fullmatch(r"image-\d+-\d+\.webp", name)


def test_remove_image_deletes_file(static_dir):
    public_path = save_image(static_dir, make_upload("cat.png"))
    assert remove_image(static_dir, public_path) is True
    assert not os.path.exists(stored_path(static_dir, public_path))


def test_remove_image_is_best_effort(static_dir):
    assert remove_image(static_dir, None) is False
    assert remove_image(static_dir, "/uploads/never-existed.png") is False


def test_image_paths_cannot_escape_upload_dir(static_dir):
    assert image_file_path(static_dir, "/uploads/../secrets.txt") is None
    assert image_file_path(static_dir, "/etc/passwd") is None
    assert remove_image(static_dir, "/uploads/../../etc/passwd") is False


def test_name_collision_never_overwrites_existing_upload(static_dir, monkeypatch):
    upload_dir = os.path.join(static_dir, "uploads")
    os.makedirs(upload_dir)
    with open(os.path.join(upload_dir, "image-1-1.png"), "wb") as f:
        f.write(b"original")

    names = iter(["image-1-1.png", "image-1-1.png", "image-2-2.png"])
    monkeypatch.setattr(uploads, "generate_filename", lambda original: next(names))

    public_path = save_image(static_dir, make_upload("cat.png"))

    assert public_path == "/uploads/image-2-2.png"
    with open(os.path.join(upload_dir, "image-1-1.png"), "rb") as f:
        assert f.read() == b"original"
    with open(os.path.join(upload_dir, "image-2-2.png"), "rb") as f:
        assert f.read() == PNG_BYTES
