import io

import mongomock
import pytest
from fastapi.testclient import TestClient
from starlette.datastructures import Headers, UploadFile

from postflow.database import PostStore
from postflow.main import create_app
from postflow.services.posts import PostService

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


def make_upload(filename, data=PNG_BYTES, content_type="image/png"):
    return UploadFile(
        file=io.BytesIO(data),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


@pytest.fixture
def store():
    store = PostStore(mongomock.MongoClient(tz_aware=True), "postflow_test")
    store.ensure_indexes()
    return store


@pytest.fixture
def static_dir(tmp_path):
    return str(tmp_path / "public")


@pytest.fixture
def service(store, static_dir):
    return PostService(store, static_dir)


@pytest.fixture
def app(store, static_dir):
    return create_app(store, static_dir)


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
