"""
Pytest configuration and fixtures for FlowVault tests
"""

import io
import os
import tempfile

# Test-friendly environment before any flowvault import reads settings
os.environ.setdefault("APP_ENV", "test")
os.environ["DATABASE_URL"] = "sqlite://:memory:"
os.environ["SYNC_SECRET"] = "test-sync-secret"
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="flowvault-storage-"))

import httpx  # noqa: E402
import pytest  # noqa: E402
from PIL import Image  # noqa: E402
from tortoise import Tortoise  # noqa: E402

from flowvault.services.storage import LocalStorage  # noqa: E402

IMAGE_HOST = "https://storage.googleapis.com"


def png_bytes(width: int = 64, height: int = 48, mode: str = "RGB", color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class ImageHost:
    """Fake upstream image host keyed by URL path; records every request."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, path: str, body: bytes, content_type: str = "image/png", status: int = 200):
        self.routes[path] = (status, content_type, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, text="not found")
        status, content_type, body = route
        return httpx.Response(status, headers={"content-type": content_type}, content=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def make_png():
    return png_bytes


@pytest.fixture
def image_host():
    return ImageHost()


@pytest.fixture
def store(tmp_path):
    return LocalStorage(str(tmp_path), "flow-images", "https://cdn.test/storage")


@pytest.fixture
async def catalog_db():
    """Fresh in-memory catalog database for each test."""
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": ["flowvault.models.catalog"]},
    )
    await Tortoise.generate_schemas()
    try:
        yield
    finally:
        await Tortoise.close_connections()
