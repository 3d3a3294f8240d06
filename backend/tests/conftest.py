import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from asset_gateway.core.config import get_settings
from asset_gateway.core.errors import NotFound
from asset_gateway.services import storage as storage_service


class InMemoryObjectStore(storage_service.ObjectStore):
    backend = "memory"

    def __init__(self, bucket: str = "test-bucket") -> None:
        super().__init__(bucket)
        self.objects: dict[str, storage_service.StoredObject] = {}
        self.put_calls = 0
        self.fail_put: Exception | None = None
        self.fail_publish: Exception | None = None

    def _default_base_url(self) -> str:
        return f"https://storage.example.com/{self.bucket}"

    async def put(self, key, data, content_type, metadata):  # type: ignore[override]
        self.put_calls += 1
        if self.fail_put is not None:
            raise self.fail_put
        previous = self.objects.get(key)
        self.objects[key] = storage_service.StoredObject(
            key=key,
            data=bytes(data),
            content_type=content_type,
            metadata=dict(metadata),
            public=bool(previous and previous.public),
        )

    async def make_public(self, key):  # type: ignore[override]
        if self.fail_publish is not None:
            raise self.fail_publish
        if key not in self.objects:
            raise storage_service.object_not_found(key)
        self.objects[key].public = True

    async def exists(self, key):  # type: ignore[override]
        return key in self.objects

    async def get(self, key):  # type: ignore[override]
        try:
            return self.objects[key]
        except KeyError:
            raise NotFound(key) from None


@pytest.fixture(scope="session", autouse=True)
def configure_environment():
    os.environ["ENV"] = "test"
    os.environ["STORAGE_BACKEND"] = "local"
    os.environ["STORAGE_BUCKET"] = "test-bucket"
    os.environ["MAX_UPLOAD_BYTES"] = "1024"
    os.environ["UPLOADED_BY"] = "test-suite"
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def app_instance(store):
    from asset_gateway.main import create_app

    return create_app(store=store)


@pytest_asyncio.fixture
async def client(app_instance):
    transport = ASGITransport(app=app_instance)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
