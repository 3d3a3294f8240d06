import asyncio

import pytest

from asset_gateway.core.config import get_settings
from asset_gateway.core.errors import ClientDisconnected, StoreUnavailable
from asset_gateway.services.gateway import UploadGateway
from asset_gateway.services.payloads import UploadRequest


class FakeRequest:
    def __init__(self, disconnected: bool) -> None:
        self.disconnected = disconnected

    async def is_disconnected(self) -> bool:
        return self.disconnected


@pytest.fixture
def gateway(store):
    settings = get_settings().model_copy(update={"disconnect_poll_interval": 0.01})
    return UploadGateway(store, settings)


@pytest.mark.asyncio
async def test_disconnect_cancels_in_flight_operation(gateway):
    cancelled = asyncio.Event()

    async def slow_write():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    with pytest.raises(ClientDisconnected):
        await gateway._until_disconnect(FakeRequest(disconnected=True), slow_write)
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_connected_client_gets_result(gateway):
    async def quick():
        await asyncio.sleep(0.03)
        return "done"

    assert await gateway._until_disconnect(FakeRequest(disconnected=False), quick) == "done"


@pytest.mark.asyncio
async def test_commit_writes_metadata_and_publishes(gateway, store):
    upload = UploadRequest(path=("a", "b.txt"), payload=b"abc", mime_type="text/plain")
    result = await gateway._commit(upload)

    assert result.file_path == "a/b.txt"
    assert result.size == 3
    assert result.public_url == store.public_url("a/b.txt")
    stored = store.objects["a/b.txt"]
    assert stored.public is True
    assert stored.metadata["originalFileName"] == "b.txt"
    assert set(stored.metadata) == {"originalFileName", "uploadedAt", "uploadedBy"}


@pytest.mark.asyncio
async def test_publish_backend_fault_does_not_roll_back(gateway, store):
    store.fail_publish = StoreUnavailable(details="timeout")
    upload = UploadRequest(path=("a.txt",), payload=b"abc")

    with pytest.raises(StoreUnavailable) as exc_info:
        await gateway._commit(upload)

    assert exc_info.value.message == "File was stored but could not be made public"
    assert store.objects["a.txt"].data == b"abc"
