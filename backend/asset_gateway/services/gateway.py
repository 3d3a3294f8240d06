from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from fastapi import Request

from asset_gateway.core.config import Settings
from asset_gateway.core.errors import ClientDisconnected, StoreError, StoreUnavailable, UploadError
from asset_gateway.services.paths import validate_segments
from asset_gateway.services.payloads import UploadRequest, resolve_payload_source
from asset_gateway.services.storage import ObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UploadState(str, enum.Enum):
    RECEIVED = "received"
    CONTENT_TYPE_DISPATCHED = "content_type_dispatched"
    VALIDATED = "validated"
    DECODED = "decoded"
    STORED = "stored"
    PUBLISHED = "published"
    RESPONDED = "responded"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadResult:
    bucket: str
    file_path: str
    public_url: str
    size: int
    mime_type: str


class UploadGateway:
    """Runs one upload from the inbound request to a published object.

    The gateway holds no per-request state between calls; the store is the
    only shared collaborator and owns every stored object.
    """

    def __init__(self, store: ObjectStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    def _metadata(self, upload: UploadRequest) -> dict[str, str]:
        return {
            "originalFileName": upload.declared_file_name or upload.path[-1],
            "uploadedAt": datetime.now(timezone.utc).isoformat(),
            "uploadedBy": self.settings.uploaded_by,
        }

    async def handle(self, request: Request) -> UploadResult:
        state = UploadState.RECEIVED
        logger.info("Upload request received, Content-Type: %s", request.headers.get("content-type"))

        source = None
        try:
            source = resolve_payload_source(request, self.settings.max_upload_bytes)
            state = self._advance(state, UploadState.CONTENT_TYPE_DISPATCHED)

            segments = validate_segments(await source.read_path())
            state = self._advance(state, UploadState.VALIDATED)

            upload = await source.decode(segments)
            state = self._advance(state, UploadState.DECODED)

            result = await self._until_disconnect(request, lambda: self._commit(upload))
            self._advance(state, UploadState.RESPONDED)
            return result
        except UploadError as exc:
            self._fail(state, exc)
            raise
        finally:
            if source is not None:
                await source.aclose()

    async def _commit(self, upload: UploadRequest) -> UploadResult:
        key = upload.key
        logger.info("Uploading to: %s (%d bytes, %s)", key, upload.size, upload.mime_type)

        await self.store.put(key, upload.payload, upload.mime_type, self._metadata(upload))
        state = self._advance(UploadState.DECODED, UploadState.STORED)

        try:
            await self.store.make_public(key)
        except StoreError as exc:
            # the object stays stored; only visibility failed
            raise type(exc)(
                "File was stored but could not be made public",
                details=key if not isinstance(exc, StoreUnavailable) else f"{key}: {exc.details}",
            ) from exc
        self._advance(state, UploadState.PUBLISHED)

        logger.info("File uploaded successfully: %s", key)
        return UploadResult(
            bucket=self.store.bucket,
            file_path=key,
            public_url=self.store.public_url(key),
            size=upload.size,
            mime_type=upload.mime_type,
        )

    async def _until_disconnect(self, request: Request, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` unless the client disconnects first."""
        task = asyncio.ensure_future(operation())
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self.settings.disconnect_poll_interval)
                if done:
                    return task.result()
                if await request.is_disconnected():
                    logger.warning("Client disconnected; aborting in-flight upload")
                    task.cancel()
                    await asyncio.gather(task, return_exceptions=True)
                    raise ClientDisconnected()
        finally:
            if not task.done():
                task.cancel()

    @staticmethod
    def _advance(current: UploadState, target: UploadState) -> UploadState:
        logger.debug("Upload state %s -> %s", current.value, target.value)
        return target

    @staticmethod
    def _fail(state: UploadState, exc: UploadError) -> None:
        if isinstance(exc, StoreUnavailable):
            logger.exception(
                "Upload failed in state %s: %s (%s)", state.value, exc.message, exc.details
            )
        else:
            logger.warning(
                "Upload failed in state %s: %s -> %s: %s",
                state.value,
                UploadState.FAILED.value,
                type(exc).__name__,
                exc.message,
            )
