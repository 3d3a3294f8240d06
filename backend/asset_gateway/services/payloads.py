from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from fastapi import Request
from pydantic import ValidationError
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from starlette.types import Message, Receive

from asset_gateway.core.errors import MalformedPayload, PayloadTooLarge, UnsupportedMediaType
from asset_gateway.schemas import JsonUploadBody
from asset_gateway.services.paths import join_segments

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
READ_CHUNK_SIZE = 1024 * 1024
# room for the JSON document or multipart framing around the file bytes
ENVELOPE_ALLOWANCE = 64 * 1024

_BASE64_WHITESPACE = re.compile(r"[ \t\r\n]+")


@dataclass(frozen=True)
class UploadRequest:
    path: tuple[str, ...]
    payload: bytes
    mime_type: str = DEFAULT_MIME_TYPE
    declared_file_name: str | None = None

    @property
    def key(self) -> str:
        return join_segments(self.path)

    @property
    def size(self) -> int:
        return len(self.payload)


def media_type_of(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def decode_base64_payload(encoded: str) -> bytes:
    # line-wrapped input (RFC 2045, `openssl base64`) is accepted
    compact = _BASE64_WHITESPACE.sub("", encoded)
    try:
        data = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedPayload("Invalid base64 file data") from None
    if not data:
        raise MalformedPayload("File is empty or invalid")
    return data


def _too_large(limit: int) -> PayloadTooLarge:
    return PayloadTooLarge(
        "File upload error",
        details=f"File exceeds the maximum upload size of {limit} bytes",
    )


def _reject_declared_length(request: Request, body_limit: int, max_bytes: int) -> None:
    raw = request.headers.get("content-length")
    if raw is None:
        return
    try:
        declared = int(raw)
    except ValueError:
        raise MalformedPayload("Invalid Content-Length header") from None
    if declared > body_limit:
        raise _too_large(max_bytes)


def _counting_receive(receive: Receive, body_limit: int, max_bytes: int) -> Receive:
    """Wrap ``receive`` so the body stops being read once it passes ``body_limit``."""
    received = 0

    async def wrapped() -> Message:
        nonlocal received
        message = await receive()
        if message["type"] == "http.request":
            received += len(message.get("body", b""))
            if received > body_limit:
                raise _too_large(max_bytes)
        return message

    return wrapped


class PayloadSource(ABC):
    """One inbound transport encoding of an upload.

    Reading happens in two steps so the path can be validated before any
    payload bytes are decoded: ``read_path`` returns the raw path value and
    ``decode`` turns the payload into an :class:`UploadRequest`.
    """

    media_type: ClassVar[str]

    def __init__(self, request: Request, max_bytes: int) -> None:
        self.request = request
        self.max_bytes = max_bytes

    @abstractmethod
    async def read_path(self) -> Any: ...

    @abstractmethod
    async def decode(self, segments: tuple[str, ...]) -> UploadRequest: ...

    async def aclose(self) -> None:
        return None


class JsonBase64Source(PayloadSource):
    media_type = "application/json"

    def __init__(self, request: Request, max_bytes: int) -> None:
        super().__init__(request, max_bytes)
        self._body: JsonUploadBody | None = None

    def _body_limit(self) -> int:
        # base64 inflates by 4/3; leave room for the rest of the document
        return self.max_bytes * 4 // 3 + ENVELOPE_ALLOWANCE

    async def read_path(self) -> Any:
        limit = self._body_limit()
        _reject_declared_length(self.request, limit, self.max_bytes)
        raw = bytearray()
        async for chunk in self.request.stream():
            raw.extend(chunk)
            if len(raw) > limit:
                raise _too_large(self.max_bytes)

        try:
            document = json.loads(raw)
        except ValueError:
            raise MalformedPayload("Invalid JSON body") from None
        if not isinstance(document, dict):
            raise MalformedPayload("Request body must be a JSON object")

        try:
            self._body = JsonUploadBody.model_validate(document)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            raise MalformedPayload("Missing required fields: path and fileData", details=fields) from None
        return self._body.path

    async def decode(self, segments: tuple[str, ...]) -> UploadRequest:
        if self._body is None:
            raise RuntimeError("read_path() must be awaited before decode()")

        data = decode_base64_payload(self._body.file_data)
        if len(data) > self.max_bytes:
            raise _too_large(self.max_bytes)

        return UploadRequest(
            path=segments,
            payload=data,
            mime_type=self._body.mime_type or DEFAULT_MIME_TYPE,
            declared_file_name=self._body.file_name,
        )


class MultipartFormSource(PayloadSource):
    media_type = "multipart/form-data"

    def __init__(self, request: Request, max_bytes: int) -> None:
        super().__init__(request, max_bytes)
        self._form: FormData | None = None

    def _body_limit(self) -> int:
        return self.max_bytes + ENVELOPE_ALLOWANCE

    async def read_path(self) -> Any:
        limit = self._body_limit()
        _reject_declared_length(self.request, limit, self.max_bytes)
        # the parser spools file parts as it reads, so the count has to happen underneath it
        bounded = Request(self.request.scope, _counting_receive(self.request.receive, limit, self.max_bytes))
        try:
            self._form = await bounded.form()
        except (MultiPartException, StarletteHTTPException) as exc:
            detail = getattr(exc, "detail", None) or getattr(exc, "message", None) or str(exc)
            raise MalformedPayload("File upload error", details=str(detail)) from None

        raw_path = self._form.get("path")
        if not isinstance(raw_path, str) or not raw_path:
            raise MalformedPayload("Missing required field: path")
        try:
            return json.loads(raw_path)
        except ValueError as exc:
            logger.info("Path parse error: %s", exc)
            raise MalformedPayload(
                'Invalid path format. Must be a JSON array like ["folder", "file.png"]'
            ) from None

    async def decode(self, segments: tuple[str, ...]) -> UploadRequest:
        if self._form is None:
            raise RuntimeError("read_path() must be awaited before decode()")

        parts = [part for part in self._form.getlist("file") if isinstance(part, UploadFile)]
        if not parts:
            raise MalformedPayload("Missing required field: file")
        if len(parts) > 1:
            raise MalformedPayload("Exactly one file part is allowed")

        upload = parts[0]
        data = await self._read_bounded(upload)
        if not data:
            raise MalformedPayload("File is empty or invalid")

        logger.info(
            "File received: %s, size: %d, type: %s",
            upload.filename,
            len(data),
            upload.content_type,
        )
        return UploadRequest(
            path=segments,
            payload=data,
            mime_type=upload.content_type or DEFAULT_MIME_TYPE,
            declared_file_name=upload.filename or None,
        )

    async def _read_bounded(self, upload: UploadFile) -> bytes:
        if upload.size is not None and upload.size > self.max_bytes:
            raise _too_large(self.max_bytes)

        buffer = bytearray()
        while True:
            chunk = await upload.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            buffer.extend(chunk)
            if len(buffer) > self.max_bytes:
                raise _too_large(self.max_bytes)
        return bytes(buffer)

    async def aclose(self) -> None:
        if self._form is not None:
            await self._form.close()


PAYLOAD_SOURCES: dict[str, type[PayloadSource]] = {
    JsonBase64Source.media_type: JsonBase64Source,
    MultipartFormSource.media_type: MultipartFormSource,
}


def resolve_payload_source(request: Request, max_bytes: int) -> PayloadSource:
    media_type = media_type_of(request.headers.get("content-type"))
    source_cls = PAYLOAD_SOURCES.get(media_type)
    if source_cls is None:
        raise UnsupportedMediaType(details=media_type or None)
    return source_cls(request, max_bytes)
