from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Final
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from google.api_core import exceptions as gcs_exceptions
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage as gcs

from asset_gateway.core.config import Settings
from asset_gateway.core.errors import InvalidPath, NotFound, PermissionDenied, StoreError, StoreUnavailable

logger = logging.getLogger(__name__)

WRITE_CHUNK_SIZE: Final[int] = 1024 * 1024

_S3_PERMISSION_CODES = frozenset(
    {
        "AccessDenied",
        "AllAccessDisabled",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "AccessControlListNotSupported",
        "403",
    }
)
_S3_MISSING_KEY_CODES = frozenset({"NoSuchKey", "NotFound", "404"})


@dataclass
class StoredObject:
    key: str
    data: bytes
    content_type: str
    metadata: dict[str, str] = field(default_factory=dict)
    # None when the backend cannot report visibility without extra calls
    public: bool | None = None


def bucket_not_found(bucket: str) -> NotFound:
    return NotFound(f"Bucket '{bucket}' not found. Please create it first.")


def object_not_found(key: str) -> NotFound:
    return NotFound(f"Object '{key}' not found")


def key_conflict(key: str) -> InvalidPath:
    # a filesystem cannot hold both "a" and "a/b"; flat buckets can
    return InvalidPath("Key conflicts with an existing object or folder in local storage", details=key)


class ObjectStore(ABC):
    """A single bucket addressed by ``/``-separated keys."""

    backend: ClassVar[str]

    def __init__(self, bucket: str, public_base_url: str | None = None) -> None:
        self.bucket = bucket
        self.public_base_url = public_base_url

    @abstractmethod
    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> None:
        """Write ``data`` at ``key``, replacing any previous object atomically."""

    @abstractmethod
    async def make_public(self, key: str) -> None:
        """Grant unauthenticated read access to the object at ``key``."""

    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def get(self, key: str) -> StoredObject: ...

    @abstractmethod
    def _default_base_url(self) -> str: ...

    def public_url(self, key: str) -> str:
        base = self.public_base_url or self._default_base_url()
        return f"{base.rstrip('/')}/{quote(key, safe='/')}"


class GCSObjectStore(ObjectStore):
    """Google Cloud Storage backend."""

    backend: ClassVar[str] = "gcs"

    def __init__(
        self,
        bucket: str,
        client: Any | None = None,
        project: str | None = None,
        public_base_url: str | None = None,
    ) -> None:
        super().__init__(bucket, public_base_url)
        self.client = client or gcs.Client(project=project)

    def _default_base_url(self) -> str:
        return f"https://storage.googleapis.com/{self.bucket}"

    def _blob(self, key: str):
        return self.client.bucket(self.bucket).blob(key)

    def _translate(self, exc: Exception, missing: NotFound) -> StoreError:
        if isinstance(exc, gcs_exceptions.NotFound):
            return missing
        if isinstance(exc, (gcs_exceptions.Forbidden, gcs_exceptions.Unauthorized, GoogleAuthError)):
            return PermissionDenied(details=str(exc))
        return StoreUnavailable(details=str(exc))

    async def _call(self, fn, missing: NotFound):
        try:
            return await asyncio.to_thread(fn)
        except (gcs_exceptions.GoogleAPIError, GoogleAuthError, OSError) as exc:
            raise self._translate(exc, missing) from exc

    async def put(self, key: str, data: bytes, content_type: str, metadata: dict[str, str]) -> None:
        def _upload() -> None:
            blob = self._blob(key)
            blob.metadata = metadata
            blob.upload_from_string(data, content_type=content_type)

        await self._call(_upload, bucket_not_found(self.bucket))

    async def make_public(self, key: str) -> None:
        await self._call(lambda: self._blob(key).make_public(), object_not_found(key))

    async def exists(self, key: str) -> bool:
        return await self._call(lambda: self._blob(key).exists(), bucket_not_found(self.bucket))

    async def get(self, key: str) -> StoredObject:
        def _download() -> StoredObject:
            blob = self.client.bucket(self.bucket).get_blob(key)
            if blob is None:
                raise object_not_found(key)
            return StoredObject(
                key=key,
                data=blob.download_as_bytes(),
                content_type=blob.content_type or "application/octet-stream",
                metadata=dict(blob.metadata or {}),
            )

        return await self._call(_download, object_not_found(key))


class S3ObjectStore(ObjectStore):
    """S3-compatible backend."""

    backend: ClassVar[str] = "s3"

    def __init__(
        self,
        bucket: str,
        client: Any | None = None,
        endpoint_url: str | None = None,
        region: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        public_base_url: str | None = None,
    ) -> None:
        super().__init__(bucket, public_base_url)
        self.endpoint_url = endpoint_url
        self.region = region
        if client is None:
            session = boto3.session.Session()
            client = session.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                config=Config(signature_version="s3v4"),
            )
        self.client = client

    def _default_base_url(self) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com"
        return f"https://{self.bucket}.s3.amazonaws.com"

    @staticmethod
    def _error_code(exc: ClientError) -> str:
        return str(exc.response.get("Error", {}).get("Code", ""))

    def _translate(self, exc: ClientError, key: str) -> StoreError:
        code = self._error_code(exc)
        if code == "NoSuchBucket":
            return bucket_not_found(self.bucket)
        if code in _S3_MISSING_KEY_CODES:
            return object_not_found(key)
        if code in _S3_PERMISSION_CODES:
            return PermissionDenied(details=code)
        return StoreUnavailable(details=f"{code}: {exc}")

    async def _call(self, fn, key: str):
        try:
            return await asyncio.to_thread(fn)
        except ClientError as exc:
            raise self._translate(exc, key) from exc
        except BotoCoreError as exc:
            raise StoreUnavailable(details=str(exc)) from exc

    async def put(self, key: str, data: bytes, content_type: str, metadata: dict[str, str]) -> None:
        await self._call(
            lambda: self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata,
            ),
            key,
        )

    async def make_public(self, key: str) -> None:
        await self._call(
            lambda: self.client.put_object_acl(Bucket=self.bucket, Key=key, ACL="public-read"),
            key,
        )

    async def exists(self, key: str) -> bool:
        def _head() -> bool:
            try:
                self.client.head_object(Bucket=self.bucket, Key=key)
            except ClientError as exc:
                if self._error_code(exc) in _S3_MISSING_KEY_CODES:
                    return False
                raise
            return True

        return await self._call(_head, key)

    async def get(self, key: str) -> StoredObject:
        def _download() -> StoredObject:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return StoredObject(
                key=key,
                data=response["Body"].read(),
                content_type=response.get("ContentType") or "application/octet-stream",
                metadata=dict(response.get("Metadata") or {}),
            )

        return await self._call(_download, key)


class LocalObjectStore(ObjectStore):
    """Local filesystem storage intended for development use."""

    backend: ClassVar[str] = "local"

    def __init__(
        self,
        base_dir: Path,
        bucket: str,
        create_bucket: bool = True,
        public_base_url: str | None = None,
    ) -> None:
        super().__init__(bucket, public_base_url)
        self.base_path = Path(base_dir).resolve()
        self.root = self.base_path / bucket
        self.meta_root = self.base_path / ".meta" / bucket
        if create_bucket:
            self.root.mkdir(parents=True, exist_ok=True)

    def _default_base_url(self) -> str:
        return self.root.as_uri()

    def _key_path(self, key: str, root: Path | None = None) -> Path:
        base = root or self.root
        # Prevent directory traversal by resolving inside the bucket root
        candidate = base.joinpath(*key.split("/")).resolve()
        if not candidate.is_relative_to(base):
            raise PermissionDenied("Invalid storage key", details=key)
        return candidate

    def _meta_path(self, key: str) -> Path:
        target = self._key_path(key, self.meta_root)
        return target.with_name(f"{target.name}.json")

    def _require_bucket(self) -> None:
        if not self.root.is_dir():
            raise bucket_not_found(self.bucket)

    def _require_free_key(self, key: str, target: Path) -> None:
        if target.is_dir():
            raise key_conflict(key)
        for parent in target.parents:
            if parent == self.root:
                break
            if parent.exists() and not parent.is_dir():
                raise key_conflict(key)

    async def _atomic_write(self, target: Path, data: bytes) -> None:
        # created synchronously so a cancellation cannot orphan the temp file
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
        tmp_path = Path(tmp_name)
        committed = False
        try:
            with os.fdopen(fd, "wb") as fh:
                view = memoryview(data)
                for offset in range(0, len(view), WRITE_CHUNK_SIZE):
                    await asyncio.to_thread(fh.write, view[offset : offset + WRITE_CHUNK_SIZE])
                await asyncio.to_thread(fh.flush)
                await asyncio.to_thread(os.fsync, fh.fileno())
            await asyncio.to_thread(os.replace, tmp_path, target)
            committed = True
        finally:
            if not committed:
                tmp_path.unlink(missing_ok=True)

    async def _read_meta(self, key: str) -> dict[str, Any]:
        path = self._meta_path(key)
        if not path.exists():
            return {}
        raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return json.loads(raw)

    async def _write_meta(self, key: str, meta: dict[str, Any]) -> None:
        await self._atomic_write(self._meta_path(key), json.dumps(meta).encode("utf-8"))

    async def put(self, key: str, data: bytes, content_type: str, metadata: dict[str, str]) -> None:
        self._require_bucket()
        target = self._key_path(key)
        self._require_free_key(key, target)
        try:
            previous = await self._read_meta(key)
            await self._atomic_write(target, data)
            await self._write_meta(
                key,
                {
                    "contentType": content_type,
                    "metadata": metadata,
                    "public": bool(previous.get("public", False)),
                },
            )
        except (FileExistsError, NotADirectoryError, IsADirectoryError) as exc:
            raise key_conflict(key) from exc
        except PermissionError as exc:
            raise PermissionDenied(details=str(exc)) from exc
        except OSError as exc:
            raise StoreUnavailable(details=str(exc)) from exc

    async def make_public(self, key: str) -> None:
        self._require_bucket()
        if not self._key_path(key).is_file():
            raise object_not_found(key)
        try:
            meta = await self._read_meta(key)
            meta["public"] = True
            await self._write_meta(key, meta)
        except OSError as exc:
            raise StoreUnavailable(details=str(exc)) from exc

    async def exists(self, key: str) -> bool:
        self._require_bucket()
        return self._key_path(key).is_file()

    async def get(self, key: str) -> StoredObject:
        self._require_bucket()
        source = self._key_path(key)
        if not source.is_file():
            raise object_not_found(key)
        data = await asyncio.to_thread(source.read_bytes)
        meta = await self._read_meta(key)
        return StoredObject(
            key=key,
            data=data,
            content_type=meta.get("contentType", "application/octet-stream"),
            metadata=dict(meta.get("metadata", {})),
            public=bool(meta.get("public", False)),
        )


def build_object_store(settings: Settings) -> ObjectStore:
    public_base_url = str(settings.public_base_url) if settings.public_base_url else None
    if settings.storage_backend == "local":
        store: ObjectStore = LocalObjectStore(
            settings.local_storage_dir,
            settings.storage_bucket,
            create_bucket=settings.local_create_bucket,
            public_base_url=public_base_url,
        )
    elif settings.storage_backend == "s3":
        store = S3ObjectStore(
            settings.storage_bucket,
            endpoint_url=str(settings.s3_endpoint) if settings.s3_endpoint else None,
            region=settings.s3_region,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            public_base_url=public_base_url,
        )
    else:
        store = GCSObjectStore(
            settings.storage_bucket,
            project=settings.gcs_project,
            public_base_url=public_base_url,
        )
    logger.info("Using %s object store for bucket %s", store.backend, store.bucket)
    return store
