"""Blob stores: local filesystem and bucket-style REST object API."""

import asyncio
from pathlib import Path, PurePosixPath
from typing import Protocol
from urllib.parse import quote

import httpx

from ..config import ATTACHMENTS_BUCKET
from ..errors import FileUploadError, NetworkError, NotFoundError
from ..logging_config import get_logger

logger = get_logger(__name__)


class IBlobStore(Protocol):
    """Path-addressed object storage."""

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Store ``data`` under ``path`` (no overwrite)."""
        ...

    async def download(self, path: str) -> bytes:
        """Return the bytes stored under ``path``."""
        ...

    def public_url(self, path: str) -> str:
        """Public URL serving the object at ``path``."""
        ...


def _clean_path(path: str) -> PurePosixPath:
    """Reject absolute paths and parent traversal."""
    candidate = PurePosixPath(path)
    if candidate.is_absolute() or ".." in candidate.parts or not candidate.parts:
        raise FileUploadError(f"Invalid storage path: {path}", details={"path": path})
    return candidate


class LocalBlobStore:
    """Stores blobs as files under a root directory."""

    def __init__(self, root: Path, base_url: str):
        self._root = Path(root)
        self._base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        return self._root.joinpath(*_clean_path(path).parts)

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)

        def write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            # "xb" refuses to overwrite an existing object
            with open(target, "xb") as f:
                f.write(data)

        try:
            await asyncio.to_thread(write)
        except FileExistsError:
            raise FileUploadError(
                f"Object already exists: {path}", details={"path": path}
            )
        except OSError as e:
            raise FileUploadError(f"Failed to store {path}: {e}", details={"path": path})
        logger.debug("Stored blob %s (%d bytes, %s)", path, len(data), content_type)

    async def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError:
            raise NotFoundError(f"Object not found: {path}", details={"path": path})

    def public_url(self, path: str) -> str:
        return f"{self._base_url}/{quote(str(_clean_path(path)))}"


class HttpBlobStore:
    """Bucket-style REST object storage accessed over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        bucket: str = ATTACHMENTS_BUCKET,
        http: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._bucket = bucket
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._http = http or httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(connect=10.0, read=30.0, write=30.0, pool=10.0),
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    def _object_url(self, path: str) -> str:
        return f"{self._base_url}/object/{self._bucket}/{quote(str(_clean_path(path)))}"

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        try:
            response = await self._http.post(
                self._object_url(path),
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "false"},
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Upload of {path} timed out") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Upload of {path} failed: network error {e}") from e

        if response.status_code >= 400:
            raise FileUploadError(
                f"Failed to upload file: HTTP {response.status_code}",
                details={"path": path, "status_code": response.status_code},
            )

    async def download(self, path: str) -> bytes:
        try:
            response = await self._http.get(self._object_url(path))
        except httpx.TimeoutException as e:
            raise NetworkError(f"Download of {path} timed out") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Download of {path} failed: network error {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"Object not found: {path}", details={"path": path})
        if response.status_code >= 400:
            raise FileUploadError(
                f"Failed to download file: HTTP {response.status_code}",
                details={"path": path, "status_code": response.status_code},
            )
        return response.content

    def public_url(self, path: str) -> str:
        return (
            f"{self._base_url}/object/public/{self._bucket}/"
            f"{quote(str(_clean_path(path)))}"
        )
