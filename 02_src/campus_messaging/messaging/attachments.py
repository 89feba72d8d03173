"""Attachment validation, scanning and storage."""

import asyncio
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Protocol

from ..blobstore import IBlobStore
from ..config import (
    ALLOWED_FILE_TYPES,
    DANGEROUS_EXTENSIONS,
    MAX_FILE_SIZE,
    SUSPICIOUS_FILENAME_PATTERNS,
)
from ..errors import FileUploadError
from ..logging_config import get_logger
from ..models import Actor, Attachment, ScanStatus, UploadedFile
from ..storage import IStorage

logger = get_logger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def safe_filename(original: str, timestamp_ms: int | None = None) -> str:
    """Storage-safe name: ``<epoch ms>_<name with unsafe characters as _>``."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{timestamp_ms}_{_UNSAFE_FILENAME_CHARS.sub('_', original)}"


def file_extension(filename: str) -> str:
    return PurePosixPath(filename.lower()).suffix


class AttachmentValidator:
    """Size, MIME allow-list and extension blacklist checks."""

    def __init__(
        self,
        max_size: int = MAX_FILE_SIZE,
        allowed_types: frozenset[str] = ALLOWED_FILE_TYPES,
        dangerous_extensions: frozenset[str] = DANGEROUS_EXTENSIONS,
    ):
        self._max_size = max_size
        self._allowed_types = allowed_types
        self._dangerous_extensions = dangerous_extensions

    def validate(self, file: UploadedFile) -> None:
        if file.size > self._max_size:
            size_mb = file.size / 1024 / 1024
            max_mb = self._max_size / 1024 / 1024
            raise FileUploadError(
                f"File size ({size_mb:.2f}MB) exceeds maximum allowed size of {max_mb:g}MB",
                code="file_too_large",
                details={"filename": file.filename, "size": file.size},
            )

        if file.content_type not in self._allowed_types:
            raise FileUploadError(
                f'File type "{file.content_type}" is not allowed. '
                "Please upload images, PDFs, or Office documents.",
                code="file_type_not_allowed",
                details={"filename": file.filename, "content_type": file.content_type},
            )

        # Checked regardless of the declared MIME type
        extension = file_extension(file.filename)
        if extension in self._dangerous_extensions:
            raise FileUploadError(
                f'File extension "{extension}" is not allowed for security reasons.',
                code="dangerous_extension",
                details={"filename": file.filename},
            )

    def validate_all(self, files: list[UploadedFile]) -> None:
        for file in files:
            self.validate(file)


class IAttachmentScanner(Protocol):
    """Content scanning hook run before a file is stored."""

    async def scan(self, file: UploadedFile) -> ScanStatus:
        """Return PASSED or FAILED for ``file``."""
        ...


class HeuristicScanner:
    """Placeholder scanner: a fixed delay and a filename keyword check.

    This does not inspect file content. Swap in a real scanning service
    through IAttachmentScanner.
    """

    def __init__(
        self,
        delay: float = 0.5,
        patterns: tuple[str, ...] = SUSPICIOUS_FILENAME_PATTERNS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._delay = delay
        self._patterns = patterns
        self._sleep = sleep

    async def scan(self, file: UploadedFile) -> ScanStatus:
        if self._delay > 0:
            await self._sleep(self._delay)
        name = file.filename.lower()
        if any(pattern in name for pattern in self._patterns):
            return ScanStatus.FAILED
        return ScanStatus.PASSED


@dataclass
class StoredFile:
    """A scanned file already written to the blob store."""

    original_filename: str
    filename: str
    content_type: str
    size: int
    storage_path: str
    url: str
    thumbnail_url: str | None = None


class AttachmentService:
    """Validate -> scan -> upload -> persist metadata."""

    def __init__(
        self,
        storage: IStorage,
        blob_store: IBlobStore,
        validator: AttachmentValidator | None = None,
        scanner: IAttachmentScanner | None = None,
    ):
        self._storage = storage
        self._blob_store = blob_store
        self.validator = validator or AttachmentValidator()
        self._scanner = scanner or HeuristicScanner()

    async def store(self, prefix: str, file: UploadedFile) -> StoredFile:
        """Validate, scan and upload ``file`` under ``prefix``."""
        self.validator.validate(file)

        status = await self._scanner.scan(file)
        if status != ScanStatus.PASSED:
            raise FileUploadError(
                "File failed security scan. The file appears to contain suspicious content.",
                code="scan_failed",
                details={"filename": file.filename},
            )

        filename = safe_filename(file.filename)
        storage_path = f"{prefix}/{filename}"
        await self._blob_store.upload(storage_path, file.data, file.content_type)

        url = self._blob_store.public_url(storage_path)
        return StoredFile(
            original_filename=file.filename,
            filename=filename,
            content_type=file.content_type,
            size=file.size,
            storage_path=storage_path,
            url=url,
            thumbnail_url=url if file.content_type.startswith("image/") else None,
        )

    async def record(self, actor: Actor, message_id: str, stored: StoredFile) -> Attachment:
        """Persist attachment metadata linking ``stored`` to a message."""
        attachment = Attachment(
            id=str(uuid.uuid4()),
            message_id=message_id,
            original_filename=stored.original_filename,
            filename=stored.filename,
            content_type=stored.content_type,
            size=stored.size,
            storage_path=stored.storage_path,
            url=stored.url,
            thumbnail_url=stored.thumbnail_url,
            uploaded_by_id=actor.id,
            uploaded_by_kind=actor.kind,
            scan_status=ScanStatus.PASSED,
            created_at=datetime.now(timezone.utc),
        )
        await self._storage.insert_attachment(attachment)
        return attachment

    async def upload(self, actor: Actor, message_id: str, file: UploadedFile) -> Attachment:
        stored = await self.store(f"messages/{message_id}", file)
        attachment = await self.record(actor, message_id, stored)
        logger.info(
            "Attachment %s stored for message %s (%d bytes)",
            attachment.id,
            message_id,
            attachment.size,
        )
        return attachment

    async def upload_many(
        self, actor: Actor, message_id: str, files: list[UploadedFile]
    ) -> list[Attachment]:
        """Upload files one by one; a failed file is logged and skipped."""
        attachments = []
        for file in files:
            try:
                attachments.append(await self.upload(actor, message_id, file))
            except Exception as e:
                logger.error(
                    "Failed to upload attachment %s for message %s: %s",
                    file.filename,
                    message_id,
                    e,
                )
        return attachments

    async def read(self, attachment: Attachment) -> bytes:
        return await self._blob_store.download(attachment.storage_path)
