"""
Upload strategies for attached files.

The deployment decides once, at startup, how incoming files are handled:

* DiskUploader stages each file on local disk, uploads it by path and can
  render PDF previews from the staged copy.
* BufferUploader keeps each file in memory and streams the bytes straight
  to the media store. Previews are skipped because there is no writable
  filesystem to render into.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import time
import uuid
from dataclasses import dataclass, field
from typing import BinaryIO, Optional, Protocol

from starlette.datastructures import UploadFile

from takeoffs.errors import FileNotFound, UploadFailed
from takeoffs.preview import generate_pdf_preview
from takeoffs.storage import MediaStore

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


@dataclass(frozen=True)
class UploadResult:
    public_id: str
    secure_url: str


@dataclass
class IncomingFile:
    """One file received on a create/update request, staged for upload."""

    filename: str
    original_name: str
    content_type: Optional[str]
    size: int
    path: Optional[str] = None
    buffer: Optional[bytes] = None

    @property
    def is_pdf(self) -> bool:
        return self.content_type == PDF_MIME_TYPE


def _timestamped_name(original_name: str) -> str:
    return f"{int(time.time() * 1000)}-{original_name}"


def _unique_name(original_name: str) -> str:
    # Same-millisecond uploads of one filename must not share a name.
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{original_name}"


def _safe_name(name: str) -> str:
    return os.path.basename(name or "") or "upload"


class MediaUploader(Protocol):
    """Stage, upload and clean up attached files for one deployment mode."""

    supports_previews: bool

    async def stage(self, upload: UploadFile) -> IncomingFile:
        ...

    async def upload(
        self, file: IncomingFile, resource_type: str = "raw", folder: str = "takeoffs"
    ) -> UploadResult:
        ...

    async def preview(self, file: IncomingFile, folder: str) -> Optional[UploadResult]:
        ...

    async def cleanup(self, file: IncomingFile) -> None:
        ...

    async def destroy(self, public_id: str, resource_type: str = "raw") -> None:
        ...


class _BaseUploader:
    def __init__(self, media: MediaStore):
        self.media = media

    async def destroy(self, public_id: str, resource_type: str = "raw") -> None:
        await asyncio.to_thread(self.media.destroy, public_id, resource_type)


class DiskUploader(_BaseUploader):
    """Path-based uploads for hosts with a writable local filesystem."""

    supports_previews = True

    def __init__(self, media: MediaStore, upload_dir: str):
        super().__init__(media)
        self.upload_dir = upload_dir
        os.makedirs(self.upload_dir, exist_ok=True)

    async def stage(self, upload: UploadFile) -> IncomingFile:
        original_name = _safe_name(upload.filename)
        path = os.path.join(self.upload_dir, _unique_name(original_name))
        await upload.seek(0)
        size = await asyncio.to_thread(_copy_to_disk, upload.file, path)
        return IncomingFile(
            filename=_timestamped_name(original_name),
            original_name=original_name,
            content_type=upload.content_type,
            size=size,
            path=path,
        )

    async def upload_path(
        self, path: str, resource_type: str = "raw", folder: str = "takeoffs"
    ) -> UploadResult:
        if not os.path.exists(path):
            raise FileNotFound(path)
        extension = os.path.splitext(path)[1]
        public_id = f"{folder}/{uuid.uuid4().hex}{extension}"
        try:
            stored = await asyncio.to_thread(
                self.media.upload_file, path, public_id, resource_type
            )
        except Exception as exc:
            logger.exception("Upload of %s failed", path)
            raise UploadFailed(f"Upload failed for {os.path.basename(path)}: {exc}") from exc
        return UploadResult(public_id=stored.public_id, secure_url=stored.secure_url)

    async def upload(
        self, file: IncomingFile, resource_type: str = "raw", folder: str = "takeoffs"
    ) -> UploadResult:
        return await self.upload_path(file.path or "", resource_type, folder)

    async def preview(self, file: IncomingFile, folder: str) -> Optional[UploadResult]:
        if not file.path:
            return None
        preview_path = await asyncio.to_thread(generate_pdf_preview, file.path)
        if not preview_path:
            return None
        try:
            return await self.upload_path(preview_path, "image", folder)
        finally:
            _safe_delete(preview_path)

    async def cleanup(self, file: IncomingFile) -> None:
        if file.path:
            _safe_delete(file.path)


class BufferUploader(_BaseUploader):
    """In-memory uploads for read-only (serverless) hosts."""

    supports_previews = False

    async def stage(self, upload: UploadFile) -> IncomingFile:
        original_name = _safe_name(upload.filename)
        data = await upload.read()
        return IncomingFile(
            filename=_timestamped_name(original_name),
            original_name=original_name,
            content_type=upload.content_type,
            size=len(data),
            buffer=data,
        )

    async def upload_buffer(
        self,
        buffer: bytes,
        original_name: str,
        resource_type: str = "raw",
        folder: str = "takeoffs",
        content_type: Optional[str] = None,
    ) -> UploadResult:
        public_id = f"{folder}/{_unique_name(original_name)}"
        try:
            stored = await asyncio.to_thread(
                self.media.upload_bytes, buffer, public_id, resource_type, content_type
            )
        except Exception as exc:
            logger.exception("Buffer upload of %s failed", original_name)
            raise UploadFailed(f"Upload failed for {original_name}: {exc}") from exc
        return UploadResult(public_id=stored.public_id, secure_url=stored.secure_url)

    async def upload(
        self, file: IncomingFile, resource_type: str = "raw", folder: str = "takeoffs"
    ) -> UploadResult:
        return await self.upload_buffer(
            file.buffer or b"",
            file.original_name,
            resource_type,
            folder,
            content_type=file.content_type,
        )

    async def preview(self, file: IncomingFile, folder: str) -> Optional[UploadResult]:
        logger.info("PDF preview generation skipped for in-memory uploads")
        return None

    async def cleanup(self, file: IncomingFile) -> None:
        file.buffer = None


@dataclass
class UploadBatch:
    """
    Remote objects uploaded while serving one request.

    If the request fails after some uploads succeeded, `rollback` removes
    them so no orphaned objects are left in the media store.
    """

    uploader: MediaUploader
    uploaded: list[tuple[str, str]] = field(default_factory=list)

    def track(self, result: UploadResult, resource_type: str) -> None:
        self.uploaded.append((result.public_id, resource_type))

    async def rollback(self) -> None:
        while self.uploaded:
            public_id, resource_type = self.uploaded.pop()
            try:
                await self.uploader.destroy(public_id, resource_type)
                logger.info("Rolled back upload %s (%s)", public_id, resource_type)
            except Exception:
                logger.exception("Could not roll back upload %s", public_id)


def build_uploader(media: MediaStore, *, use_buffer: bool, upload_dir: str) -> MediaUploader:
    if use_buffer:
        logger.info("Using in-memory uploads")
        return BufferUploader(media)
    logger.info("Using disk uploads staged in %s", upload_dir)
    return DiskUploader(media, upload_dir)


COPY_CHUNK_SIZE = 1024 * 1024


def _copy_to_disk(source: BinaryIO, path: str) -> int:
    """Stream `source` into `path` in chunks; returns the bytes written."""
    with open(path, "xb") as f:
        shutil.copyfileobj(source, f, COPY_CHUNK_SIZE)
        return f.tell()


def _safe_delete(path: str) -> None:
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError:
        logger.exception("Error deleting file %s", path)
