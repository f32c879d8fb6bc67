"""
Takeoff record operations: create, list, get, update and delete.

Attached files are uploaded one at a time, in the order they were sent, so
the stored attachment lists keep the request's ordering. Every remote object
uploaded for a request that then fails is rolled back.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Optional

import pydantic
from starlette.datastructures import UploadFile

from takeoffs.auth import user_id_from_claims
from takeoffs.db import TakeoffStore, utcnow
from takeoffs.errors import NotFound, ValidationError
from takeoffs.query import TakeoffQuery
from takeoffs.schemas import Attachment, TakeoffCreate, TakeoffRecord, TakeoffUpdate
from takeoffs.uploader import IncomingFile, MediaUploader, UploadBatch

logger = logging.getLogger(__name__)

RAW = "raw"
IMAGE = "image"
# Columns that cannot be cleared by an update.
REQUIRED_FIELDS = ("title", "project_type", "project_size", "zip_code", "price", "is_active")


def _field_messages(exc: pydantic.ValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "body"
        messages.append(f"{location}: {error['msg']}")
    return messages


def validate_payload(model: type[pydantic.BaseModel], fields: dict[str, Any]):
    try:
        return model.model_validate(fields)
    except pydantic.ValidationError as exc:
        raise ValidationError(_field_messages(exc)) from exc


class TakeoffService:
    def __init__(
        self,
        store: TakeoffStore,
        uploader: MediaUploader,
        *,
        media_folder: str = "takeoffs",
        preview_folder: str = "pdf-previews",
    ):
        self.store = store
        self.uploader = uploader
        self.media_folder = media_folder
        self.preview_folder = preview_folder

    async def _upload_group(
        self,
        uploads: list[UploadFile],
        batch: UploadBatch,
        staged: list[IncomingFile],
        *,
        always_pdf: bool,
    ) -> list[dict]:
        attachments: list[dict] = []
        for upload in uploads:
            file = await self.uploader.stage(upload)
            staged.append(file)
            logger.info(
                "Processing file %s (%d bytes, %s)",
                file.original_name,
                file.size,
                file.content_type,
            )
            result = await self.uploader.upload(file, RAW, self.media_folder)
            batch.track(result, RAW)

            is_pdf = always_pdf or file.is_pdf
            preview = None
            if is_pdf and self.uploader.supports_previews:
                preview = await self.uploader.preview(file, self.preview_folder)
                if preview:
                    batch.track(preview, IMAGE)
            await self.uploader.cleanup(file)

            attachment = Attachment(
                filename=file.filename,
                original_name=file.original_name,
                size=file.size,
                public_id=result.public_id,
                url=result.secure_url,
                resource_type=RAW,
                upload_date=utcnow(),
                first_page_preview_url=preview.secure_url if preview else None,
                first_page_preview_public_id=preview.public_id if preview else None,
                is_pdf=is_pdf,
            )
            attachments.append(attachment.model_dump(mode="json"))
            logger.info("Uploaded %s as %s", file.original_name, result.public_id)
        return attachments

    async def _upload_all(
        self,
        files: list[UploadFile],
        pdf_preview: list[UploadFile],
        batch: UploadBatch,
        staged: list[IncomingFile],
    ) -> tuple[list[dict], list[dict]]:
        file_docs = await self._upload_group(files, batch, staged, always_pdf=False)
        preview_docs = await self._upload_group(pdf_preview, batch, staged, always_pdf=True)
        return file_docs, preview_docs

    async def _cleanup(self, staged: list[IncomingFile]) -> None:
        for file in staged:
            await self.uploader.cleanup(file)

    def _with_creators(self, docs: list[dict]) -> list[TakeoffRecord]:
        creators = self.store.get_creators(
            doc["created_by"] for doc in docs if doc.get("created_by")
        )
        records = []
        for doc in docs:
            if doc.get("created_by"):
                doc["created_by"] = creators.get(doc["created_by"])
            records.append(TakeoffRecord.model_validate(doc))
        return records

    async def create_takeoff(
        self,
        fields: dict[str, Any],
        files: Optional[list[UploadFile]] = None,
        pdf_preview: Optional[list[UploadFile]] = None,
        user: Optional[dict] = None,
    ) -> TakeoffRecord:
        payload = validate_payload(TakeoffCreate, fields)
        if not payload.created_by:
            payload.created_by = user_id_from_claims(user)

        batch = UploadBatch(self.uploader)
        staged: list[IncomingFile] = []
        try:
            file_docs, preview_docs = await self._upload_all(
                files or [], pdf_preview or [], batch, staged
            )
            now = utcnow()
            doc = {
                **payload.model_dump(),
                "id": uuid.uuid4().hex,
                "files": file_docs,
                "pdf_preview": preview_docs,
                "created_at": now,
                "updated_at": now,
            }
            stored = await asyncio.to_thread(self.store.insert_takeoff, doc)
        except Exception:
            await batch.rollback()
            raise
        finally:
            await self._cleanup(staged)

        logger.info(
            "Created takeoff %s with %d files and %d PDF previews",
            stored["id"],
            len(file_docs),
            len(preview_docs),
        )
        return TakeoffRecord.model_validate(stored)

    async def list_takeoffs(self, query: TakeoffQuery) -> list[TakeoffRecord]:
        docs = await asyncio.to_thread(self.store.list_takeoffs, query)
        return await asyncio.to_thread(self._with_creators, docs)

    async def get_takeoff(self, takeoff_id: str) -> TakeoffRecord:
        doc = await asyncio.to_thread(self.store.get_takeoff, takeoff_id)
        if not doc:
            raise NotFound()
        records = await asyncio.to_thread(self._with_creators, [doc])
        return records[0]

    async def update_takeoff(
        self,
        takeoff_id: str,
        fields: dict[str, Any],
        files: Optional[list[UploadFile]] = None,
        pdf_preview: Optional[list[UploadFile]] = None,
    ) -> TakeoffRecord:
        existing = await asyncio.to_thread(self.store.get_takeoff, takeoff_id)
        if not existing:
            raise NotFound()
        payload = validate_payload(TakeoffUpdate, fields)
        changes = {
            key: value
            for key, value in payload.model_dump(exclude_unset=True).items()
            if value is not None or key not in REQUIRED_FIELDS
        }
        changes["updated_at"] = utcnow()

        batch = UploadBatch(self.uploader)
        staged: list[IncomingFile] = []
        try:
            file_docs, preview_docs = await self._upload_all(
                files or [], pdf_preview or [], batch, staged
            )
            stored = await asyncio.to_thread(
                lambda: self.store.update_takeoff(
                    takeoff_id,
                    changes,
                    append_files=file_docs,
                    append_pdf_preview=preview_docs,
                )
            )
            if not stored:
                raise NotFound()
        except Exception:
            await batch.rollback()
            raise
        finally:
            await self._cleanup(staged)

        logger.info(
            "Updated takeoff %s (%d new files, %d new PDF previews)",
            takeoff_id,
            len(file_docs),
            len(preview_docs),
        )
        return TakeoffRecord.model_validate(stored)

    async def delete_takeoff(self, takeoff_id: str) -> dict:
        doc = await asyncio.to_thread(self.store.get_takeoff, takeoff_id)
        if not doc:
            raise NotFound()

        # Remote objects go first; a failure here leaves the record intact.
        for attachment in list(doc.get("files") or []) + list(doc.get("pdf_preview") or []):
            if attachment.get("public_id"):
                await self.uploader.destroy(attachment["public_id"], RAW)
            if attachment.get("first_page_preview_public_id"):
                await self.uploader.destroy(attachment["first_page_preview_public_id"], IMAGE)

        await asyncio.to_thread(self.store.delete_takeoff, takeoff_id)
        logger.info("Deleted takeoff %s", takeoff_id)
        return {"message": "Takeoff deleted"}
