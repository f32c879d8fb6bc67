"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Depends

from takeoffs.config import Settings, get_settings
from takeoffs.db import InMemoryTakeoffStore, SqlTakeoffStore, TakeoffStore
from takeoffs.service import TakeoffService
from takeoffs.storage import InMemoryMediaStore, MediaStore, S3MediaStore
from takeoffs.uploader import MediaUploader, build_uploader

_takeoff_store: TakeoffStore | None = None
_media_store: MediaStore | None = None
_uploader: MediaUploader | None = None


def get_takeoff_store() -> TakeoffStore:
    """
    Return a singleton store so records persist across requests.
    """
    global _takeoff_store
    if _takeoff_store is not None:
        return _takeoff_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _takeoff_store = InMemoryTakeoffStore()
    else:
        _takeoff_store = SqlTakeoffStore(settings.database_url)
    return _takeoff_store


def get_media_store() -> MediaStore:
    global _media_store
    if _media_store is not None:
        return _media_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.storage_bucket:
        _media_store = InMemoryMediaStore()
    else:
        _media_store = S3MediaStore(
            bucket=settings.storage_bucket,
            region=settings.storage_region or "",
            endpoint=settings.storage_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_url=settings.storage_public_url or "",
        )
    return _media_store


def get_uploader() -> MediaUploader:
    """
    Return the upload strategy for this process, chosen once from settings.
    """
    global _uploader
    if _uploader is not None:
        return _uploader

    settings = get_settings()
    _uploader = build_uploader(
        get_media_store(),
        use_buffer=settings.use_buffer_uploads,
        upload_dir=settings.upload_dir,
    )
    return _uploader


def get_takeoff_service(
    store: TakeoffStore = Depends(get_takeoff_store),
    uploader: MediaUploader = Depends(get_uploader),
    settings: Settings = Depends(get_settings),
) -> TakeoffService:
    return TakeoffService(
        store,
        uploader,
        media_folder=settings.media_folder,
        preview_folder=settings.preview_folder,
    )
