"""
Remote media store abstraction for S3-compatible buckets and in-memory testing.

Objects are addressed by a public id (``<folder>/<name>``) plus a resource
kind ("raw" for documents, "image" for rendered previews). Both parts go
into the object key so the same public id can exist once per kind.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from botocore.config import Config


@dataclass(frozen=True)
class StoredObject:
    public_id: str
    secure_url: str


def object_key(public_id: str, resource_type: str) -> str:
    return f"{resource_type}/{public_id}"


class MediaStore(Protocol):
    """Defines the operations the uploaders need from object storage."""

    def upload_file(
        self, src_path: str, public_id: str, resource_type: str = "raw"
    ) -> StoredObject:
        ...

    def upload_bytes(
        self,
        data: bytes,
        public_id: str,
        resource_type: str = "raw",
        content_type: Optional[str] = None,
    ) -> StoredObject:
        ...

    def destroy(self, public_id: str, resource_type: str = "raw") -> None:
        ...

    def exists(self, public_id: str, resource_type: str = "raw") -> bool:
        ...


@dataclass
class InMemoryMediaStore:
    """Test double for media store interactions."""

    base_url: str = "https://media.example.test"
    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def _stored(self, key: str) -> StoredObject:
        return StoredObject(
            public_id=key.split("/", 1)[1], secure_url=f"{self.base_url}/{key}"
        )

    def upload_file(
        self, src_path: str, public_id: str, resource_type: str = "raw"
    ) -> StoredObject:
        key = object_key(public_id, resource_type)
        with open(src_path, "rb") as f:
            self.stored_objects[key] = f.read()
        return self._stored(key)

    def upload_bytes(
        self,
        data: bytes,
        public_id: str,
        resource_type: str = "raw",
        content_type: Optional[str] = None,
    ) -> StoredObject:
        key = object_key(public_id, resource_type)
        self.stored_objects[key] = bytes(data)
        return self._stored(key)

    def destroy(self, public_id: str, resource_type: str = "raw") -> None:
        self.stored_objects.pop(object_key(public_id, resource_type), None)

    def exists(self, public_id: str, resource_type: str = "raw") -> bool:
        return object_key(public_id, resource_type) in self.stored_objects

    def reset(self) -> None:
        """Clear all stored objects (useful in tests)."""
        self.stored_objects.clear()


@dataclass
class S3MediaStore:
    """
    Media store backed by any S3-compatible bucket.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_url: str = ""

    def __post_init__(self):
        config = Config(signature_version="s3v4")
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )
        if not self.public_url:
            if self.endpoint:
                self.public_url = f"{self.endpoint.rstrip('/')}/{self.bucket}"
            else:
                self.public_url = (
                    f"https://{self.bucket}.s3.{self.region or 'us-east-1'}.amazonaws.com"
                )

    def _stored(self, public_id: str, key: str) -> StoredObject:
        return StoredObject(
            public_id=public_id, secure_url=f"{self.public_url.rstrip('/')}/{key}"
        )

    def upload_file(
        self, src_path: str, public_id: str, resource_type: str = "raw"
    ) -> StoredObject:
        key = object_key(public_id, resource_type)
        content_type, _ = mimetypes.guess_type(src_path)
        extra_args = {"ContentType": content_type} if content_type else None
        self._client.upload_file(src_path, self.bucket, key, ExtraArgs=extra_args)
        return self._stored(public_id, key)

    def upload_bytes(
        self,
        data: bytes,
        public_id: str,
        resource_type: str = "raw",
        content_type: Optional[str] = None,
    ) -> StoredObject:
        key = object_key(public_id, resource_type)
        self._client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type or "application/octet-stream",
        )
        return self._stored(public_id, key)

    def destroy(self, public_id: str, resource_type: str = "raw") -> None:
        self._client.delete_object(
            Bucket=self.bucket, Key=object_key(public_id, resource_type)
        )

    def exists(self, public_id: str, resource_type: str = "raw") -> bool:
        response = self._client.list_objects_v2(
            Bucket=self.bucket, Prefix=object_key(public_id, resource_type), MaxKeys=1
        )
        return response.get("KeyCount", 0) > 0
