"""
Pydantic schemas for the takeoff listings API.

JSON bodies use camelCase keys; Python code uses the snake_case field names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Attachment(ApiModel):
    filename: str
    original_name: str
    size: int
    public_id: str
    url: str
    resource_type: str = "raw"
    upload_date: datetime
    first_page_preview_url: Optional[str] = None
    first_page_preview_public_id: Optional[str] = None
    is_pdf: bool = False


class CreatorSummary(ApiModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


# Encoded-text fields fall back to the raw string when it is not valid JSON.
ListField = Union[list[Any], str]
SpecificationsField = Union[dict[str, Any], list[Any], str]


class TakeoffFields(ApiModel):
    """Scalar fields shared by create and update payloads."""

    @field_validator("project_type", "project_size", "zip_code", check_fields=False)
    @classmethod
    def _normalize(cls, value, info):
        if value is None:
            return value
        value = str(value).strip()
        if info.field_name in ("project_type", "project_size"):
            value = value.lower()
        if not value:
            raise ValueError("must not be empty")
        return value


class TakeoffCreate(TakeoffFields):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    project_type: str
    project_size: str
    zip_code: str = Field(..., max_length=20)
    address: Optional[str] = None
    price: float = Field(..., ge=0)
    features: Optional[ListField] = None
    specifications: Optional[SpecificationsField] = None
    tags: Optional[ListField] = None
    is_active: bool = True
    expiration_date: Optional[datetime] = None
    created_by: Optional[str] = None


class TakeoffUpdate(TakeoffFields):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    project_type: Optional[str] = None
    project_size: Optional[str] = None
    zip_code: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    features: Optional[ListField] = None
    specifications: Optional[SpecificationsField] = None
    tags: Optional[ListField] = None
    is_active: Optional[bool] = None
    expiration_date: Optional[datetime] = None


class TakeoffRecord(ApiModel):
    id: str
    title: str
    description: Optional[str] = None
    project_type: str
    project_size: str
    zip_code: str
    address: Optional[str] = None
    price: float
    features: Optional[ListField] = None
    specifications: Optional[SpecificationsField] = None
    tags: Optional[ListField] = None
    is_active: bool = True
    expiration_date: Optional[datetime] = None
    created_by: Optional[Union[CreatorSummary, str]] = None
    files: list[Attachment] = Field(default_factory=list)
    pdf_preview: list[Attachment] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class DeleteResponse(BaseModel):
    message: str
