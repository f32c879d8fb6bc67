"""
Request body decoding for create/update calls.

Create and update accept either a multipart form (scalar fields plus the
`files` and `pdfPreview` file groups) or a plain JSON object without files.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from fastapi import Request
from starlette.datastructures import UploadFile

from takeoffs.errors import ValidationError

# Sent as JSON-encoded text by multipart clients.
ENCODED_FIELDS = ("features", "specifications", "tags")
FILE_GROUPS = ("files", "pdfPreview")


def decode_json_field(value: Any) -> Any:
    """Decode JSON text; anything that is not valid JSON text is returned unchanged."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def decode_encoded_fields(fields: dict[str, Any]) -> dict[str, Any]:
    decoded = dict(fields)
    for name in ENCODED_FIELDS:
        if name in decoded:
            decoded[name] = decode_json_field(decoded[name])
    return decoded


@dataclass
class TakeoffForm:
    fields: dict[str, Any] = field(default_factory=dict)
    files: list[UploadFile] = field(default_factory=list)
    pdf_preview: list[UploadFile] = field(default_factory=list)


def _group(form, name: str) -> list[UploadFile]:
    items = list(form.getlist(name)) + list(form.getlist(f"{name}[]"))
    return [item for item in items if isinstance(item, UploadFile) and item.filename]


async def read_takeoff_form(request: Request) -> TakeoffForm:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except json.JSONDecodeError as exc:
            raise ValidationError([f"body: invalid JSON ({exc.msg})"]) from exc
        if not isinstance(body, dict):
            raise ValidationError(["body: expected a JSON object"])
        return TakeoffForm(fields=decode_encoded_fields(body))

    form = await request.form()
    group_keys = {key for name in FILE_GROUPS for key in (name, f"{name}[]")}
    fields = {
        key: value
        for key, value in form.multi_items()
        # Empty form values mean "not supplied".
        if key not in group_keys and isinstance(value, str) and value != ""
    }
    return TakeoffForm(
        fields=decode_encoded_fields(fields),
        files=_group(form, "files"),
        pdf_preview=_group(form, "pdfPreview"),
    )
