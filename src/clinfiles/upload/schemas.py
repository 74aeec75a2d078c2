"""Pydantic models for the metadata backend's responses.

The backend speaks the clinic's original field names (``paciente``,
``s3_key``, ``file_size_bytes``); the models expose neutral attribute
names and accept either spelling on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinfiles.models import FileCategory


class TransferSlot(BaseModel):
    """A server-issued authorization for one PUT to object storage."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    upload_url: str
    storage_key: str = Field(alias="s3_key")
    transfer_id: str = Field(alias="file_uuid")

    @field_validator("upload_url", "storage_key", "transfer_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


class ClinicalFileRecord(BaseModel):
    """Durable metadata for a file that reached storage."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    subject_id: str = Field(alias="paciente")
    encounter_ref: str | None = Field(default=None, alias="snapshot")
    original_filename: str
    mime_type: str
    size_bytes: int = Field(alias="file_size_bytes", ge=0)
    category: FileCategory
    created_at: datetime
    view_url: str | None = Field(default=None, alias="file_url")
    download_url: str | None = None

    @field_validator("id", "subject_id", "encounter_ref", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Django primary keys may arrive as integers or UUIDs
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("category", mode="before")
    @classmethod
    def _parse_category(cls, value: Any) -> FileCategory:
        return FileCategory.parse(value)


def unwrap_envelope(body: Any) -> Any:
    """Strip a ``{"data": ...}`` envelope if present."""
    if isinstance(body, dict) and "data" in body and isinstance(
        body["data"], (dict, list)
    ):
        return body["data"]
    return body


def unwrap_list(body: Any) -> list[Any]:
    """Return the item list from a bare, enveloped or paginated response."""
    body = unwrap_envelope(body)
    if isinstance(body, dict) and isinstance(body.get("results"), list):
        return body["results"]
    if isinstance(body, list):
        return body
    raise ValueError(f"Unexpected list response shape: {type(body).__name__}")
