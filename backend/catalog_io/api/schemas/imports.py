"""Request and response bodies for the import endpoints."""

from typing import Any

from pydantic import Field

from catalog_io.api.schemas.common import CamelModel
from catalog_io.api.schemas.job import ImportJobOut


class UploadResponse(CamelModel):
    success: bool = True
    upload: ImportJobOut


class UploadList(CamelModel):
    success: bool = True
    uploads: list[ImportJobOut]


class ProcessOptions(CamelModel):
    batch_size: int | None = Field(None, ge=1, description="Records per chunk; capped server-side")
    max_rows: int | None = Field(None, ge=1, description="Row cap; capped at the absolute ceiling")
    column_mapping: dict[str, str] | None = Field(None, description="Source header -> product field")
    template_id: str | None = None
    auto_detect: bool = False


class ProcessRequest(CamelModel):
    upload_id: str = Field(..., min_length=1)
    options: ProcessOptions = Field(default_factory=ProcessOptions)


class ProcessResult(CamelModel):
    success: bool = True
    total_records: int
    processed_records: int
    success_count: int
    error_count: int
    has_errors: bool
    cancelled: bool = False
    sample_errors: list[dict[str, Any]]


class CancelRequest(CamelModel):
    upload_id: str = Field(..., min_length=1)


class DetectColumnsRequest(CamelModel):
    headers: list[str] = Field(..., max_length=100)


class DetectColumnsResponse(CamelModel):
    mapping: dict[str, str]
    fields: list[str]
    unmapped: list[str]
