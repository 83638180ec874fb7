"""Import/export job status payloads."""

from datetime import datetime
from typing import Any

from pydantic import Field

from catalog_io.api.schemas.common import CamelModel


class ImportJobOut(CamelModel):
    id: str
    file_name: str = Field(..., description="Original filename as uploaded")
    file_size: int
    file_type: str
    upload_type: str
    status: str = Field(..., description="uploaded|processing|completed|failed")
    progress: int = Field(..., description="0-100, never decreases")
    total_records: int = 0
    processed_records: int = 0
    success_count: int = 0
    error_count: int = 0
    error_message: str | None = None
    error_details: list[dict[str, Any]] | None = None
    cancel_requested: bool = False
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None


class RowErrorOut(CamelModel):
    id: str
    row_number: int
    column_name: str | None = None
    error_type: str
    error_message: str
    raw_data: dict[str, Any] | None = None
    created_at: datetime | None = None


class ImportStatusOut(CamelModel):
    job: ImportJobOut
    errors: list[RowErrorOut]


class RowErrorPage(CamelModel):
    items: list[RowErrorOut]
    total: int
    page: int
    page_size: int


class ExportJobOut(CamelModel):
    id: str
    export_type: str
    file_format: str
    file_name: str | None = None
    status: str = Field(..., description="pending|processing|completed|failed")
    progress: int
    total_records: int = 0
    error_message: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    expires_at: datetime | None = None
    download_url: str | None = None


class StatusOverview(CamelModel):
    imports: list[ImportJobOut]
    exports: list[ExportJobOut]
    analytics: dict[str, Any]
