"""Request and response bodies for the export endpoints."""

from datetime import datetime
from typing import Literal

from pydantic import Field

from catalog_io.api.schemas.common import CamelModel
from catalog_io.api.schemas.job import ExportJobOut
from catalog_io.services.export_generator import ExportFilters


class ExportRequest(CamelModel):
    export_type: Literal["products", "campaigns", "analytics"]
    format: Literal["csv", "xlsx", "json"]
    filters: ExportFilters = Field(default_factory=ExportFilters)
    columns: list[str] = Field(default_factory=list, max_length=100)


class ExportCreated(CamelModel):
    id: str
    file_name: str
    format: str
    record_count: int
    download_url: str
    expires_at: datetime


class ExportResponse(CamelModel):
    success: bool = True
    export: ExportCreated


class ExportList(CamelModel):
    success: bool = True
    exports: list[ExportJobOut]
