"""Saved import template payloads."""

from datetime import datetime
from typing import Literal

from pydantic import Field

from catalog_io.api.schemas.common import CamelModel


class TemplateCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    file_type: Literal["csv", "xlsx", "json"]
    mapping_config: dict[str, str] = Field(..., min_length=1)
    is_default: bool = False


class TemplateUpdate(CamelModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    mapping_config: dict[str, str] = Field(..., min_length=1)
    is_default: bool = False


class TemplateOut(CamelModel):
    id: str
    name: str
    description: str | None = None
    file_type: str
    mapping_config: dict[str, str]
    is_default: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TemplateResponse(CamelModel):
    success: bool = True
    template: TemplateOut


class TemplateList(CamelModel):
    success: bool = True
    templates: list[TemplateOut]
