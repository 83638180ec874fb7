"""Import template downloads and saved column-mapping templates."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from catalog_io.api.dependencies.auth import get_current_user
from catalog_io.api.dependencies.db import get_session
from catalog_io.api.dependencies.security import api_rate_limit, verify_origin
from catalog_io.api.schemas.common import MessageResponse
from catalog_io.api.schemas.templates import (
    TemplateCreate,
    TemplateList,
    TemplateOut,
    TemplateResponse,
    TemplateUpdate,
)
from catalog_io.core.errors import TemplateNotFoundError
from catalog_io.services import template_service

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_origin), Depends(api_rate_limit)])


@router.get("", summary="Download a sample import file")
def download_template(
    file_format: str = Query("csv", alias="format"),
    template_type: str = Query("products", alias="type"),
    owner_id: str = Depends(get_current_user),
) -> Response:
    try:
        template = template_service.build_template_file(file_format, template_type)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return Response(
        content=template.content,
        media_type=template.mime_type,
        headers={
            "Content-Disposition": f'attachment; filename="{template.file_name}"',
            "Cache-Control": "no-cache",
        },
    )


@router.get("/saved", summary="List saved mapping templates", response_model=TemplateList)
def list_saved_templates(
    file_type: str | None = Query(None, alias="fileType"),
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> TemplateList:
    templates = template_service.list_templates(db, owner_id, file_type)
    return TemplateList(templates=[TemplateOut.model_validate(t) for t in templates])


@router.post("", summary="Save a mapping template", response_model=TemplateResponse)
def create_template(
    payload: TemplateCreate,
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> TemplateResponse:
    try:
        template = template_service.create_template(
            db,
            owner_id,
            name=payload.name,
            file_type=payload.file_type,
            mapping_config=payload.mapping_config,
            description=payload.description,
            is_default=payload.is_default,
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.error(f"Template default conflict for {owner_id}: {exc}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Failed to create template") from exc
    return TemplateResponse(template=TemplateOut.model_validate(template))


@router.put("", summary="Update a mapping template", response_model=TemplateResponse)
def update_template(
    payload: TemplateUpdate,
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> TemplateResponse:
    try:
        template = template_service.update_template(
            db,
            owner_id,
            payload.id,
            name=payload.name,
            mapping_config=payload.mapping_config,
            description=payload.description,
            is_default=payload.is_default,
        )
        db.commit()
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except IntegrityError as exc:
        db.rollback()
        logger.error(f"Template default conflict for {owner_id}: {exc}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Failed to update template") from exc
    return TemplateResponse(template=TemplateOut.model_validate(template))


@router.delete("", summary="Delete a mapping template", response_model=MessageResponse)
def delete_template(
    template_id: str = Query(..., alias="id"),
    owner_id: str = Depends(get_current_user),
    db: Session = Depends(get_session),
) -> MessageResponse:
    try:
        template_service.delete_template(db, owner_id, template_id)
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return MessageResponse(message="Template deleted successfully")
