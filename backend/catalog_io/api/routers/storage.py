"""Signed download endpoint for stored objects."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse

from catalog_io.api.dependencies.db import get_storage
from catalog_io.core.errors import SignatureError, StorageError
from catalog_io.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter()

MEDIA_TYPES = {
    "csv": "text/csv",
    "json": "application/json",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


@router.get("/{bucket}/{path:path}", summary="Download an object through a signed link")
def download_object(
    bucket: str,
    path: str,
    expires: int = Query(...),
    signature: str = Query(..., min_length=1),
    storage: ObjectStore = Depends(get_storage),
) -> FileResponse:
    """The signature is the only credential; no user header is required."""
    try:
        storage.verify_signature(bucket, path, expires, signature)
        local_path = storage.local_path(bucket, path)
    except SignatureError as exc:
        logger.warning(f"Rejected download of {bucket}/{path}: {exc}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Object not found") from exc

    extension = local_path.suffix.lstrip(".").lower()
    return FileResponse(
        local_path,
        media_type=MEDIA_TYPES.get(extension, "application/octet-stream"),
        filename=local_path.name,
    )
