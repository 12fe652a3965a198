from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse

from tubely.api import deps
from tubely.core.errors import StorageError
from tubely.core.storage import LocalObjectStore, ObjectStore


router = APIRouter(prefix="/media", tags=["media"])


@router.get("/{bucket}/{key:path}", summary="Serve a signed object from the local store")
async def get_media(
    bucket: str,
    key: str,
    exp: int = Query(...),
    sig: str = Query(..., min_length=1),
    store: ObjectStore = Depends(deps.get_object_store),
) -> FileResponse:
    if not isinstance(store, LocalObjectStore) or bucket != store.bucket:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="media_not_found")
    if not store.verify(bucket, key, expires_at=exp, signature=sig):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="invalid_or_expired_signature")
    try:
        stored = store.open_object(key)
    except (FileNotFoundError, StorageError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="media_not_found")
    return FileResponse(stored.path, media_type=stored.content_type)


__all__ = ["router"]
