"""
Signed downloads for the local storage backend.
"""
import mimetypes

from fastapi import APIRouter, Depends, Query, Response

from photovault.api.deps import get_container
from photovault.core.container import ServiceContainer
from photovault.core.errors import NotFound, Unauthorized
from photovault.storage.base import ObjectNotFound
from photovault.storage.local import LocalStorage

router = APIRouter(tags=["files"])


@router.get("/files/{ref:path}")
def download(ref: str, token: str = Query(...), container: ServiceContainer = Depends(get_container)):
    storage = container.storage
    if not isinstance(storage, LocalStorage):
        raise NotFound("File not found")
    if not storage.verify_token(ref, token):
        raise Unauthorized("Invalid or expired link")
    try:
        data = storage.get(ref)
    except ObjectNotFound as e:
        raise NotFound("File not found") from e
    media_type = mimetypes.guess_type(ref)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type, headers={"Cache-Control": "private, max-age=3600"})
