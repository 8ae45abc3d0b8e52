from fastapi import APIRouter, Depends, Query, Response

from photovault.api.deps import get_photo_service
from photovault.models.account import Account
from photovault.schemas.generation import PhotoSetOut
from photovault.services.auth.jwt import get_current_account
from photovault.services.photos.service import PhotoService, PhotoSetView

router = APIRouter(prefix="/photos", tags=["photos"])


def _out(view: PhotoSetView) -> dict:
    return {
        "id": view.id,
        "theme": view.theme,
        "credits_used": view.credits_used,
        "created_at": view.created_at,
        "photo_urls": view.urls,
    }


@router.get("", response_model=list[PhotoSetOut])
def list_photos(
    limit: int = Query(50, ge=1, le=200),
    account: Account = Depends(get_current_account),
    photos: PhotoService = Depends(get_photo_service),
):
    return [_out(view) for view in photos.list(account.id, limit=limit)]


@router.get("/{photo_set_id}", response_model=PhotoSetOut)
def get_photo_set(
    photo_set_id: str,
    account: Account = Depends(get_current_account),
    photos: PhotoService = Depends(get_photo_service),
):
    return _out(photos.get(photo_set_id, account.id))


@router.delete("/{photo_set_id}", status_code=204)
def delete_photo_set(
    photo_set_id: str,
    account: Account = Depends(get_current_account),
    photos: PhotoService = Depends(get_photo_service),
):
    photos.delete(photo_set_id, account.id)
    return Response(status_code=204)
