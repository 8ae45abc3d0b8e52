"""
Upload and generation routes.
/generate is a sync endpoint: it runs to completion in the server thread pool
even if the client disconnects, so the reservation is always settled.
"""
from fastapi import APIRouter, Body, Depends, File, UploadFile

from photovault.api.deps import get_orchestrator, get_photo_service
from photovault.core.config import settings
from photovault.models.account import Account
from photovault.schemas.generation import GenerateOut, GenerateRequest, UploadOut
from photovault.services.auth.jwt import get_current_account
from photovault.services.generation.orchestrator import GenerationOrchestrator
from photovault.services.photos.service import PhotoService

router = APIRouter(tags=["generation"])


@router.post("/uploads", response_model=UploadOut, status_code=201)
def upload_source(
    file: UploadFile = File(...),
    account: Account = Depends(get_current_account),
    photos: PhotoService = Depends(get_photo_service),
):
    # One byte over the limit is enough for the size check to reject it.
    data = file.file.read(settings.max_file_size_mb * 1024 * 1024 + 1)
    ref = photos.save_upload(account.id, data, file.filename or "", file.content_type)
    return {"source_image_ref": ref}


@router.post("/generate", response_model=GenerateOut)
def generate(
    body: GenerateRequest = Body(...),
    account: Account = Depends(get_current_account),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    result = orchestrator.generate(
        account_id=account.id,
        theme_id=body.theme,
        source_image_ref=body.source_image_ref,
        count=body.count,
        guidance=body.guidance,
    )
    view = orchestrator.photos.to_view(result.photo_set)
    return {
        "photo_set_id": view.id,
        "outputs": view.urls,
        "state": result.state.value,
        "requested": result.requested,
        "succeeded": result.succeeded,
        "credits_charged": result.credits_charged,
        "credits_refunded": result.credits_refunded,
    }
