import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from koshekshop import config
from koshekshop.admin import uploadcare
from koshekshop.admin.auth import require_auth

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["upload"], dependencies=[Depends(require_auth)])

ALLOWED_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")


@router.post("")
async def upload_image(file: UploadFile = File(None)):
    if file is None:
        raise HTTPException(status_code=400, detail="file_required")

    content_type = (file.content_type or "").lower()
    if content_type not in ALLOWED_TYPES:
        raise HTTPException(status_code=400, detail="invalid_file_type")

    content = await file.read()
    if len(content) > config.UPLOAD_MAX_BYTES:
        raise HTTPException(status_code=400, detail="file_too_large")

    try:
        url = await uploadcare.upload_to_uploadcare(content, file.filename or "image", content_type)
    except uploadcare.UploadcareError as e:
        logger.error(f"Photo upload failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"url": url}
