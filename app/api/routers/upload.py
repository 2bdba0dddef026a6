import time
import logging
from typing import List
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse
from app.api.schemas import PhotoUploadResponse, PhotoUploadResult
from app.api.dependencies import get_media_library
from app.core.config import settings
from app.services.media_library import MediaLibrary

logger = logging.getLogger(__name__)

router = APIRouter(tags=["upload"])

def validate_photo(position: int, photo: UploadFile, size: int) -> None:
    """
    Reject anything that is not a non-empty image under the size limit.
    """
    if not photo.filename or not photo.content_type or size == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File at position {position} is missing required properties (name, type, or has zero size)"
        )
    if size > settings.MAX_SINGLE_UPLOAD_BYTES:
        limit_mb = settings.MAX_SINGLE_UPLOAD_BYTES // (1024 * 1024)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File {photo.filename} exceeds maximum size of {limit_mb}MB"
        )
    if not photo.content_type.startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File {photo.filename} is not a valid image type"
        )

@router.post("/upload", response_model=PhotoUploadResponse)
async def upload_photos(
    photos: List[UploadFile] = File(...),
    media_library: MediaLibrary = Depends(get_media_library)
):
    """
    Single-request upload for small photos.

    Every file is validated before anything is stored. Returns 207 when only
    some photos were stored and 500 when none were.
    """
    contents = []
    for position, photo in enumerate(photos, start=1):
        data = await photo.read()
        validate_photo(position, photo, len(data))
        contents.append(data)

    results = []
    for index, (photo, data) in enumerate(zip(photos, contents)):
        filename = photo.filename or f"photo-{int(time.time() * 1000)}-{index}.jpg"
        try:
            media_item_id = await media_library.store(data, filename, photo.content_type or "image/jpeg")
            results.append(PhotoUploadResult(success=True, filename=filename, media_item_id=media_item_id))
        except Exception as e:
            logger.error(f"Error uploading photo {filename}: {str(e)}")
            results.append(PhotoUploadResult(success=False, filename=filename, error=str(e) or "Unknown error occurred"))

    succeeded = [r for r in results if r.success]
    failed = [r for r in results if not r.success]
    logger.info(f"Upload completed. Success: {len(succeeded)}, Failed: {len(failed)}")

    if failed and not succeeded:
        response = PhotoUploadResponse(success=False, message="All uploads failed", results=results)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=response.model_dump(by_alias=True))
    if failed:
        response = PhotoUploadResponse(
            success=True,
            message=f"{len(succeeded)} of {len(photos)} photo(s) uploaded successfully",
            results=results,
            partial_success=True,
        )
        return JSONResponse(status_code=status.HTTP_207_MULTI_STATUS, content=response.model_dump(by_alias=True))

    return PhotoUploadResponse(
        success=True,
        message=f"{len(photos)} photo(s) uploaded successfully",
        results=results,
    )
