import logging
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from app.api.schemas import (
    UPLOAD_ID_PATTERN,
    ChunkResponse,
    CleanupRequest,
    CleanupResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    OrphanCleanupResponse,
)
from app.api.dependencies import get_cleanup_coordinator, get_upload_service
from app.core.auth import get_current_admin
from app.services.cleanup_service import CleanupCoordinator
from app.services.upload_service import UploadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chunked-upload", tags=["chunked-upload"])

@router.post("/init", response_model=InitUploadResponse)
async def init_upload(body: InitUploadRequest):
    """
    Validate upload metadata before any chunk is sent.

    Nothing is stored: the upload only exists through the chunks sent under
    its id.
    """
    logger.info(
        f"Initialized upload {body.upload_id}: {body.filename} "
        f"({body.total_size} bytes in {body.total_chunks} chunks)"
    )
    return InitUploadResponse(
        upload_id=body.upload_id,
        status="initialized",
        filename=body.filename,
        content_type=body.content_type,
        total_size=body.total_size,
        total_chunks=body.total_chunks,
    )

@router.post("/chunk", response_model=ChunkResponse)
async def upload_chunk(
    chunk: UploadFile = File(...),
    upload_id: str = Form(..., alias="uploadId", pattern=UPLOAD_ID_PATTERN),
    chunk_index: int = Form(..., alias="chunkIndex"),
    total_chunks: int = Form(..., alias="totalChunks"),
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Store one chunk at a location keyed by upload id and chunk index.
    """
    chunk_data = await chunk.read()

    try:
        result = await upload_service.save_chunk(upload_id, chunk_index, total_chunks, chunk_data)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error processing chunk {chunk_index} of upload {upload_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process chunk: {str(e)}"
        )

    return ChunkResponse(**result)

@router.post("/complete", response_model=CompleteUploadResponse)
async def complete_upload(
    body: CompleteUploadRequest,
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Reassemble the chunks of an upload into one media item.

    Fails with 400 when the stored chunk count differs from ``totalChunks``.
    """
    try:
        result = await upload_service.complete_upload(
            upload_id=body.upload_id,
            filename=body.filename,
            content_type=body.content_type,
            total_chunks=body.total_chunks,
            total_size=body.total_size,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error completing chunked upload {body.upload_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to complete upload: {str(e)}"
        )

    return CompleteUploadResponse(**result)

@router.api_route("/cleanup", methods=["POST", "DELETE"], response_model=CleanupResponse)
async def cleanup_upload(
    body: CleanupRequest,
    cleanup: CleanupCoordinator = Depends(get_cleanup_coordinator)
):
    """
    Delete every chunk stored for an upload that will not be completed.
    """
    report = await cleanup.cleanup_upload(body.upload_id)
    return CleanupResponse(
        success=True,
        deleted_count=report.deleted,
        failed_count=report.failed,
        total_chunks=report.total,
        message=None if report.total else "No chunks to clean up",
    )

@router.post("/cleanup-orphaned", response_model=OrphanCleanupResponse)
async def cleanup_orphaned(
    cleanup: CleanupCoordinator = Depends(get_cleanup_coordinator),
    admin: str = Depends(get_current_admin)
):
    """
    Sweep chunk groups abandoned for longer than the orphan threshold.
    """
    logger.info(f"Orphaned chunks cleanup requested by {admin}")
    report = await cleanup.sweep_orphans()
    return OrphanCleanupResponse(
        success=True,
        deleted_count=report.deleted,
        failed_count=report.failed,
        upload_groups_processed=report.groups,
    )
