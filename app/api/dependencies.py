from pathlib import Path
from fastapi import Depends, Request
from app.core.config import settings
from app.services.chunk_store import ChunkStore
from app.services.cleanup_service import CleanupCoordinator
from app.services.media_library import MediaLibrary
from app.services.upload_service import UploadService

def get_chunk_store() -> ChunkStore:
    return ChunkStore(settings.TEMP_DIR)

def get_media_library(request: Request) -> MediaLibrary:
    """
    One media library per app, so its write limit is shared across requests.
    """
    library = getattr(request.app.state, "media_library", None)
    if library is None or library.root != Path(settings.MEDIA_DIR):
        library = MediaLibrary(settings.MEDIA_DIR, max_concurrent=settings.MAX_CONCURRENT_MEDIA_WRITES)
        request.app.state.media_library = library
    return library

def get_cleanup_coordinator(chunk_store: ChunkStore = Depends(get_chunk_store)) -> CleanupCoordinator:
    return CleanupCoordinator(chunk_store, orphan_threshold_seconds=settings.ORPHAN_THRESHOLD_SECONDS)

def get_upload_service(
    chunk_store: ChunkStore = Depends(get_chunk_store),
    media_library: MediaLibrary = Depends(get_media_library),
    cleanup: CleanupCoordinator = Depends(get_cleanup_coordinator),
) -> UploadService:
    return UploadService(chunk_store, media_library, cleanup)
