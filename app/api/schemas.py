from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List

# Upload ids become directory names in the chunk store
UPLOAD_ID_PATTERN = r"^[A-Za-z0-9_-]{1,128}$"

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class Token(BaseModel):
    access_token: str
    token_type: str

class InitUploadRequest(CamelModel):
    filename: str = Field(min_length=1)
    content_type: str = Field(min_length=1)
    total_size: int = Field(ge=0)
    total_chunks: int = Field(ge=1)
    chunk_size: int = Field(gt=0)
    upload_id: str = Field(pattern=UPLOAD_ID_PATTERN)

class InitUploadResponse(CamelModel):
    upload_id: str
    status: str  # always "initialized"
    filename: str
    content_type: str
    total_size: int
    total_chunks: int

class ChunkResponse(CamelModel):
    chunk_index: int
    status: str  # always "received"
    progress: int

class CompleteUploadRequest(CamelModel):
    upload_id: str = Field(pattern=UPLOAD_ID_PATTERN)
    filename: str = Field(min_length=1)
    content_type: str = Field(min_length=1)
    total_size: Optional[int] = Field(default=None, ge=0)
    total_chunks: int = Field(ge=1)

class CompleteUploadResponse(CamelModel):
    success: bool
    media_item_id: str
    filename: str
    chunks_cleaned_up: int

class CleanupRequest(CamelModel):
    upload_id: str = Field(pattern=UPLOAD_ID_PATTERN)

class CleanupResponse(CamelModel):
    success: bool
    deleted_count: int
    failed_count: int
    total_chunks: int
    message: Optional[str] = None

class OrphanCleanupResponse(CamelModel):
    success: bool
    deleted_count: int
    failed_count: int
    upload_groups_processed: int

class PhotoUploadResult(CamelModel):
    success: bool
    filename: str
    media_item_id: Optional[str] = None
    error: Optional[str] = None

class PhotoUploadResponse(CamelModel):
    success: bool
    message: str
    results: List[PhotoUploadResult]
    partial_success: bool = False
