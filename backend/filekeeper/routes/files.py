"""Files API routes."""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, UploadFile, File as FastAPIFile
from fastapi.responses import FileResponse

from filekeeper.dependencies import get_file_validator, get_transaction_service
from filekeeper.schemas.file import (
    FileDeleteResponse,
    FileListResponse,
    FileResponse as FileResponseSchema,
    FileUploadResponse,
    Pagination,
    StorageStatsResponse,
)
from filekeeper.services.file_validation import FileValidationService
from filekeeper.services.image_transform import TransformOptions
from filekeeper.services.transaction import FileTransactionService

router = APIRouter(prefix="/api/files", tags=["files"])


@router.post("", response_model=FileUploadResponse, status_code=201)
async def upload_file(
    file: UploadFile = FastAPIFile(...),
    convert: Optional[str] = Query(None, description="Target format: jpg, png or webp"),
    type_: Optional[str] = Query(None, alias="type", description="Deprecated, use convert"),
    resize: Optional[str] = Query(None, description="WIDTHxHEIGHT, WIDTH or xHEIGHT"),
    quality: Optional[str] = Query(None, description="Output quality percentage"),
    service: FileTransactionService = Depends(get_transaction_service),
    validator: FileValidationService = Depends(get_file_validator),
):
    """Verify, optionally transform, and store an uploaded file."""
    # Refuse oversized bodies before buffering them
    validator.check_size(file.size, 0)
    contents = await file.read()
    descriptor = validator.verify(file.filename or "", file.size, contents)
    options = TransformOptions.from_query(convert=convert, type_=type_, resize=resize, quality=quality)

    record = await service.upload(descriptor, options)

    return FileUploadResponse(
        name=record.name,
        display_name=record.display_name,
        media_type=record.media_type,
        byte_size=record.byte_size,
        url=record.storage_path,
    )


@router.get("", response_model=FileListResponse)
async def list_files(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: FileTransactionService = Depends(get_transaction_service),
):
    """List file records, newest first."""
    records = await service.metadata.list_records(limit, offset)
    total = await service.metadata.count()
    return FileListResponse(
        files=[FileResponseSchema.model_validate(r) for r in records],
        pagination=Pagination(total=total, limit=limit, offset=offset, has_more=offset + limit < total),
    )


@router.get("/stats", response_model=StorageStatsResponse)
async def storage_stats(
    service: FileTransactionService = Depends(get_transaction_service),
):
    """Totals per media type plus cleanup queue counters."""
    by_type = await service.metadata.storage_stats()
    cleanup = await service.cleanup_queue.get_stats()

    total_files = sum(s["count"] for s in by_type)
    total_size = sum(s["total_size"] for s in by_type)
    return {
        "summary": {
            "total_files": total_files,
            "total_size": total_size,
            "average_size": round(total_size / total_files) if total_files else 0,
        },
        "by_type": by_type,
        "cleanup": cleanup,
    }


@router.get("/{name}", response_model=FileResponseSchema)
async def get_file_metadata(
    name: str,
    service: FileTransactionService = Depends(get_transaction_service),
):
    """Get file metadata by name."""
    record = await service.metadata.find_by_name(name)
    if not record:
        raise HTTPException(status_code=404, detail=f"No file found with name: {name}")
    return record


@router.get("/{name}/download")
async def download_file(
    name: str,
    service: FileTransactionService = Depends(get_transaction_service),
):
    """Download a file by name."""
    record = await service.metadata.find_by_name(name)
    if not record:
        raise HTTPException(status_code=404, detail=f"No file found with name: {name}")
    if not await service.storage.exists(name):
        raise HTTPException(status_code=404, detail="File not found on disk")

    return FileResponse(
        path=service.storage.full_path(name),
        filename=record.display_name,
        media_type=record.media_type,
    )


@router.delete("/{name}", response_model=FileDeleteResponse)
async def delete_file(
    name: str,
    service: FileTransactionService = Depends(get_transaction_service),
):
    """Delete a file record and its bytes."""
    result = await service.delete(name)
    return FileDeleteResponse(
        name=result.name,
        display_name=result.display_name,
        deleted_at=result.deleted_at,
    )
