# =============================================================================
# Document Vault API — List and Delete a Tenant's Files
# =============================================================================
#
# ENDPOINTS:
#   GET    /documents — one row per uploaded file: chunk count, latest upload
#   DELETE /documents — {"fileName": ...} removes one file's chunks;
#                       {"deleteAll": true} or ?reset=true empties the vault
#
# Both operate only on the caller's own chunks. Deleting something that is
# already gone returns deletedCount 0, not an error.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from lumenfin.api.deps import get_chunk_store, get_tenant_id
from lumenfin.models.requests import DeleteDocumentsRequest
from lumenfin.models.responses import DeleteResponse, DocumentListResponse, DocumentSummary
from lumenfin.services.chunk_store import ChunkStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Documents"])


@router.get(
    "/documents",
    response_model=DocumentListResponse,
    summary="List the caller's uploaded documents",
)
async def list_documents(
    user_id: str = Depends(get_tenant_id),
    store: ChunkStore = Depends(get_chunk_store),
) -> DocumentListResponse:
    files = await store.list_files(user_id)
    return DocumentListResponse(
        documents=[
            DocumentSummary(
                file_name=f.file_name,
                chunk_count=f.chunk_count,
                uploaded_at=f.uploaded_at,
            )
            for f in files
        ],
        total=len(files),
    )


@router.delete(
    "/documents",
    response_model=DeleteResponse,
    summary="Delete one document, or reset the whole vault",
)
async def delete_documents(
    body: DeleteDocumentsRequest | None = Body(default=None),
    reset: bool = Query(default=False, description="Delete every document in the vault"),
    user_id: str = Depends(get_tenant_id),
    store: ChunkStore = Depends(get_chunk_store),
) -> DeleteResponse:
    body = body or DeleteDocumentsRequest()

    if reset or body.delete_all:
        deleted = await store.delete_by_tenant(user_id)
        logger.info("Vault reset for user=%s: %d chunks deleted", user_id, deleted)
        return DeleteResponse(deleted_count=deleted, reset=True)

    if not body.file_name:
        raise HTTPException(
            status_code=400,
            detail="fileName is required (or set deleteAll / ?reset=true).",
        )

    deleted = await store.delete_by_tenant_and_file(user_id, body.file_name)
    logger.info(
        "Deleted '%s' for user=%s: %d chunks", body.file_name, user_id, deleted,
    )
    return DeleteResponse(deleted_count=deleted, file_name=body.file_name)
