"""
Document Routes

Create, fetch and delete tenant documents. Creation returns as soon as the
document is stored; indexing completes asynchronously and is reflected in
the document's `status`.
"""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from .dependencies import get_document_service, limited_tenant
from .models import DocumentRequest, DocumentResponse
from ..documents.service import DocumentService
from ..tenants import TenantContext

router = APIRouter(prefix="/api/v1/documents", tags=["documents"])


@router.post(
    "",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a document and enqueue it for indexing",
)
async def create_document(
    req: DocumentRequest,
    tenant: Annotated[TenantContext, Depends(limited_tenant)],
    service: Annotated[DocumentService, Depends(get_document_service)],
) -> DocumentResponse:
    """
    Store a new document for the calling tenant.

    The response carries `status=INDEXING`; the document becomes searchable
    once the indexing worker has processed it.
    """
    return await service.create(tenant, req.title, req.content, req.metadata)


@router.get(
    "/{document_id}",
    response_model=DocumentResponse,
    summary="Fetch a document by id",
)
async def get_document(
    document_id: uuid.UUID,
    tenant: Annotated[TenantContext, Depends(limited_tenant)],
    service: Annotated[DocumentService, Depends(get_document_service)],
) -> DocumentResponse:
    return await service.get(document_id, tenant)


@router.delete(
    "/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a document",
)
async def delete_document(
    document_id: uuid.UUID,
    tenant: Annotated[TenantContext, Depends(limited_tenant)],
    service: Annotated[DocumentService, Depends(get_document_service)],
) -> Response:
    await service.delete(document_id, tenant)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
