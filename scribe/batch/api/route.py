# scribe/batch/api/route.py
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Request

from scribe.batch.api.dto import (
    BatchDocumentResponse,
    BatchStatusResponse,
    BatchSubmitDTO,
    BatchSubmitResponse,
)
from scribe.batch.entity.batch import BatchStatus, ItemStatus
from scribe.batch.service.reconciler import WORDS_PER_SECTION, BatchReconciler, render_document
from scribe.core.logger import get_logger

batch_router = APIRouter(prefix="/batch", tags=["Batch"])
logger = get_logger("BatchRouter")


def get_batch_reconciler(request: Request) -> BatchReconciler:
    """Dependency to get the batch reconciler from app.state."""
    reconciler = getattr(request.app.state, "batch_reconciler", None)
    if reconciler is None:
        raise HTTPException(status_code=503, detail="Batch processing is not available")
    return reconciler


@batch_router.post("", response_model=BatchSubmitResponse)
async def submit_batch(body: BatchSubmitDTO, reconciler: BatchReconciler = Depends(get_batch_reconciler)):
    """Submit one prompt per section as a single asynchronous batch."""
    record = await reconciler.submit(
        [req.to_item() for req in body.requests],
        project_title=body.project_title,
        citation_style=body.citation_style,
        project_type=body.project_type,
    )
    return BatchSubmitResponse(
        batch_id=record.batch_id,
        status=record.status.value,
        request_count=record.request_count,
        project_title=record.project_title,
        citation_style=record.citation_style,
        target_word_count=record.request_count * WORDS_PER_SECTION,
        estimated_completion=datetime.now(timezone.utc) + timedelta(minutes=record.request_count),
    )


@batch_router.get("/{batch_id}", response_model=BatchStatusResponse, response_model_exclude_none=True)
async def get_batch(batch_id: str, reconciler: BatchReconciler = Depends(get_batch_reconciler)):
    result = await reconciler.poll(batch_id)
    return BatchStatusResponse.from_poll(result)


@batch_router.get("/{batch_id}/stats")
async def get_batch_stats(batch_id: str, reconciler: BatchReconciler = Depends(get_batch_reconciler)):
    return await reconciler.get_batch_stats(batch_id)


@batch_router.get("/{batch_id}/document", response_model=BatchDocumentResponse)
async def get_batch_document(batch_id: str, reconciler: BatchReconciler = Depends(get_batch_reconciler)):
    """Assembled markdown for a completed batch; failed sections appear as placeholders."""
    result = await reconciler.poll(batch_id)
    if result.status is not BatchStatus.COMPLETED:
        raise HTTPException(status_code=409, detail=f"Batch is {result.status.value}, not completed")
    record = await reconciler.get_record(batch_id)
    return BatchDocumentResponse(
        id=batch_id,
        project_title=record.project_title,
        content=render_document(result.items),
        section_count=len(result.items),
        failed_sections=sum(1 for item in result.items if item.status is ItemStatus.ERROR),
    )
