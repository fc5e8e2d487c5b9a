# scribe/batch/entity/batch.py
"""
Batch job models.

A BatchRecord is the tracker for one submitted batch. It lives in a
BatchStore for the lifetime of the batch (submission until results are
read) and keeps the submitted custom_ids in order, which is what lets
results be reconciled 1:1 against the input.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (BatchStatus.COMPLETED, BatchStatus.FAILED)


class ItemStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class BatchMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class BatchSubmitItem(BaseModel):
    custom_id: str = Field(min_length=1, max_length=64)
    messages: List[BatchMessage] = Field(min_length=1)
    model: Optional[str] = None
    max_tokens: Optional[int] = None

    @classmethod
    def from_prompt(cls, custom_id: str, prompt: str) -> "BatchSubmitItem":
        return cls(custom_id=custom_id, messages=[BatchMessage(role="user", content=prompt)])


class BatchItem(BaseModel):
    custom_id: str
    status: ItemStatus = ItemStatus.PENDING
    content: str = ""
    tokens_used: int = 0
    word_count: int = 0
    error: Optional[str] = None


class BatchCounts(BaseModel):
    request_count: int = 0
    completed_count: int = 0
    failed_count: int = 0


class BatchRecord(BaseModel):
    batch_id: str
    custom_ids: List[str]
    status: BatchStatus = BatchStatus.PENDING
    project_title: str = ""
    citation_style: str = "APA"
    project_type: Optional[str] = None
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    counts: BatchCounts = Field(default_factory=BatchCounts)
    items: Optional[List[BatchItem]] = None
    error: Optional[str] = None

    @property
    def request_count(self) -> int:
        return len(self.custom_ids)


class BatchPollResult(BaseModel):
    """``items`` is None while the batch is still pending/processing."""

    batch_id: str
    status: BatchStatus
    counts: BatchCounts
    items: Optional[List[BatchItem]] = None
    error: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.items is None
