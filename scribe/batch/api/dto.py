from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from scribe.batch.entity.batch import BatchItem, BatchMessage, BatchPollResult, BatchSubmitItem, ItemStatus


class BatchRequestBody(BaseModel):
    model: Optional[str] = None
    max_tokens: Optional[int] = Field(None, gt=0)
    messages: List[BatchMessage] = Field(min_length=1)


class BatchRequestDTO(BaseModel):
    custom_id: str = Field(min_length=1, max_length=64)
    body: BatchRequestBody

    def to_item(self) -> BatchSubmitItem:
        return BatchSubmitItem(
            custom_id=self.custom_id,
            messages=self.body.messages,
            model=self.body.model,
            max_tokens=self.body.max_tokens,
        )


class BatchSubmitDTO(BaseModel):
    """Body of POST /batch"""

    model_config = ConfigDict(populate_by_name=True)

    requests: List[BatchRequestDTO] = Field(min_length=1)
    project_title: str = Field("", alias="projectTitle")
    citation_style: str = Field("APA", alias="citationStyle")
    project_type: Optional[str] = Field(None, alias="projectType")


class BatchSubmitResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_id: str = Field(alias="batchId")
    status: str
    request_count: int = Field(alias="requestCount")
    project_title: str = Field(alias="projectTitle")
    citation_style: str = Field(alias="citationStyle")
    target_word_count: int = Field(alias="targetWordCount")
    estimated_completion: datetime = Field(alias="estimatedCompletion")


class BatchResultDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    content: str
    status: ItemStatus
    tokens: int
    word_count: int = Field(alias="wordCount")
    error: Optional[str] = None

    @classmethod
    def from_item(cls, item: BatchItem) -> "BatchResultDTO":
        return cls(
            id=item.custom_id,
            content=item.content,
            status=item.status,
            tokens=item.tokens_used,
            word_count=item.word_count,
            error=item.error,
        )


class BatchStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: str
    results: Optional[List[BatchResultDTO]] = None
    request_count: int = Field(alias="requestCount")
    completed_count: int = Field(alias="completedCount")
    failed_count: int = Field(alias="failedCount")
    error: Optional[str] = None

    @classmethod
    def from_poll(cls, result: BatchPollResult) -> "BatchStatusResponse":
        results = None
        if result.items is not None:
            results = [BatchResultDTO.from_item(item) for item in result.items]
        return cls(
            id=result.batch_id,
            status=result.status.value,
            results=results,
            request_count=result.counts.request_count,
            completed_count=result.counts.completed_count,
            failed_count=result.counts.failed_count,
            error=result.error,
        )


class BatchDocumentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    project_title: str = Field(alias="projectTitle")
    content: str
    section_count: int = Field(alias="sectionCount")
    failed_sections: int = Field(alias="failedSections")
