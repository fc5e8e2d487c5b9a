# scribe/llm/api/dto.py
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from scribe.llm.entity.completion import LengthHint, Message, WorkerType


class CompletionStreamDTO(BaseModel):
    """Body of POST /completion/stream"""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    system_prompt: str = Field("", alias="systemPrompt")
    conversation_history: List[Message] = Field(default_factory=list, alias="conversationHistory")
    model: Optional[str] = None
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_output_tokens: Optional[int] = Field(None, alias="maxOutputTokens", gt=0)
    target_word_count: Optional[int] = Field(None, alias="targetWordCount", gt=0)
    allow_long_outputs: bool = Field(False, alias="allowLongOutputs")
    length_hint: Optional[LengthHint] = Field(None, alias="lengthHint")
    worker: WorkerType = WorkerType.SCHOLARLY


class ProviderInfo(BaseModel):
    name: str
    latency_ms: Optional[int]
    status: str
    default_model: str
    alternate_model: Optional[str] = None


class ProviderListResponse(BaseModel):
    primary: str
    fallbacks: List[str]
    providers: List[ProviderInfo]
