# scribe/llm/entity/completion.py
"""
Core value types of the completion layer.

CompletionRequest is frozen once built. Canonical stream events form a
closed union discriminated by ``type``; consumers dispatch on the class.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class LengthHint(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    min_words: int = Field(alias="minWords", ge=0)
    max_words: int = Field(alias="maxWords", ge=0)

    @model_validator(mode="after")
    def _ordered(self):
        if self.max_words < self.min_words:
            raise ValueError("maxWords must be >= minWords")
        return self


class WorkerType(str, Enum):
    SCHOLARLY = "scholarly"
    TECHNICAL = "technical"


class CompletionRequest(BaseModel):
    """A single logical completion, replayable against any provider."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    prompt_text: str
    system_directive: str = ""
    conversation_history: List[Message] = Field(default_factory=list)
    target_model: Optional[str] = None
    temperature: float = 0.7
    max_output_tokens: int = 8192
    length_hint: Optional[LengthHint] = None
    worker: WorkerType = WorkerType.SCHOLARLY
    # Inline the length directive when replaying on a fallback provider
    replay_directive: bool = True

    def messages(self, prompt_override: Optional[str] = None) -> List[dict]:
        """History plus the current user turn in chat-completion shape."""
        turns = [{"role": m.role, "content": m.content} for m in self.conversation_history]
        turns.append({"role": "user", "content": prompt_override if prompt_override is not None else self.prompt_text})
        return turns


class ContentDelta(BaseModel):
    type: Literal["content_delta"] = "content_delta"
    text: str


class Done(BaseModel):
    type: Literal["done"] = "done"
    tokens_used: int = 0


class StreamError(BaseModel):
    type: Literal["error"] = "error"
    message: str
    retryable: bool = False


CanonicalStreamEvent = Union[ContentDelta, Done, StreamError]


class AttemptStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class ProviderAttempt:
    provider: str
    model: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: AttemptStatus = AttemptStatus.PENDING
    http_status: Optional[int] = None
    tries: int = 0
    error: Optional[str] = None


@dataclass
class CompletionResult:
    content: str
    tokens_used: int
    provider: str
    model: str
    attempts: List[ProviderAttempt] = field(default_factory=list)
