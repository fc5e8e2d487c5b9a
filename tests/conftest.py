"""
Shared fixtures for the completion core tests.

Providers and the batch transport are replaced with in-process fakes
that replay scripted outcomes, and every sleep is a recorded no-op, so
nothing here touches the network or waits on a clock.
"""

import os
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

# Keep real credentials from a developer .env out of the test run
for _key in ("ANTHROPIC_API_KEY", "GEMINI_API_KEY", "DEEPSEEK_API_KEY", "REDIS_URL"):
    os.environ[_key] = ""

import pytest

from scribe.batch.repository.batch_store import InMemoryBatchStore
from scribe.batch.service.transport import BatchTransport
from scribe.llm.entity.completion import CompletionRequest
from scribe.llm.service.orchestrator import ProviderOrchestrator, RetryPolicy
from scribe.llm.service.provider.base_provider import BaseProvider
from scribe.usage.repository.usage_store import InMemoryUsageStore
from scribe.usage.service.ledger import UsageLedger


def anthropic_frames(*texts: str, output_tokens: int = 42) -> List[Dict[str, Any]]:
    frames: List[Dict[str, Any]] = [
        {"type": "message_start", "message": {"usage": {"input_tokens": 12, "output_tokens": 1}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    ]
    frames += [{"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": t}} for t in texts]
    frames += [
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": output_tokens}},
        {"type": "message_stop"},
    ]
    return frames


def gemini_frames(*texts: str, output_tokens: int = 30) -> List[Dict[str, Any]]:
    frames = [{"candidates": [{"content": {"role": "model", "parts": [{"text": t}]}}]} for t in texts]
    frames.append({"candidates": [{"finishReason": "STOP"}], "usageMetadata": {"candidatesTokenCount": output_tokens}})
    return frames


def openai_frames(*texts: str, output_tokens: int = 20) -> List[Any]:
    frames: List[Any] = [{"choices": [{"index": 0, "delta": {"content": t}}]} for t in texts]
    frames.append({"choices": [], "usage": {"completion_tokens": output_tokens}})
    frames.append("[DONE]")
    return frames


class FakeProvider(BaseProvider):
    """
    Replays one scripted outcome per ``stream`` call. An outcome is an
    exception (raised before any frame) or a list of frames, where any
    frame may itself be an exception raised mid-stream.
    """

    def __init__(
        self,
        name: str,
        script: Sequence[Any] = (),
        default_model: Optional[str] = None,
        alternate_model: Optional[str] = None,
        api_key: Optional[str] = "test-key",
    ):
        self.name = name
        self.key_prefix = ""
        super().__init__(api_key, default_model or f"{name}-default", alternate_model)
        self.script = list(script)
        self.calls: List[Dict[str, Any]] = []

    async def stream(self, request: CompletionRequest, model: str, prompt: Optional[str] = None):
        self.calls.append({"model": model, "prompt": prompt, "request": request})
        outcome = self.script.pop(0) if self.script else []
        if isinstance(outcome, BaseException):
            raise outcome
        for frame in outcome:
            if isinstance(frame, BaseException):
                raise frame
            yield frame


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeBatchTransport(BatchTransport):
    """Vendor batch API stand-in; ``remote`` and ``bodies`` are mutated by tests."""

    def __init__(self, batch_id: str = "msgbatch_test"):
        self.batch_id = batch_id
        self.created: List[List[Dict[str, Any]]] = []
        self.remote: Dict[str, Any] = {"id": batch_id, "processing_status": "in_progress", "request_counts": {}}
        self.bodies: List[str] = []
        self.results_calls = 0
        self.retrieve_errors: List[BaseException] = []

    async def create(self, requests):
        self.created.append(requests)
        self.remote["request_counts"] = {"processing": len(requests)}
        return dict(self.remote)

    async def retrieve(self, batch_id):
        if self.retrieve_errors:
            raise self.retrieve_errors.pop(0)
        return dict(self.remote)

    async def results(self, remote):
        self.results_calls += 1
        return self.bodies.pop(0) if self.bodies else ""


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def make_orchestrator(recording_sleep):
    def factory(*providers: FakeProvider, fallbacks: Optional[Sequence[str]] = None) -> ProviderOrchestrator:
        names = [p.name for p in providers]
        return ProviderOrchestrator(
            providers,
            primary=names[0],
            fallbacks=list(fallbacks) if fallbacks is not None else names[1:],
            policy=RetryPolicy(max_network_attempts=3, backoff_base=1.0, overload_retries=1),
            sleep=recording_sleep,
        )

    return factory


@pytest.fixture
def usage_store():
    return InMemoryUsageStore()


@pytest.fixture
def ledger(usage_store):
    return UsageLedger(usage_store, today=lambda: date(2024, 6, 1))


@pytest.fixture
def batch_store():
    return InMemoryBatchStore()


@pytest.fixture
def batch_transport():
    return FakeBatchTransport()
