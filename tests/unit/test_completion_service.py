import pytest

from scribe.core.errors import (
    ProviderNetworkError,
    ProviderOverloadedError,
    ProvidersExhaustedError,
    QuotaExceededError,
    RequestCancelled,
)
from scribe.llm.entity.completion import ContentDelta, Done, LengthHint, StreamError
from scribe.llm.service.completion_service import CompletionService
from scribe.llm.service.orchestrator import CancelToken
from scribe.usage.entity.account import UsageKind
from conftest import FakeProvider, anthropic_frames, gemini_frames


class Sink:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)


def overloaded():
    return ProviderOverloadedError("anthropic returned HTTP 529", status_code=529, provider="anthropic")


@pytest.fixture
def service_for(make_orchestrator, ledger):
    def factory(*providers):
        return CompletionService(make_orchestrator(*providers), ledger)

    return factory


@pytest.mark.asyncio
async def test_success_after_failover_is_billed_once(service_for, ledger):
    anthropic = FakeProvider("anthropic", [overloaded(), overloaded(), overloaded()], alternate_model="claude-alt")
    gemini = FakeProvider("gemini", [gemini_frames("three short words")])
    service = service_for(anthropic, gemini)
    request = service.build_request("Summarize the Treaty of Westphalia")
    sink = Sink()

    result = await service.complete("acct-1", request, sink)

    assert result.provider == "gemini"
    assert len(result.attempts) == 3
    assert len(anthropic.calls) + len(gemini.calls) == 4
    account = await ledger.get_account("acct-1")
    assert account.ai_messages_used == 1
    assert account.plan_words_used == 5 + 3
    assert isinstance(sink.events[-1], Done)


@pytest.mark.asyncio
async def test_failed_completion_is_not_billed(service_for, ledger):
    anthropic = FakeProvider("anthropic", [ProviderNetworkError("reset")] * 3)
    service = service_for(anthropic)
    request = service.build_request("Write a haiku")
    sink = Sink()

    with pytest.raises(ProvidersExhaustedError):
        await service.complete("acct-1", request, sink)

    account = await ledger.get_account("acct-1")
    assert account.ai_messages_used == 0
    assert account.plan_words_used == 0
    assert isinstance(sink.events[-1], StreamError)


@pytest.mark.asyncio
async def test_cancelled_completion_is_not_billed(service_for, ledger):
    token = CancelToken()
    anthropic = FakeProvider("anthropic", [anthropic_frames("one", " two", " three")])
    service = service_for(anthropic)
    request = service.build_request("Write a haiku")

    async def sink(event):
        if isinstance(event, ContentDelta):
            token.cancel()

    with pytest.raises(RequestCancelled):
        await service.complete("acct-1", request, sink, token)

    account = await ledger.get_account("acct-1")
    assert account.ai_messages_used == 0


@pytest.mark.asyncio
async def test_preflight_blocks_exhausted_trial(service_for, ledger):
    service = service_for(FakeProvider("anthropic"))
    await ledger.charge("acct-1", {UsageKind.PLAN_WORDS: 1875})
    request = service.build_request("Write a haiku")

    with pytest.raises(QuotaExceededError):
        await service.preflight("acct-1", request)


def test_build_request_detects_length(service_for):
    service = service_for(FakeProvider("anthropic"))
    request = service.build_request("Write a 2000 word essay on coral bleaching")

    assert request.length_hint is not None
    assert request.length_hint.min_words == 2000
    assert request.max_output_tokens == 8192
    assert "at least 2000 words" in request.system_directive


def test_explicit_hint_wins(service_for):
    service = service_for(FakeProvider("anthropic"))
    hint = LengthHint(min_words=100, max_words=200)
    request = service.build_request("Write a 2000 word essay", length_hint=hint)
    assert request.length_hint == hint
