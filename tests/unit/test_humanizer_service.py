import asyncio

import pytest
import pytest_asyncio

from scribe.core.errors import ProviderNetworkError, ProvidersExhaustedError, QuotaExceededError
from scribe.humanizer.service.humanizer_service import HumanizerService, analyze_text
from scribe.llm.service.provider.base_provider import BaseProvider
from scribe.usage.entity.account import Plan, count_words
from conftest import FakeProvider, anthropic_frames


def paragraphs(n, size=1200):
    return "\n\n".join((f"Paragraph {i} " + "lorem ipsum " * size)[:size].strip() for i in range(n))


class EchoProvider(BaseProvider):
    """Rewrites each chunk as an upper-cased copy, finishing in reverse order of arrival."""

    def __init__(self):
        self.name = "anthropic"
        self.key_prefix = ""
        super().__init__("test-key", "echo", None)
        self.seen = 0

    async def stream(self, request, model, prompt=None):
        self.seen += 1
        # later chunks finish first
        await asyncio.sleep(0.01 * (10 - self.seen))
        for frame in anthropic_frames(request.prompt_text.upper()):
            yield frame


@pytest_asyncio.fixture
async def premium(ledger):
    await ledger.set_plan("writer", Plan.PREMIUM)
    return ledger


@pytest.mark.asyncio
async def test_failed_chunk_falls_back_to_original(make_orchestrator, premium, recording_sleep):
    text = paragraphs(3)
    provider = FakeProvider(
        "anthropic",
        [
            anthropic_frames("first rewritten"),
            ProviderNetworkError("reset"),
            ProviderNetworkError("reset"),
            ProviderNetworkError("reset"),
            anthropic_frames("third rewritten"),
        ],
    )
    service = HumanizerService(
        make_orchestrator(provider), premium, max_chunk_chars=1500, concurrency=1, chunk_delay=0.5, sleep=recording_sleep
    )

    result = await service.humanize("writer", text)

    original = text.split("\n\n")
    assert result.chunk_count == 3
    assert result.failed_chunks == [1]
    assert result.text == "\n\n".join(["first rewritten", original[1], "third rewritten"])
    # orchestrator backoff then the pause between chunks
    assert recording_sleep.delays.count(0.5) == 2

    account = await premium.get_account("writer")
    billed = count_words(original[0]) + count_words(original[2])
    assert account.humanizer_words_used == billed
    assert account.plan_words_used == billed + 4


@pytest.mark.asyncio
async def test_nothing_rewritten_is_an_error_and_not_billed(make_orchestrator, premium):
    provider = FakeProvider("anthropic", [ProviderNetworkError("reset")] * 3)
    service = HumanizerService(make_orchestrator(provider), premium)

    with pytest.raises(ProvidersExhaustedError):
        await service.humanize("writer", "A small passage of text that nobody could rewrite.")

    account = await premium.get_account("writer")
    assert account.humanizer_words_used == 0
    assert account.plan_words_used == 0


@pytest.mark.asyncio
async def test_concurrent_rewrite_keeps_order(make_orchestrator, premium):
    text = paragraphs(4)
    service = HumanizerService(make_orchestrator(EchoProvider()), premium, max_chunk_chars=1500, concurrency=4)

    result = await service.humanize("writer", text)

    assert result.text == "\n\n".join(p.upper() for p in text.split("\n\n"))
    assert result.failed_chunks == []


@pytest.mark.asyncio
async def test_humanize_is_billed(make_orchestrator, premium):
    provider = FakeProvider("anthropic", [anthropic_frames("Short plain rewrite")])
    service = HumanizerService(make_orchestrator(provider), premium)

    result = await service.humanize("writer", "A small passage of text.")

    account = await premium.get_account("writer")
    assert account.humanizer_words_used == 5
    assert account.plan_words_used == 5 + result.output_words


@pytest.mark.asyncio
async def test_humanizer_requires_premium(make_orchestrator, ledger):
    provider = FakeProvider("anthropic")
    service = HumanizerService(make_orchestrator(provider), ledger)

    with pytest.raises(QuotaExceededError):
        await service.humanize("trial-user", "Some text to rewrite.")
    assert provider.calls == []


def test_analyze_flags_formulaic_text():
    text = (
        "Furthermore, the results are significant. Moreover, the data was collected. "
        "Additionally, the study was conducted. It is important to note that the model was tested. "
        "In conclusion, the findings underscore a pivotal shift."
    )
    report = analyze_text(text)

    assert report["aiDetected"] is True
    assert report["score"] > 30
    assert report["sentenceCount"] == 5
    assert any("transition" in i for i in report["indicators"])


def test_analyze_passes_varied_text():
    text = (
        "I missed the bus. So I walked the long way round, past the bakery that still smells of cardamom "
        "every Tuesday, and got in late. Nobody noticed."
    )
    report = analyze_text(text)

    assert report["aiDetected"] is False
    assert report["indicators"] == []


def test_analyze_empty_text():
    report = analyze_text("")
    assert report["score"] == 0
    assert report["sentenceCount"] == 0
