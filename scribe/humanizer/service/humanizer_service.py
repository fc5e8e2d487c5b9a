# scribe/humanizer/service/humanizer_service.py
import asyncio
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from scribe.core.config import settings
from scribe.core.errors import ProvidersExhaustedError, ScribeError
from scribe.core.logger import get_logger
from scribe.llm.entity.completion import CanonicalStreamEvent, CompletionRequest
from scribe.llm.service.orchestrator import ProviderOrchestrator
from scribe.llm.service.prompts import HUMANIZE_PROMPT
from scribe.usage.entity.account import UsageKind, count_words, estimate_tokens
from scribe.usage.service.ledger import UsageLedger
from .chunk_splitter import Chunk, reassemble, split_into_chunks

logger = get_logger("HumanizerService")


@dataclass
class HumanizeResult:
    text: str
    chunk_count: int
    failed_chunks: List[int] = field(default_factory=list)
    input_words: int = 0
    output_words: int = 0


async def _discard(event: CanonicalStreamEvent) -> None:
    return None


class HumanizerService:
    """
    Rewrites long text chunk by chunk through the orchestrator.

    A chunk that cannot be rewritten is passed through unchanged, so the
    output always covers the whole input in the original order.
    """

    def __init__(
        self,
        orchestrator: ProviderOrchestrator,
        ledger: UsageLedger,
        max_chunk_chars: int = settings.HUMANIZER_MAX_CHUNK_CHARS,
        concurrency: int = settings.HUMANIZER_CONCURRENCY,
        chunk_delay: float = settings.HUMANIZER_CHUNK_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.max_chunk_chars = max_chunk_chars
        self.concurrency = max(1, concurrency)
        self.chunk_delay = chunk_delay
        self._sleep = sleep

    async def humanize(self, account_id: str, text: str, max_chunk_chars: Optional[int] = None) -> HumanizeResult:
        input_words = count_words(text)
        await self.ledger.preflight(
            account_id, {UsageKind.HUMANIZER_WORDS: input_words, UsageKind.PLAN_WORDS: input_words}
        )

        chunks = split_into_chunks(text, max_chunk_chars or self.max_chunk_chars)
        logger.info(f"humanizing {len(chunks)} chunks for account={account_id} words={input_words}")
        outputs = await self._rewrite_all(chunks)

        failed = [chunk.ordinal for chunk, (_, ok) in zip(chunks, outputs) if not ok]
        if chunks and len(failed) == len(chunks):
            raise ProvidersExhaustedError(
                "No chunk could be rewritten", context={"chunks": len(chunks), "account_id": account_id}
            )
        output = reassemble(chunks, [rewritten for rewritten, _ in outputs])

        # only rewritten chunks are billed
        billed_in = sum(count_words(chunk.text) for chunk, (_, ok) in zip(chunks, outputs) if ok)
        billed_out = sum(count_words(rewritten) for rewritten, ok in outputs if ok)
        await self.ledger.charge(
            account_id,
            {UsageKind.HUMANIZER_WORDS: billed_in, UsageKind.PLAN_WORDS: billed_in + billed_out},
            clamp=True,
        )
        return HumanizeResult(output, len(chunks), failed, input_words, count_words(output))

    async def _rewrite_all(self, chunks: List[Chunk]):
        if self.concurrency == 1:
            outputs = []
            for i, chunk in enumerate(chunks):
                if i and self.chunk_delay:
                    await self._sleep(self.chunk_delay)
                outputs.append(await self._rewrite(chunk))
            return outputs

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(chunk: Chunk):
            async with semaphore:
                return await self._rewrite(chunk)

        # gather keeps input order regardless of completion order
        return await asyncio.gather(*(bounded(chunk) for chunk in chunks))

    async def _rewrite(self, chunk: Chunk):
        request = CompletionRequest(
            prompt_text=chunk.text,
            system_directive=HUMANIZE_PROMPT,
            temperature=0.7,
            max_output_tokens=max(2048, estimate_tokens(chunk.text) * 2),
            replay_directive=False,
        )
        try:
            result = await self.orchestrator.execute(request, _discard)
        except ScribeError as e:
            logger.warning(f"chunk {chunk.ordinal} fell back to original text: {e}")
            return chunk.text, False
        rewritten = result.content.strip()
        if not rewritten:
            return chunk.text, False
        return rewritten, True


_AI_PHRASES = [
    (re.compile(r"\b(furthermore|moreover|additionally|consequently)\b", re.IGNORECASE),
     "Stock transition words; vary how ideas connect"),
    (re.compile(r"\b(it is important to note|it should be noted|it is worth mentioning)\b", re.IGNORECASE),
     "Formal filler phrases; say the point directly"),
    (re.compile(r"\b(in conclusion|to summarize|in summary)\b", re.IGNORECASE),
     "Formulaic conclusion starters"),
    (re.compile(r"\b(delve|tapestry|multifaceted|pivotal|underscores?)\b", re.IGNORECASE),
     "Vocabulary typical of generated text"),
]
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_PASSIVE = re.compile(r"\b(is|are|was|were|be|been|being)\s+\w+ed\b", re.IGNORECASE)


def analyze_text(text: str) -> dict:
    """
    Heuristic score (0..100) for how machine-written a passage reads.

    Three signals contribute: stock AI phrases (up to 50 points), uniform
    sentence lengths (up to 30) and a high passive-voice ratio (up to 20).
    """
    indicators: List[str] = []

    phrase_hits = 0
    for pattern, indicator in _AI_PHRASES:
        found = len(pattern.findall(text))
        if found:
            phrase_hits += found
            indicators.append(indicator)
    phrase_score = min(phrase_hits / 10, 1) * 50

    sentences = [s for s in _SENTENCE_END.split(text.strip()) if s.strip()]
    lengths = [len(s.split()) for s in sentences]
    uniformity_score = 0.0
    if len(lengths) >= 3:
        mean = sum(lengths) / len(lengths)
        spread = (sum((n - mean) ** 2 for n in lengths) / len(lengths)) ** 0.5
        variation = spread / mean if mean else 0
        if variation < 0.35:
            uniformity_score = (0.35 - variation) / 0.35 * 30
            indicators.append("Sentence lengths are very uniform; mix short and long sentences")

    passive_ratio = len(_PASSIVE.findall(text)) / len(sentences) if sentences else 0
    passive_score = min(passive_ratio / 0.5, 1) * 20 if passive_ratio > 0.2 else 0.0
    if passive_score:
        indicators.append("Frequent passive voice; prefer active constructions")

    score = round(phrase_score + uniformity_score + passive_score)
    return {
        "aiDetected": score > 30,
        "score": score,
        "indicators": indicators,
        "sentenceCount": len(sentences),
        "passiveRatio": round(passive_ratio, 2),
    }
