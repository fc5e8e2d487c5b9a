# scribe/batch/service/reconciler.py
import asyncio
import math
import time
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from scribe.batch.entity.batch import (
    TERMINAL_STATUSES,
    BatchCounts,
    BatchItem,
    BatchPollResult,
    BatchRecord,
    BatchStatus,
    BatchSubmitItem,
    ItemStatus,
)
from scribe.batch.repository.batch_store import BatchStore
from scribe.core.config import settings
from scribe.core.errors import BatchError, BatchNotFoundError, ScribeError
from scribe.core.logger import get_logger
from scribe.llm.service.wire_format import SucceededEnvelope, iter_jsonl, parse_batch_result
from scribe.usage.entity.account import count_words
from .sanitizer import error_placeholder, finalize_section
from .section_prompts import CLEANUP_INSTRUCTION, section_system_prompt, section_type
from .transport import BatchTransport, counts_from_remote, map_batch_status

logger = get_logger("BatchReconciler")

WORDS_PER_SECTION = 2500
MISSING_RESULT_ERROR = "No result returned for this request"


def estimate_processing_time(section_count: int) -> Dict[str, int]:
    return {
        "minMinutes": max(5, math.ceil(section_count / 2)),
        "maxMinutes": section_count * 2,
        "targetWords": section_count * WORDS_PER_SECTION,
    }


def render_document(items: Sequence[BatchItem]) -> str:
    """Join section outputs in order; failed sections become placeholders."""
    parts = []
    for index, item in enumerate(items, start=1):
        if item.status is ItemStatus.SUCCESS:
            parts.append(item.content)
        else:
            parts.append(error_placeholder(index, item.error or "Unknown error"))
    return "\n\n".join(parts)


def _counts_from_items(items: Sequence[BatchItem]) -> BatchCounts:
    failed = sum(1 for item in items if item.status is ItemStatus.ERROR)
    return BatchCounts(request_count=len(items), completed_count=len(items), failed_count=failed)


class BatchReconciler:
    """
    Submits bulk section prompts as one vendor batch and turns the
    result file back into exactly one BatchItem per submitted custom_id,
    in submission order.

    Tracker records live in the injected BatchStore from submit until the
    store's TTL expires; reconciled items are cached on the record so
    repeated polls of a finished batch do not re-download results.
    """

    def __init__(
        self,
        transport: BatchTransport,
        store: BatchStore,
        model: str = settings.BATCH_DEFAULT_MODEL,
        max_tokens: int = 8192,
        temperature: float = 0.7,
        min_content_chars: int = settings.BATCH_MIN_CONTENT_CHARS,
        empty_result_retry_delay: float = settings.BATCH_EMPTY_RESULT_RETRY_DELAY_SECONDS,
        poll_interval: float = settings.BATCH_POLL_INTERVAL_SECONDS,
        max_poll_seconds: float = settings.BATCH_MAX_POLL_SECONDS,
        max_consecutive_errors: int = settings.BATCH_MAX_CONSECUTIVE_ERRORS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.store = store
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.min_content_chars = min_content_chars
        self.empty_result_retry_delay = empty_result_retry_delay
        self.poll_interval = poll_interval
        self.max_poll_seconds = max_poll_seconds
        self.max_consecutive_errors = max_consecutive_errors
        self._sleep = sleep
        self._clock = clock

    def build_requests(
        self, items: Sequence[BatchSubmitItem], project_title: str, citation_style: str
    ) -> List[Dict[str, Any]]:
        requests = []
        for item in items:
            messages = [m.model_dump() for m in item.messages]
            first = messages[0]["content"]
            context = first[:300] + "..." if len(first) > 100 else first
            if messages[-1]["role"] == "user":
                messages[-1]["content"] = f"{messages[-1]['content']}\n\n{CLEANUP_INSTRUCTION}"
            else:
                messages.append({"role": "user", "content": CLEANUP_INSTRUCTION})

            requests.append(
                {
                    "custom_id": item.custom_id,
                    "params": {
                        "model": item.model or self.model,
                        "max_tokens": min(item.max_tokens or self.max_tokens, self.max_tokens),
                        "temperature": self.temperature,
                        "system": section_system_prompt(
                            section_type(item.custom_id), project_title, citation_style, context
                        ),
                        "messages": messages,
                    },
                }
            )
        return requests

    async def submit(
        self,
        items: Sequence[BatchSubmitItem],
        project_title: str = "",
        citation_style: str = "APA",
        project_type: Optional[str] = None,
    ) -> BatchRecord:
        if not items:
            raise BatchError("A batch needs at least one request")
        custom_ids = [item.custom_id for item in items]
        duplicates = sorted(cid for cid, n in Counter(custom_ids).items() if n > 1)
        if duplicates:
            raise BatchError("custom_id values must be unique", context={"duplicates": duplicates})

        remote = await self.transport.create(self.build_requests(items, project_title, citation_style))
        record = BatchRecord(
            batch_id=remote["id"],
            custom_ids=custom_ids,
            status=map_batch_status(remote.get("processing_status")),
            project_title=project_title,
            citation_style=citation_style,
            project_type=project_type,
            counts=counts_from_remote(remote, len(custom_ids)),
        )
        await self.store.set(record)
        logger.info(f"submitted batch id={record.batch_id} sections={len(custom_ids)} title={project_title!r}")
        return record

    async def get_record(self, batch_id: str) -> BatchRecord:
        record = await self.store.get(batch_id)
        if record is None:
            raise BatchNotFoundError(f"Batch {batch_id} not found", context={"batch_id": batch_id})
        return record

    async def poll(self, batch_id: str) -> BatchPollResult:
        record = await self.get_record(batch_id)
        if record.status in TERMINAL_STATUSES and record.items is not None:
            return self._result(record)

        remote = await self.transport.retrieve(batch_id)
        processing_status = remote.get("processing_status")
        status = map_batch_status(processing_status)
        record.counts = counts_from_remote(remote, record.request_count)

        if status is BatchStatus.FAILED:
            return await self._fail(record, f"Batch {processing_status}")
        if status is not BatchStatus.COMPLETED:
            record.status = status
            await self.store.set(record)
            return self._result(record)

        raw_results = await self._fetch_results(remote)
        if not raw_results:
            return await self._fail(record, "Batch completed with zero results")

        items = self.reconcile(record.custom_ids, raw_results)
        record.status = BatchStatus.COMPLETED
        record.items = items
        record.counts = _counts_from_items(items)
        await self.store.set(record)
        logger.info(
            f"batch id={batch_id} reconciled {len(items)} items "
            f"({record.counts.failed_count} failed, {len(raw_results)} raw results)"
        )
        return self._result(record)

    async def _fetch_results(self, remote: Dict[str, Any]) -> List[Dict[str, Any]]:
        raw_results = list(iter_jsonl(await self.transport.results(remote)))
        if not raw_results:
            # result files occasionally lag the ended status
            logger.warning(f"batch id={remote.get('id')} ended with no results, retrying once")
            await self._sleep(self.empty_result_retry_delay)
            raw_results = list(iter_jsonl(await self.transport.results(remote)))
        return raw_results

    async def _fail(self, record: BatchRecord, reason: str) -> BatchPollResult:
        logger.error(f"batch id={record.batch_id} failed: {reason}")
        record.status = BatchStatus.FAILED
        record.error = reason
        record.items = [
            BatchItem(custom_id=cid, status=ItemStatus.ERROR, error=reason) for cid in record.custom_ids
        ]
        record.counts = _counts_from_items(record.items)
        await self.store.set(record)
        return self._result(record)

    @staticmethod
    def _result(record: BatchRecord) -> BatchPollResult:
        items = record.items if record.status in TERMINAL_STATUSES else None
        return BatchPollResult(
            batch_id=record.batch_id, status=record.status, counts=record.counts, items=items, error=record.error
        )

    def reconcile(self, custom_ids: Sequence[str], raw_results: Sequence[Any]) -> List[BatchItem]:
        """
        Map raw result lines onto ``custom_ids``.

        The output has one item per submitted id in submission order. Ids
        with no result line get a synthesized error item; for repeated ids
        the first line wins; lines for ids never submitted are dropped.
        """
        expected = set(custom_ids)
        by_id: Dict[str, BatchItem] = {}
        for raw in raw_results:
            envelope = parse_batch_result(raw)
            cid = envelope.custom_id
            if not cid:
                logger.warning("dropping batch result without custom_id")
            elif cid not in expected:
                logger.warning(f"dropping batch result for unknown custom_id={cid}")
            elif cid in by_id:
                logger.warning(f"ignoring duplicate batch result for custom_id={cid}")
            else:
                by_id[cid] = self._to_item(envelope)

        missing = [cid for cid in custom_ids if cid not in by_id]
        if missing:
            logger.warning(f"synthesizing error items for {len(missing)} missing results: {missing}")
        return [
            by_id.get(cid) or BatchItem(custom_id=cid, status=ItemStatus.ERROR, error=MISSING_RESULT_ERROR)
            for cid in custom_ids
        ]

    def _to_item(self, envelope) -> BatchItem:
        if not isinstance(envelope, SucceededEnvelope):
            error = getattr(envelope, "error", None) or getattr(envelope, "reason", "Unknown error")
            return BatchItem(custom_id=envelope.custom_id, status=ItemStatus.ERROR, error=error)

        content, error = finalize_section(envelope.content, self.min_content_chars)
        if error:
            return BatchItem(
                custom_id=envelope.custom_id, status=ItemStatus.ERROR, tokens_used=envelope.tokens_used, error=error
            )
        return BatchItem(
            custom_id=envelope.custom_id,
            status=ItemStatus.SUCCESS,
            content=content,
            tokens_used=envelope.tokens_used,
            word_count=count_words(content),
        )

    async def wait_for_completion(self, batch_id: str) -> List[BatchItem]:
        deadline = self._clock() + self.max_poll_seconds
        consecutive_errors = 0
        while True:
            try:
                result = await self.poll(batch_id)
                consecutive_errors = 0
            except ScribeError as e:
                if not e.retryable:
                    raise
                consecutive_errors += 1
                if consecutive_errors >= self.max_consecutive_errors:
                    raise BatchError(
                        f"Batch polling failed after {consecutive_errors} consecutive errors",
                        context={"batch_id": batch_id},
                    ) from e
                delay = self.poll_interval * 2 ** (consecutive_errors - 1)
                logger.warning(f"poll error for batch id={batch_id} ({e}), backing off {delay}s")
                await self._sleep(delay)
                continue

            if result.status is BatchStatus.FAILED:
                raise BatchError(result.error or "Batch failed", context={"batch_id": batch_id})
            if not result.pending:
                return result.items
            if self._clock() >= deadline:
                raise BatchError("Batch processing timed out", context={"batch_id": batch_id})
            await self._sleep(self.poll_interval)

    async def get_batch_stats(self, batch_id: str) -> Dict[str, Any]:
        record = await self.get_record(batch_id)
        items = record.items or []
        succeeded = [item for item in items if item.status is ItemStatus.SUCCESS]
        total_words = sum(item.word_count for item in succeeded)
        return {
            "batchId": record.batch_id,
            "status": record.status.value,
            "requestCount": record.request_count,
            "completedCount": record.counts.completed_count,
            "failedCount": record.counts.failed_count,
            "successCount": len(succeeded),
            "totalWords": total_words,
            "totalTokens": sum(item.tokens_used for item in items),
            "averageWordsPerSection": round(total_words / len(succeeded)) if succeeded else 0,
            "estimate": estimate_processing_time(record.request_count),
        }
