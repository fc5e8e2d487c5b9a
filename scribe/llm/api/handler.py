# scribe/llm/api/handler.py
import asyncio
import json
from typing import AsyncGenerator, Set

from scribe.core.errors import RequestCancelled, ScribeError, brand_error_message
from scribe.core.logger import get_logger
from scribe.llm.api.dto import CompletionStreamDTO, ProviderInfo, ProviderListResponse
from scribe.llm.entity.completion import CanonicalStreamEvent, CompletionRequest, ContentDelta, Done, StreamError
from scribe.llm.service.completion_service import CompletionService
from scribe.llm.service.orchestrator import CancelToken, ProviderOrchestrator

logger = get_logger("CompletionHandler")

# keeps detached completion tasks alive until they finish
_background: Set[asyncio.Task] = set()


def format_sse(event: CanonicalStreamEvent) -> str:
    if isinstance(event, ContentDelta):
        payload = {"content": event.text}
    elif isinstance(event, Done):
        payload = {"done": True, "tokensUsed": event.tokens_used}
    else:
        payload = {"error": event.message}
    return f"data: {json.dumps(payload)}\n\n"


def build_completion_request(service: CompletionService, body: CompletionStreamDTO) -> CompletionRequest:
    return service.build_request(
        message=body.message,
        system_prompt=body.system_prompt,
        conversation_history=body.conversation_history,
        model=body.model,
        temperature=body.temperature,
        max_output_tokens=body.max_output_tokens,
        target_word_count=body.target_word_count,
        allow_long_outputs=body.allow_long_outputs,
        length_hint=body.length_hint,
        worker=body.worker,
    )


async def handle_completion_stream(
    service: CompletionService,
    account_id: str,
    request: CompletionRequest,
    cancel: CancelToken,
) -> AsyncGenerator[str, None]:
    """
    Bridge orchestrator callbacks to SSE lines.

    The completion runs in its own task feeding a queue. If the client goes
    away before a terminal event, the cancel token is fired and the task
    winds down without billing.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def on_event(event: CanonicalStreamEvent) -> None:
        await queue.put(event)

    async def run() -> None:
        try:
            await service.complete(account_id, request, on_event, cancel)
        except RequestCancelled:
            logger.info(f"stream cancelled for account={account_id}")
        except ScribeError as e:
            # terminal error event was already delivered by the orchestrator
            logger.warning(f"completion failed for account={account_id}: {e}")
        except Exception as e:
            logger.exception(f"unexpected completion failure for account={account_id}")
            await queue.put(StreamError(message=brand_error_message(e)))
        finally:
            await queue.put(None)

    task = asyncio.create_task(run())
    _background.add(task)
    task.add_done_callback(_background.discard)

    terminal_seen = False
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            if isinstance(event, (Done, StreamError)):
                if terminal_seen:
                    continue
                terminal_seen = True
            yield format_sse(event)
    finally:
        if not terminal_seen and not task.done():
            cancel.cancel()


async def list_providers(orchestrator: ProviderOrchestrator) -> ProviderListResponse:
    latency = orchestrator.get_latency_report()
    providers = []
    for name, provider in orchestrator.providers.items():
        seconds = latency.get(name)
        providers.append(
            ProviderInfo(
                name=name,
                latency_ms=int(seconds * 1000) if seconds else None,
                status="active" if provider.is_enabled() else "disabled",
                default_model=provider.default_model,
                alternate_model=provider.alternate_model,
            )
        )
    return ProviderListResponse(primary=orchestrator.primary, fallbacks=list(orchestrator.fallbacks), providers=providers)
