# scribe/llm/service/completion_service.py
from typing import List, Optional

from scribe.core.logger import get_logger
from scribe.llm.entity.completion import CompletionRequest, CompletionResult, LengthHint, Message, WorkerType
from scribe.llm.service.length_intent import LengthIntentDetector, resolve_max_output_tokens
from scribe.llm.service.orchestrator import CancelToken, EventCallback, ProviderOrchestrator
from scribe.llm.service.prompts import build_system_prompt
from scribe.usage.entity.account import UsageKind, count_words
from scribe.usage.service.ledger import UsageLedger

logger = get_logger("CompletionService")


class CompletionService:
    """
    One user-facing completion: size it, check the account can afford
    it, stream it through the orchestrator, then settle usage.

    Usage is settled only after a successful, uncancelled run.
    """

    def __init__(
        self,
        orchestrator: ProviderOrchestrator,
        ledger: UsageLedger,
        detector: Optional[LengthIntentDetector] = None,
    ):
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.detector = detector or LengthIntentDetector()

    def build_request(
        self,
        message: str,
        system_prompt: str = "",
        conversation_history: Optional[List[Message]] = None,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: Optional[int] = None,
        target_word_count: Optional[int] = None,
        allow_long_outputs: bool = False,
        length_hint: Optional[LengthHint] = None,
        worker: WorkerType = WorkerType.SCHOLARLY,
    ) -> CompletionRequest:
        history = conversation_history or []
        hint = length_hint or self.detector.detect(message, history)
        if hint is not None:
            logger.debug(f"length hint {hint.min_words}-{hint.max_words} words")
        return CompletionRequest(
            prompt_text=message,
            system_directive=build_system_prompt(worker, hint, extra=system_prompt),
            conversation_history=history,
            target_model=model,
            temperature=temperature,
            max_output_tokens=resolve_max_output_tokens(max_output_tokens, hint, target_word_count, allow_long_outputs),
            length_hint=hint,
            worker=worker,
        )

    async def preflight(self, account_id: str, request: CompletionRequest) -> None:
        await self.ledger.preflight(
            account_id, {UsageKind.AI_MESSAGE: 1, UsageKind.PLAN_WORDS: count_words(request.prompt_text)}
        )

    async def complete(
        self,
        account_id: str,
        request: CompletionRequest,
        on_event: EventCallback,
        cancel: Optional[CancelToken] = None,
    ) -> CompletionResult:
        cancel = cancel or CancelToken()
        result = await self.orchestrator.execute(request, on_event, cancel)
        if cancel.cancelled:
            logger.info(f"completion for account={account_id} cancelled after success, not billed")
            return result

        input_words = count_words(request.prompt_text)
        output_words = count_words(result.content)
        await self.ledger.charge(
            account_id,
            {UsageKind.AI_MESSAGE: 1, UsageKind.PLAN_WORDS: input_words + output_words},
            clamp=True,
        )
        logger.info(
            f"completion account={account_id} provider={result.provider} model={result.model} "
            f"words_in={input_words} words_out={output_words} attempts={len(result.attempts)}"
        )
        return result
