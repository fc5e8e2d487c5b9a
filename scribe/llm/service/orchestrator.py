# scribe/llm/service/orchestrator.py
"""
Provider orchestration for a single logical completion.

The retry/failover policy lives in ``next_transition``, a pure function
over the failover plan, so it can be exercised without any transport.
``ProviderOrchestrator`` drives it: build the plan, stream a route, classify
the failure, ask for the next transition, sleep if told to, repeat.

Routes within one provider (default model, then alternate model) are
contiguous in the plan, so "next route" and "next provider" are both
simple index moves.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from scribe.core.config import settings
from scribe.core.errors import (
    ConfigurationError,
    EmptyResultError,
    ModelNotFoundError,
    ProviderNetworkError,
    ProviderOverloadedError,
    ProvidersExhaustedError,
    ProviderStreamError,
    RequestCancelled,
    ScribeError,
    WireFormatError,
    brand_error_message,
)
from scribe.core.logger import get_logger
from scribe.llm.entity.completion import (
    AttemptStatus,
    CanonicalStreamEvent,
    CompletionRequest,
    CompletionResult,
    ContentDelta,
    Done,
    ProviderAttempt,
    StreamError,
    WorkerType,
)
from scribe.llm.service.prompts import prefix_long_form
from scribe.llm.service.provider.base_provider import BaseProvider
from scribe.llm.service.wire_format import WireFormatAdapter

logger = get_logger("ProviderOrchestrator")

EventCallback = Callable[[CanonicalStreamEvent], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


class CancelToken:
    """One per user-facing request; setting it stops the upstream call and the reader loop."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class OrchestratorState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    STREAMING = "streaming"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_OVER = "failed_over"
    GAVE_UP = "gave_up"
    CANCELLED = "cancelled"


class FailureKind(str, Enum):
    OVERLOAD = "overload"
    MODEL_UNAVAILABLE = "model_unavailable"
    NETWORK = "network"
    EMPTY = "empty"
    FORMAT = "format"
    PROVIDER = "provider"
    CONFIGURATION = "configuration"


@dataclass(frozen=True)
class Route:
    provider: str
    model: str
    alternate: bool = False
    # Non-primary providers get the length directive inlined into the prompt
    replay_prefix: bool = False


@dataclass(frozen=True)
class RetryPolicy:
    max_network_attempts: int = 3
    backoff_base: float = 1.0
    overload_retries: int = 1

    def backoff(self, attempt: int) -> float:
        return self.backoff_base * (2 ** (attempt - 1))


@dataclass(frozen=True)
class Transition:
    state: OrchestratorState
    route_index: Optional[int] = None
    delay: float = 0.0


def classify_failure(error: BaseException) -> FailureKind:
    if isinstance(error, ConfigurationError):
        return FailureKind.CONFIGURATION
    if isinstance(error, ProviderOverloadedError):
        return FailureKind.OVERLOAD
    if isinstance(error, ModelNotFoundError):
        return FailureKind.MODEL_UNAVAILABLE
    if isinstance(error, ProviderNetworkError):
        return FailureKind.NETWORK
    if isinstance(error, EmptyResultError):
        return FailureKind.EMPTY
    if isinstance(error, WireFormatError):
        return FailureKind.FORMAT
    return FailureKind.PROVIDER


def _fail_over(plan: Sequence[Route], index: int) -> Transition:
    current = plan[index].provider
    for j in range(index + 1, len(plan)):
        if plan[j].provider != current:
            return Transition(OrchestratorState.FAILED_OVER, j)
    return Transition(OrchestratorState.GAVE_UP)


def next_transition(
    plan: Sequence[Route],
    index: int,
    tries: int,
    failure: FailureKind,
    policy: RetryPolicy,
    content_emitted: bool = False,
) -> Transition:
    """
    Decide what follows a failed try on ``plan[index]``.

    ``tries`` counts calls already made on this route, including the one
    that just failed.
    """
    if failure is FailureKind.CONFIGURATION or content_emitted:
        return Transition(OrchestratorState.GAVE_UP)

    route = plan[index]
    if failure is FailureKind.NETWORK:
        if tries < policy.max_network_attempts:
            return Transition(OrchestratorState.FAILED_RETRYABLE, index, policy.backoff(tries))
        return _fail_over(plan, index)

    if failure in (FailureKind.OVERLOAD, FailureKind.MODEL_UNAVAILABLE):
        if failure is FailureKind.OVERLOAD and not route.alternate and tries <= policy.overload_retries:
            return Transition(OrchestratorState.FAILED_RETRYABLE, index, policy.backoff(tries))
        following = index + 1
        if following < len(plan) and plan[following].provider == route.provider:
            return Transition(OrchestratorState.FAILED_RETRYABLE, following)
        return _fail_over(plan, index)

    return _fail_over(plan, index)


@dataclass
class _Execution:
    request: CompletionRequest
    on_event: EventCallback
    cancel: CancelToken
    attempts: List[ProviderAttempt] = field(default_factory=list)
    emitted_deltas: int = 0
    terminal_sent: bool = False
    state: OrchestratorState = OrchestratorState.IDLE


class ProviderOrchestrator:
    """Runs one completion across models and providers with retry and failover."""

    def __init__(
        self,
        providers: Iterable[BaseProvider],
        primary: Optional[str] = None,
        fallbacks: Optional[Sequence[str]] = None,
        adapter: Optional[WireFormatAdapter] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.providers: Dict[str, BaseProvider] = {p.name: p for p in providers}
        self.primary = primary or settings.PRIMARY_PROVIDER
        self.fallbacks = list(fallbacks if fallbacks is not None else settings.fallback_providers)
        self.adapter = adapter or WireFormatAdapter()
        self.policy = policy or RetryPolicy(
            max_network_attempts=settings.MAX_NETWORK_ATTEMPTS,
            backoff_base=settings.BACKOFF_BASE_SECONDS,
            overload_retries=settings.OVERLOAD_RETRIES,
        )
        self._sleep = sleep
        self.provider_latency: Dict[str, float] = {}

    # Planning

    def _fallback_order(self, worker: WorkerType) -> List[str]:
        order = [name for name in self.fallbacks if name != self.primary]
        # Technical work reads better from the reasoning model
        if worker is WorkerType.TECHNICAL and "deepseek" in order:
            order.remove("deepseek")
            order.insert(0, "deepseek")
        return order

    def build_plan(self, request: CompletionRequest) -> List[Route]:
        primary = self.providers.get(self.primary)
        if primary is None or not primary.is_enabled():
            raise ConfigurationError(f"Primary provider '{self.primary}' is not configured")
        primary.validate_credentials()

        plan = [
            Route(primary.name, model, alternate=i > 0)
            for i, model in enumerate(primary.model_chain(request.target_model))
        ]
        for name in self._fallback_order(request.worker):
            provider = self.providers.get(name)
            if provider is None or not provider.is_enabled():
                logger.debug(f"fallback provider {name} not configured, skipping")
                continue
            try:
                provider.validate_credentials()
            except ConfigurationError as e:
                logger.warning(f"fallback provider {name} skipped: {e}")
                continue
            plan.extend(
                Route(provider.name, model, alternate=i > 0, replay_prefix=True)
                for i, model in enumerate(provider.model_chain())
            )
        return plan

    # Execution

    async def execute(
        self,
        request: CompletionRequest,
        on_event: EventCallback,
        cancel: Optional[CancelToken] = None,
    ) -> CompletionResult:
        """
        Stream ``request`` to ``on_event`` and return the accumulated result.

        Exactly one terminal event (Done or StreamError) is delivered unless
        the request is cancelled, in which case nothing more is delivered
        and ``RequestCancelled`` is raised.
        """
        cancel = cancel or CancelToken()
        execution = _Execution(request=request, on_event=on_event, cancel=cancel)
        run = asyncio.ensure_future(self._run(execution))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({run, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if run in done:
                return run.result()
            run.cancel()
            try:
                await run
            except (asyncio.CancelledError, RequestCancelled, ScribeError):
                pass
            self._mark_aborted(execution)
            logger.info(f"request cancelled after {execution.emitted_deltas} deltas")
            raise RequestCancelled()
        finally:
            waiter.cancel()
            if not run.done():
                run.cancel()

    async def _run(self, ex: _Execution) -> CompletionResult:
        try:
            plan = self.build_plan(ex.request)
            return await self._walk(ex, plan)
        except RequestCancelled:
            self._mark_aborted(ex)
            raise
        except ScribeError as e:
            ex.state = OrchestratorState.GAVE_UP
            await self._emit_terminal(ex, StreamError(message=brand_error_message(e), retryable=e.retryable))
            raise

    async def _walk(self, ex: _Execution, plan: List[Route]) -> CompletionResult:
        index, tries = 0, 0
        attempt: Optional[ProviderAttempt] = None
        last_error: Optional[ScribeError] = None

        while True:
            route = plan[index]
            if attempt is None:
                attempt = ProviderAttempt(provider=route.provider, model=route.model)
                ex.attempts.append(attempt)
            tries += 1
            attempt.tries = tries
            attempt.status = AttemptStatus.PENDING
            ex.state = OrchestratorState.ATTEMPTING
            logger.info(f"attempt {len(ex.attempts)}.{tries} provider={route.provider} model={route.model}")

            try:
                content, tokens = await self._stream_route(ex, route)
            except RequestCancelled:
                raise
            except ScribeError as e:
                error = e
            else:
                attempt.status = AttemptStatus.SUCCEEDED
                ex.state = OrchestratorState.SUCCEEDED
                await self._emit_terminal(ex, Done(tokens_used=tokens))
                return CompletionResult(
                    content=content, tokens_used=tokens, provider=route.provider, model=route.model, attempts=ex.attempts
                )

            attempt.status = AttemptStatus.FAILED
            attempt.http_status = getattr(error, "status_code", None)
            attempt.error = str(error)
            last_error = error
            failure = classify_failure(error)
            transition = next_transition(plan, index, tries, failure, self.policy, ex.emitted_deltas > 0)
            ex.state = transition.state
            logger.warning(
                f"provider={route.provider} model={route.model} failed ({failure.value}): {error} "
                f"-> {transition.state.value}"
            )

            if transition.state is OrchestratorState.GAVE_UP:
                if failure is FailureKind.CONFIGURATION or ex.emitted_deltas > 0:
                    raise error
                raise ProvidersExhaustedError(
                    f"All providers failed; last error: {last_error}",
                    context={"attempts": len(ex.attempts)},
                ) from error

            if transition.route_index != index:
                attempt, tries = None, 0
                index = transition.route_index
            if transition.delay:
                await self._sleep(transition.delay)
            if ex.cancel.cancelled:
                raise RequestCancelled()

    async def _stream_route(self, ex: _Execution, route: Route):
        provider = self.providers[route.provider]
        parser = self.adapter.parser(route.provider)
        prompt = None
        if route.replay_prefix and ex.request.replay_directive:
            prompt = prefix_long_form(ex.request.prompt_text, ex.request.length_hint)
        parts: List[str] = []
        started = time.perf_counter()
        done: Optional[Done] = None

        async for raw in provider.stream(ex.request, route.model, prompt):
            if ex.cancel.cancelled:
                raise RequestCancelled()
            event = parser.feed(raw)
            if event is None:
                continue
            if isinstance(event, ContentDelta):
                if not parts:
                    self.provider_latency[route.provider] = time.perf_counter() - started
                    ex.state = OrchestratorState.STREAMING
                parts.append(event.text)
                await self._emit(ex, event)
            elif isinstance(event, StreamError):
                if parser.format_error:
                    raise WireFormatError(event.message, context={"provider": route.provider})
                if event.retryable:
                    raise ProviderOverloadedError(event.message, provider=route.provider)
                raise ProviderStreamError(event.message, context={"provider": route.provider})
            elif isinstance(event, Done):
                done = event
                break

        if ex.cancel.cancelled:
            raise RequestCancelled()
        if done is None:
            done = parser.finish()
        content = "".join(parts)
        if not content.strip():
            raise EmptyResultError(f"No content received from {route.provider}")
        return content, done.tokens_used

    async def _emit(self, ex: _Execution, event: CanonicalStreamEvent) -> None:
        if ex.cancel.cancelled:
            raise RequestCancelled()
        if isinstance(event, ContentDelta):
            ex.emitted_deltas += 1
        await ex.on_event(event)

    async def _emit_terminal(self, ex: _Execution, event: CanonicalStreamEvent) -> None:
        if ex.terminal_sent or ex.cancel.cancelled:
            return
        ex.terminal_sent = True
        await ex.on_event(event)

    @staticmethod
    def _mark_aborted(ex: _Execution) -> None:
        ex.state = OrchestratorState.CANCELLED
        for attempt in ex.attempts:
            if attempt.status is AttemptStatus.PENDING:
                attempt.status = AttemptStatus.ABORTED

    def get_latency_report(self) -> Dict[str, float]:
        return dict(self.provider_latency)

    async def aclose(self) -> None:
        for provider in self.providers.values():
            await provider.aclose()

    def __repr__(self):
        return f"<ProviderOrchestrator primary={self.primary} fallbacks={self.fallbacks}>"
