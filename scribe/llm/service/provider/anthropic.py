# scribe/llm/service/provider/anthropic.py
from typing import Any, AsyncIterator, Optional

import anthropic
from anthropic import AsyncAnthropic

from scribe.core.config import settings
from scribe.core.errors import ProviderNetworkError
from scribe.core.logger import get_logger
from scribe.llm.entity.completion import CompletionRequest
from .base_provider import BaseProvider, http_status_error

logger = get_logger("AnthropicProvider")

# in-stream error events arrive on an HTTP 200 response
STREAM_ERROR_STATUSES = {
    "overloaded_error": 529,
    "rate_limit_error": 429,
    "not_found_error": 404,
    "authentication_error": 401,
    "api_error": 500,
}


def effective_status(error: anthropic.APIStatusError) -> int:
    body = error.body if isinstance(error.body, dict) else {}
    detail = body.get("error") if isinstance(body.get("error"), dict) else body
    return STREAM_ERROR_STATUSES.get(detail.get("type"), error.status_code)


class AnthropicProvider(BaseProvider):
    """Handles Claude (Anthropic) models."""

    name = "anthropic"
    key_prefix = "sk-ant-"
    model_prefix = "claude"

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        alternate_model: Optional[str] = None,
        client: Optional[AsyncAnthropic] = None,
    ):
        super().__init__(
            api_key if api_key is not None else settings.ANTHROPIC_API_KEY,
            default_model or settings.ANTHROPIC_DEFAULT_MODEL,
            alternate_model or settings.ANTHROPIC_ALTERNATE_MODEL,
        )
        self._client = client

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            # Retries are owned by the orchestrator, not the SDK.
            self._client = AsyncAnthropic(
                api_key=self.api_key,
                base_url=settings.ANTHROPIC_BASE_URL,
                max_retries=0,
                timeout=settings.REQUEST_TIMEOUT_SECONDS,
            )
        return self._client

    async def stream(self, request: CompletionRequest, model: str, prompt: Optional[str] = None) -> AsyncIterator[Any]:
        self.validate_credentials()
        params = {
            "model": model,
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
            "messages": request.messages(prompt),
            "stream": True,
        }
        if request.system_directive:
            params["system"] = request.system_directive

        try:
            events = await self.client.messages.create(**params)
            async with events:
                async for event in events:
                    yield event.model_dump()
        except anthropic.APIStatusError as e:
            status = effective_status(e)
            logger.error(f"Anthropic API error model={model} status={e.status_code} effective={status}: {e.message}")
            raise http_status_error(self.name, status, e.message) from e
        except anthropic.APIConnectionError as e:
            logger.warning(f"Anthropic connection error model={model}: {e}")
            raise ProviderNetworkError(f"anthropic connection failed: {e}") from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
