# scribe/llm/service/provider/deepseek.py
from typing import Any, AsyncIterator, Optional

import openai
from openai import AsyncOpenAI

from scribe.core.config import settings
from scribe.core.errors import ProviderNetworkError
from scribe.core.logger import get_logger
from scribe.llm.entity.completion import CompletionRequest
from .base_provider import BaseProvider, http_status_error

logger = get_logger("DeepSeekProvider")

DEEPSEEK_MAX_TOKENS = 8000


class DeepSeekProvider(BaseProvider):
    """Handles DeepSeek API integration over the OpenAI-compatible endpoint."""

    name = "deepseek"
    key_prefix = "sk-"
    model_prefix = "deepseek"

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        alternate_model: Optional[str] = "deepseek-chat",
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(
            api_key if api_key is not None else settings.DEEPSEEK_API_KEY,
            default_model or settings.DEEPSEEK_DEFAULT_MODEL,
            alternate_model,
        )
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=settings.DEEPSEEK_BASE_URL,
                max_retries=0,
                timeout=settings.REQUEST_TIMEOUT_SECONDS,
            )
        return self._client

    async def stream(self, request: CompletionRequest, model: str, prompt: Optional[str] = None) -> AsyncIterator[Any]:
        self.validate_credentials()
        messages = request.messages(prompt)
        if request.system_directive:
            messages = [{"role": "system", "content": request.system_directive}] + messages

        try:
            chunks = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=0.2,
                max_tokens=min(request.max_output_tokens, DEEPSEEK_MAX_TOKENS),
                stream=True,
            )
            async for chunk in chunks:
                yield chunk.model_dump()
        except openai.APIStatusError as e:
            logger.error(f"DeepSeek API error model={model} status={e.status_code}: {e.message}")
            raise http_status_error(self.name, e.status_code, e.message) from e
        except openai.APIConnectionError as e:
            logger.warning(f"DeepSeek connection error model={model}: {e}")
            raise ProviderNetworkError(f"deepseek connection failed: {e}") from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
