# scribe/llm/service/provider/gemini.py
from typing import Any, AsyncIterator, Optional

import httpx

from scribe.core.config import settings
from scribe.core.errors import ProviderNetworkError
from scribe.core.logger import get_logger
from scribe.llm.entity.completion import CompletionRequest
from scribe.llm.service.wire_format import JsonObjectFramer, decode_sse_line
from .base_provider import BaseProvider, http_status_error

logger = get_logger("GeminiProvider")


class GeminiProvider(BaseProvider):
    """Handles Google Gemini models over the REST streaming endpoint."""

    name = "gemini"
    key_prefix = "AIza"
    model_prefix = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        alternate_model: Optional[str] = None,
        endpoint: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            api_key if api_key is not None else settings.GEMINI_API_KEY,
            default_model or settings.GEMINI_DEFAULT_MODEL,
            alternate_model,
        )
        self.endpoint = (endpoint or settings.GEMINI_ENDPOINT).rstrip("/")
        self._transport = transport

    def _payload(self, request: CompletionRequest, prompt: Optional[str]) -> dict:
        contents = [
            {"role": "model" if m["role"] == "assistant" else "user", "parts": [{"text": m["content"]}]}
            for m in request.messages(prompt)
        ]
        payload = {
            "contents": contents,
            "generationConfig": {
                "temperature": float(request.temperature),
                "maxOutputTokens": int(request.max_output_tokens),
            },
        }
        if request.system_directive:
            payload["systemInstruction"] = {"parts": [{"text": request.system_directive}]}
        return payload

    async def stream(self, request: CompletionRequest, model: str, prompt: Optional[str] = None) -> AsyncIterator[Any]:
        self.validate_credentials()
        url = f"{self.endpoint}/v1beta/models/{model}:streamGenerateContent"
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        timeout = httpx.Timeout(settings.REQUEST_TIMEOUT_SECONDS, connect=10.0)

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST", url, params={"alt": "sse"}, json=self._payload(request, prompt), headers=headers
                ) as resp:
                    if resp.status_code != 200:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        logger.error(f"Gemini API error model={model} status={resp.status_code}")
                        raise http_status_error(self.name, resp.status_code, body)

                    # Accept both SSE and a raw JSON array body
                    if "text/event-stream" in resp.headers.get("content-type", ""):
                        async for line in resp.aiter_lines():
                            frame = decode_sse_line(line)
                            if frame is not None:
                                yield frame
                    else:
                        framer = JsonObjectFramer()
                        async for text in resp.aiter_text():
                            for frame in framer.feed(text):
                                yield frame
                        if framer.pending:
                            yield framer.pending
        except httpx.TimeoutException as e:
            raise ProviderNetworkError(f"gemini request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ProviderNetworkError(f"gemini connection failed: {e}") from e
