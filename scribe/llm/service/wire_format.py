# scribe/llm/service/wire_format.py
"""
Normalization of provider wire formats into canonical stream events.

Streaming frames arrive as decoded JSON objects (or the literal ``[DONE]``
sentinel). Each provider gets a small stateful ``StreamParser`` that turns
frames into ``ContentDelta`` / ``Done`` / ``StreamError`` and keeps the
token usage it has seen so far. Batch results are matched against an
ordered list of envelope shapes; the first shape that fits wins and
anything left over becomes ``UnknownEnvelope``.

Nothing in this module raises on malformed input.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from scribe.core.logger import get_logger, truncate
from scribe.llm.entity.completion import CanonicalStreamEvent, ContentDelta, Done, StreamError

logger = get_logger("WireFormatAdapter")

DONE_SENTINEL = "[DONE]"
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN) if text else 0


def _dig(obj: Any, *path: Union[str, int]) -> Any:
    """Walk nested dicts/lists; returns None as soon as the path breaks."""
    current = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
    return current


# Streaming


class StreamParser:
    """Per-stream state for one provider response."""

    provider = "unknown"

    def __init__(self):
        self.output_tokens: Optional[int] = None
        self.content_chars = 0
        self.finished = False
        self.format_error = False

    def feed(self, raw: Any) -> Optional[CanonicalStreamEvent]:
        if self.finished:
            return None
        if raw == DONE_SENTINEL:
            return self._done()
        if not isinstance(raw, dict):
            return self._malformed(raw, f"expected object, got {type(raw).__name__}")
        try:
            event = self._parse(raw)
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            return self._malformed(raw, str(e))
        if isinstance(event, ContentDelta):
            self.content_chars += len(event.text)
        elif isinstance(event, StreamError):
            self.finished = True
        return event

    def finish(self) -> Done:
        """Terminal event for transports that close without an explicit stop frame."""
        return self._done()

    def _done(self) -> Done:
        self.finished = True
        tokens = self.output_tokens
        if tokens is None:
            tokens = math.ceil(self.content_chars / CHARS_PER_TOKEN)
        return Done(tokens_used=tokens)

    def _malformed(self, raw: Any, reason: str) -> StreamError:
        self.format_error = True
        logger.warning(f"{self.provider} malformed frame ({reason}): {truncate(raw)}")
        return StreamError(message=f"Malformed {self.provider} stream frame: {reason}", retryable=False)

    def _parse(self, raw: Dict[str, Any]) -> Optional[CanonicalStreamEvent]:
        raise NotImplementedError


class AnthropicStreamParser(StreamParser):
    provider = "anthropic"

    def _parse(self, raw):
        event_type = raw.get("type")
        if event_type == "content_block_delta":
            text = _dig(raw, "delta", "text")
            if text is None:
                # input_json_delta / thinking deltas carry no user-visible text
                return None
            if not isinstance(text, str):
                return self._malformed(raw, "delta.text is not a string")
            return ContentDelta(text=text) if text else None
        if event_type == "message_delta":
            tokens = _dig(raw, "usage", "output_tokens")
            if isinstance(tokens, int):
                self.output_tokens = tokens
            return None
        if event_type == "message_start":
            tokens = _dig(raw, "message", "usage", "output_tokens")
            if isinstance(tokens, int):
                self.output_tokens = tokens
            return None
        if event_type == "message_stop":
            return self._done()
        if event_type == "error":
            message = _dig(raw, "error", "message") or "Anthropic streaming error"
            error_type = _dig(raw, "error", "type") or ""
            return StreamError(message=str(message), retryable=error_type in ("overloaded_error", "rate_limit_error"))
        if event_type in ("ping", "content_block_start", "content_block_stop"):
            return None
        if event_type is None:
            return self._malformed(raw, "missing type")
        logger.debug(f"ignoring anthropic event type={event_type}")
        return None


class GeminiStreamParser(StreamParser):
    provider = "gemini"

    def _parse(self, raw):
        if "error" in raw:
            error = raw.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            return StreamError(message=message or "Gemini streaming error", retryable=code in (429, 503))

        tokens = _dig(raw, "usageMetadata", "candidatesTokenCount")
        if isinstance(tokens, int):
            self.output_tokens = tokens

        block_reason = _dig(raw, "promptFeedback", "blockReason")
        if block_reason:
            return StreamError(message=f"Prompt blocked: {block_reason}", retryable=False)

        candidates = raw.get("candidates")
        if candidates is None:
            return None if "usageMetadata" in raw else self._malformed(raw, "missing candidates")
        if not isinstance(candidates, list):
            return self._malformed(raw, "candidates is not a list")
        parts = _dig(candidates, 0, "content", "parts") or []
        texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        text = "".join(texts)
        return ContentDelta(text=text) if text else None


class OpenAIStreamParser(StreamParser):
    """OpenAI-compatible chat completion chunks (DeepSeek speaks this too)."""

    provider = "openai"

    def _parse(self, raw):
        if raw.get("error"):
            message = _dig(raw, "error", "message") or str(raw["error"])
            return StreamError(message=message, retryable=False)

        tokens = _dig(raw, "usage", "completion_tokens")
        if isinstance(tokens, int):
            self.output_tokens = tokens

        choices = raw.get("choices")
        if choices is None:
            return None if "usage" in raw else self._malformed(raw, "missing choices")
        if not isinstance(choices, list):
            return self._malformed(raw, "choices is not a list")
        if not choices:
            return None
        content = _dig(choices, 0, "delta", "content")
        if content is not None and not isinstance(content, str):
            return self._malformed(raw, "delta.content is not a string")
        return ContentDelta(text=content) if content else None


class DeepSeekStreamParser(OpenAIStreamParser):
    provider = "deepseek"


class WireFormatAdapter:
    """Registry of stream parsers keyed by provider id."""

    def __init__(self):
        self._parsers: Dict[str, Callable[[], StreamParser]] = {
            "anthropic": AnthropicStreamParser,
            "gemini": GeminiStreamParser,
            "openai": OpenAIStreamParser,
            "deepseek": DeepSeekStreamParser,
        }

    def register(self, provider_id: str, factory: Callable[[], StreamParser]) -> None:
        self._parsers[provider_id] = factory

    def parser(self, provider_id: str) -> StreamParser:
        factory = self._parsers.get(provider_id)
        if factory is None:
            raise KeyError(f"No wire format registered for provider '{provider_id}'")
        return factory()

    def normalize(self, provider_id: str, raw_event: Any) -> Optional[CanonicalStreamEvent]:
        """Single-frame normalization; frames without user-visible meaning yield None."""
        if provider_id not in self._parsers:
            return StreamError(message=f"Unknown provider '{provider_id}'", retryable=False)
        return self.parser(provider_id).feed(raw_event)


# Transport framing


def decode_sse_line(line: str) -> Optional[Any]:
    """
    Decode one line of an SSE (or JSON-lines) body.

    Returns the decoded object, the DONE sentinel, or None for blank,
    comment and ``event:`` lines. Undecodable payloads come back as the
    raw string so the parser can report them.
    """
    line = line.strip()
    if not line or line.startswith(":") or line.startswith("event:") or line.startswith("id:"):
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
    if line == DONE_SENTINEL:
        return DONE_SENTINEL
    try:
        return json.loads(line)
    except ValueError:
        return line


class JsonObjectFramer:
    """
    Extracts complete top-level JSON objects from a chunked JSON array
    stream (``[{...},\\n{...}]``), tracking strings and escapes so braces
    inside text do not confuse the depth count.
    """

    def __init__(self):
        self._buffer = ""

    def feed(self, chunk: str) -> List[Any]:
        self._buffer += chunk
        frames: List[Any] = []
        depth = 0
        start = -1
        in_string = False
        escaped = False
        consumed = 0
        for i, ch in enumerate(self._buffer):
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                if depth == 0:
                    start = i
                depth += 1
            elif ch == "}" and depth > 0:
                depth -= 1
                if depth == 0 and start >= 0:
                    text = self._buffer[start:i + 1]
                    try:
                        frames.append(json.loads(text))
                    except ValueError:
                        frames.append(text)
                    consumed = i + 1
                    start = -1
        self._buffer = self._buffer[consumed:]
        return frames

    @property
    def pending(self) -> str:
        return self._buffer.strip(" \n\r\t,]")


# Batch envelopes


@dataclass(frozen=True)
class SucceededEnvelope:
    custom_id: str
    content: str
    tokens_used: int
    shape: str


@dataclass(frozen=True)
class FailedEnvelope:
    custom_id: str
    error: str
    shape: str


@dataclass(frozen=True)
class UnknownEnvelope:
    custom_id: str
    reason: str
    shape: str = "unknown"


ProviderEnvelope = Union[SucceededEnvelope, FailedEnvelope, UnknownEnvelope]


def _message_text(message: Any) -> Optional[str]:
    content = _dig(message, "content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return None
    texts = [b.get("text") for b in content if isinstance(b, dict) and b.get("type", "text") == "text" and isinstance(b.get("text"), str)]
    return "\n".join(texts)


def _message_tokens(message: Any) -> int:
    tokens = _dig(message, "usage", "output_tokens")
    return tokens if isinstance(tokens, int) else 0


def _error_text(error: Any, fallback: str) -> str:
    if isinstance(error, str):
        return error
    message = _dig(error, "message") or _dig(error, "error", "message")
    return str(message) if message else fallback


def _match_modern(custom_id: str, raw: Dict[str, Any]) -> Optional[ProviderEnvelope]:
    result = raw.get("result")
    if not isinstance(result, dict) or "type" not in result:
        return None
    result_type = result.get("type")
    if result_type == "succeeded":
        text = _message_text(result.get("message"))
        if text is None:
            return FailedEnvelope(custom_id, "Succeeded result without message content", "modern")
        return SucceededEnvelope(custom_id, text, _message_tokens(result.get("message")), "modern")
    if result_type in ("errored", "error"):
        return FailedEnvelope(custom_id, _error_text(result.get("error"), "Request errored"), "modern")
    if result_type in ("canceled", "cancelled"):
        return FailedEnvelope(custom_id, "Request was canceled", "modern")
    if result_type == "expired":
        return FailedEnvelope(custom_id, "Request expired before processing", "modern")
    return FailedEnvelope(custom_id, f"Unknown result type: {result_type}", "modern")


def _match_legacy_success(custom_id: str, raw: Dict[str, Any]) -> Optional[ProviderEnvelope]:
    if raw.get("type") != "succeeded" or not isinstance(raw.get("message"), dict):
        return None
    text = _message_text(raw["message"])
    if text is None:
        return FailedEnvelope(custom_id, "Succeeded result without message content", "legacy")
    return SucceededEnvelope(custom_id, text, _message_tokens(raw["message"]), "legacy")


def _match_legacy_error(custom_id: str, raw: Dict[str, Any]) -> Optional[ProviderEnvelope]:
    if raw.get("type") not in ("errored", "error") or "error" not in raw:
        return None
    return FailedEnvelope(custom_id, _error_text(raw["error"], "Request errored"), "legacy_error")


def _match_response_wrapper(custom_id: str, raw: Dict[str, Any]) -> Optional[ProviderEnvelope]:
    response = raw.get("response")
    if not isinstance(response, dict):
        return None
    body = response.get("body") if isinstance(response.get("body"), dict) else response
    status = response.get("status_code")
    if isinstance(status, int) and status >= 400:
        return FailedEnvelope(custom_id, _error_text(body.get("error"), f"HTTP {status}"), "response")
    text = _message_text(body)
    if text is None:
        return None
    return SucceededEnvelope(custom_id, text, _message_tokens(body), "response")


def _match_bare_error(custom_id: str, raw: Dict[str, Any]) -> Optional[ProviderEnvelope]:
    if not raw.get("error"):
        return None
    return FailedEnvelope(custom_id, _error_text(raw["error"], "Request errored"), "bare_error")


ENVELOPE_MATCHERS = (
    _match_modern,
    _match_legacy_success,
    _match_legacy_error,
    _match_response_wrapper,
    _match_bare_error,
)


def parse_batch_result(raw: Any) -> ProviderEnvelope:
    """Match one batch result line against the known envelope shapes in order."""
    if not isinstance(raw, dict):
        logger.warning(f"batch result is not an object: {truncate(raw)}")
        return UnknownEnvelope("", "Batch result is not an object")
    custom_id = raw.get("custom_id")
    custom_id = custom_id if isinstance(custom_id, str) else ""
    for matcher in ENVELOPE_MATCHERS:
        try:
            envelope = matcher(custom_id, raw)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"envelope matcher {matcher.__name__} failed for {custom_id}: {e}")
            continue
        if envelope is not None:
            return envelope
    logger.warning(f"unrecognized batch result structure keys={sorted(raw.keys())} raw={truncate(raw)}")
    return UnknownEnvelope(custom_id, "Unrecognized batch result structure")


def iter_jsonl(body: str) -> Iterator[Dict[str, Any]]:
    """Yield each decodable object line; bad lines are logged and skipped."""
    for number, line in enumerate(body.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except ValueError as e:
            logger.warning(f"skipping undecodable batch line {number}: {e} raw={truncate(line)}")
            continue
        if isinstance(obj, dict):
            yield obj
        else:
            logger.warning(f"skipping non-object batch line {number}: {truncate(obj)}")
