import json

import pytest

from scribe.llm.entity.completion import ContentDelta, Done, StreamError
from scribe.llm.service.wire_format import (
    AnthropicStreamParser,
    FailedEnvelope,
    GeminiStreamParser,
    JsonObjectFramer,
    OpenAIStreamParser,
    SucceededEnvelope,
    UnknownEnvelope,
    WireFormatAdapter,
    decode_sse_line,
    iter_jsonl,
    parse_batch_result,
)
from conftest import anthropic_frames, gemini_frames, openai_frames


def _run(parser, frames):
    events = [parser.feed(f) for f in frames]
    return [e for e in events if e is not None]


def test_anthropic_stream_normalizes_to_deltas_then_done():
    events = _run(AnthropicStreamParser(), anthropic_frames("Hel", "lo"))
    assert events == [ContentDelta(text="Hel"), ContentDelta(text="lo"), Done(tokens_used=42)]


def test_anthropic_overloaded_error_is_retryable():
    event = AnthropicStreamParser().feed(
        {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}
    )
    assert event == StreamError(message="Overloaded", retryable=True)


def test_gemini_stream_reports_candidate_tokens():
    parser = GeminiStreamParser()
    events = _run(parser, gemini_frames("a", "b", output_tokens=7))
    assert events == [ContentDelta(text="a"), ContentDelta(text="b")]
    assert parser.finish() == Done(tokens_used=7)


def test_gemini_blocked_prompt():
    event = GeminiStreamParser().feed({"promptFeedback": {"blockReason": "SAFETY"}})
    assert isinstance(event, StreamError)
    assert not event.retryable


def test_openai_stream_with_done_sentinel():
    events = _run(OpenAIStreamParser(), openai_frames("x", "y", output_tokens=3))
    assert events == [ContentDelta(text="x"), ContentDelta(text="y"), Done(tokens_used=3)]


def test_token_estimate_when_usage_missing():
    parser = OpenAIStreamParser()
    parser.feed({"choices": [{"delta": {"content": "abcdefgh"}}]})
    assert parser.finish() == Done(tokens_used=2)


@pytest.mark.parametrize(
    "frame",
    [
        "not json at all",
        {"choices": "nope"},
        {"choices": [{"delta": {"content": 12}}]},
        {"unexpected": True},
    ],
)
def test_malformed_frames_become_non_retryable_errors(frame):
    parser = OpenAIStreamParser()
    event = parser.feed(frame)
    assert isinstance(event, StreamError)
    assert event.retryable is False
    assert parser.format_error is True


def test_parser_ignores_frames_after_terminal():
    parser = AnthropicStreamParser()
    parser.feed({"type": "message_stop"})
    assert parser.feed({"type": "content_block_delta", "delta": {"text": "late"}}) is None


def test_adapter_unknown_provider():
    event = WireFormatAdapter().normalize("mystery", {"x": 1})
    assert isinstance(event, StreamError)


def test_adapter_register_custom_parser():
    adapter = WireFormatAdapter()
    adapter.register("compatible", OpenAIStreamParser)
    assert adapter.normalize("compatible", {"choices": [{"delta": {"content": "ok"}}]}) == ContentDelta(text="ok")


def test_decode_sse_line():
    assert decode_sse_line('data: {"a": 1}') == {"a": 1}
    assert decode_sse_line("data: [DONE]") == "[DONE]"
    assert decode_sse_line(": keep-alive") is None
    assert decode_sse_line("event: message_start") is None
    assert decode_sse_line("data: {broken") == "{broken"


def test_json_object_framer_handles_split_frames_and_braces_in_strings():
    framer = JsonObjectFramer()
    payload = json.dumps([{"text": "a {curly} \"quote\""}, {"n": 2}])
    frames = []
    for i in range(0, len(payload), 5):
        frames.extend(framer.feed(payload[i:i + 5]))
    assert frames == [{"text": 'a {curly} "quote"'}, {"n": 2}]
    assert framer.pending == ""


def _succeeded(custom_id, text, tokens=9):
    return {
        "custom_id": custom_id,
        "result": {
            "type": "succeeded",
            "message": {"content": [{"type": "text", "text": text}], "usage": {"output_tokens": tokens}},
        },
    }


def test_modern_envelope():
    envelope = parse_batch_result(_succeeded("s1", "body"))
    assert envelope == SucceededEnvelope("s1", "body", 9, "modern")


def test_modern_error_and_expired_envelopes():
    errored = parse_batch_result(
        {"custom_id": "s2", "result": {"type": "errored", "error": {"type": "invalid_request", "message": "bad"}}}
    )
    assert errored == FailedEnvelope("s2", "bad", "modern")
    expired = parse_batch_result({"custom_id": "s3", "result": {"type": "expired"}})
    assert isinstance(expired, FailedEnvelope)


def test_legacy_envelopes():
    success = parse_batch_result({"custom_id": "a", "type": "succeeded", "message": {"content": "plain"}})
    assert success == SucceededEnvelope("a", "plain", 0, "legacy")
    failure = parse_batch_result({"custom_id": "b", "type": "error", "error": "boom"})
    assert failure == FailedEnvelope("b", "boom", "legacy_error")


def test_response_wrapper_envelope():
    ok = parse_batch_result(
        {"custom_id": "c", "response": {"status_code": 200, "body": {"content": [{"type": "text", "text": "hi"}]}}}
    )
    assert isinstance(ok, SucceededEnvelope) and ok.content == "hi"
    bad = parse_batch_result(
        {"custom_id": "d", "response": {"status_code": 500, "body": {"error": {"message": "server"}}}}
    )
    assert bad == FailedEnvelope("d", "server", "response")


def test_unrecognized_envelope():
    envelope = parse_batch_result({"custom_id": "e", "something": "else"})
    assert envelope == UnknownEnvelope("e", "Unrecognized batch result structure")
    assert parse_batch_result(["not", "a", "dict"]).custom_id == ""


def test_iter_jsonl_skips_bad_lines():
    body = "\n".join([json.dumps({"a": 1}), "{not json", "", json.dumps([1, 2]), json.dumps({"b": 2})])
    assert list(iter_jsonl(body)) == [{"a": 1}, {"b": 2}]
