from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest

from scribe.batch.service.transport import AnthropicBatchTransport, counts_from_remote
from scribe.core.errors import (
    BatchError,
    ConfigurationError,
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderOverloadedError,
)

BATCHES_URL = "https://api.anthropic.com/v1/messages/batches"
RESULTS_URL = "https://api.anthropic.com/v1/messages/batches/msgbatch_1/results"


class StubBatch:
    def __init__(self, data):
        self.id = data["id"]
        self.data = data

    def model_dump(self, **kwargs):
        return self.data


def status_error(cls, status):
    response = httpx.Response(status, request=httpx.Request("POST", BATCHES_URL))
    return cls("rejected", response=response, body={"type": "error", "error": {"type": "x", "message": "rejected"}})


def make_transport(create=None, retrieve=None, handler=None, api_key="sk-ant-test"):
    client = SimpleNamespace(
        messages=SimpleNamespace(batches=SimpleNamespace(create=AsyncMock(**(create or {})), retrieve=AsyncMock(**(retrieve or {}))))
    )
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler or (lambda request: httpx.Response(200))))
    return AnthropicBatchTransport(api_key=api_key, client=client, http_client=http), client


@pytest.mark.asyncio
async def test_create_returns_plain_dict():
    remote = {"id": "msgbatch_1", "processing_status": "in_progress", "request_counts": {"processing": 2}}
    transport, client = make_transport(create={"return_value": StubBatch(remote)})

    assert await transport.create([{"custom_id": "a", "params": {}}]) == remote
    assert client.messages.batches.create.await_args.kwargs == {"requests": [{"custom_id": "a", "params": {}}]}


@pytest.mark.asyncio
async def test_create_bad_request_is_a_batch_error():
    transport, _ = make_transport(create={"side_effect": status_error(anthropic.BadRequestError, 400)})

    with pytest.raises(BatchError) as caught:
        await transport.create([])
    assert caught.value.message == "Invalid batch request format"


@pytest.mark.asyncio
async def test_retrieve_overload():
    transport, _ = make_transport(retrieve={"side_effect": status_error(anthropic.APIStatusError, 529)})

    with pytest.raises(ProviderOverloadedError):
        await transport.retrieve("msgbatch_1")


@pytest.mark.asyncio
async def test_retrieve_connection_error():
    error = anthropic.APIConnectionError(request=httpx.Request("GET", BATCHES_URL))
    transport, _ = make_transport(retrieve={"side_effect": error})

    with pytest.raises(ProviderNetworkError):
        await transport.retrieve("msgbatch_1")


@pytest.mark.asyncio
async def test_missing_key_fails_fast():
    transport, client = make_transport(api_key="")

    with pytest.raises(ConfigurationError):
        await transport.create([])
    client.messages.batches.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_results_download_sends_key_and_version():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, text='{"custom_id": "a"}\n')

    transport, _ = make_transport(handler=handler)

    body = await transport.results({"id": "msgbatch_1", "results_url": RESULTS_URL})

    assert body == '{"custom_id": "a"}\n'
    assert str(seen[0].url) == RESULTS_URL
    assert seen[0].headers["x-api-key"] == "sk-ant-test"
    assert seen[0].headers["anthropic-version"] == "2023-06-01"


@pytest.mark.asyncio
async def test_results_without_url():
    transport, _ = make_transport()

    with pytest.raises(BatchError):
        await transport.results({"id": "msgbatch_1", "results_url": None})


@pytest.mark.asyncio
@pytest.mark.parametrize("status,expected", [(500, ProviderHTTPError), (429, ProviderOverloadedError)])
async def test_results_non_200(status, expected):
    transport, _ = make_transport(handler=lambda request: httpx.Response(status, text="boom"))

    with pytest.raises(expected):
        await transport.results({"id": "msgbatch_1", "results_url": RESULTS_URL})


@pytest.mark.asyncio
async def test_results_transport_failure():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    transport, _ = make_transport(handler=handler)

    with pytest.raises(ProviderNetworkError):
        await transport.results({"id": "msgbatch_1", "results_url": RESULTS_URL})


def test_counts_from_remote():
    counts = counts_from_remote(
        {"request_counts": {"succeeded": 3, "errored": 1, "canceled": 1, "expired": 0, "processing": 2}}, 7
    )
    assert (counts.request_count, counts.completed_count, counts.failed_count) == (7, 5, 2)
