import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from main import app, wire_services
from scribe.batch.service.reconciler import BatchReconciler
from scribe.core.errors import ProviderOverloadedError
from scribe.usage.entity.account import UsageKind
from conftest import FakeProvider, anthropic_frames, gemini_frames

HEADERS = {"X-Account-Id": "acct-42"}
SECTION = "## Method\n\n" + "Samples were collected weekly from twelve monitoring wells across both basins. " * 3


def sse_payloads(body: str):
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


@pytest.fixture
def providers():
    return {
        "anthropic": FakeProvider("anthropic", alternate_model="claude-alt"),
        "gemini": FakeProvider("gemini"),
    }


@pytest.fixture
def client(providers, make_orchestrator, usage_store, batch_store, batch_transport, recording_sleep):
    orchestrator = make_orchestrator(providers["anthropic"], providers["gemini"])
    reconciler = BatchReconciler(batch_transport, batch_store, sleep=recording_sleep)
    wire_services(app, orchestrator, usage_store, reconciler)
    return TestClient(app)


def test_stream_emits_content_then_done(client, providers):
    providers["anthropic"].script = [anthropic_frames("Hello", " there", output_tokens=7)]

    response = client.post("/completion/stream", json={"message": "Say hello"}, headers=HEADERS)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert sse_payloads(response.text) == [
        {"content": "Hello"},
        {"content": " there"},
        {"done": True, "tokensUsed": 7},
    ]


def test_stream_fails_over_and_bills_once(client, providers):
    overloaded = ProviderOverloadedError("anthropic returned HTTP 529", status_code=529, provider="anthropic")
    providers["anthropic"].script = [overloaded, overloaded, overloaded]
    providers["gemini"].script = [gemini_frames("Recovered answer")]

    response = client.post("/completion/stream", json={"message": "Say hello"}, headers=HEADERS)
    events = sse_payloads(response.text)

    assert events[-1]["done"] is True
    assert [e for e in events if "error" in e] == []

    usage = client.get("/usage", headers=HEADERS).json()["data"]
    assert usage["used"]["aiMessages"] == 1
    assert usage["used"]["planWords"] == 2 + 2


def test_stream_error_is_branded(client, providers):
    overloaded = ProviderOverloadedError("anthropic returned HTTP 529", status_code=529, provider="anthropic")
    providers["anthropic"].script = [overloaded] * 3
    providers["gemini"].script = [overloaded] * 3

    response = client.post("/completion/stream", json={"message": "Say hello"}, headers=HEADERS)
    events = sse_payloads(response.text)

    assert len(events) == 1
    assert "error" in events[0]
    assert "anthropic" not in events[0]["error"].lower()
    assert client.get("/usage", headers=HEADERS).json()["data"]["used"]["aiMessages"] == 0


def test_stream_requires_account_header(client):
    response = client.post("/completion/stream", json={"message": "Say hello"})
    assert response.status_code == 401
    assert response.json() == {"status": False, "message": "Missing X-Account-Id header"}


def test_exhausted_trial_gets_402(client):
    asyncio.run(app.state.usage_ledger.charge("acct-42", {UsageKind.PLAN_WORDS: 1875}))

    response = client.post("/completion/stream", json={"message": "Say hello"}, headers=HEADERS)

    assert response.status_code == 402
    body = response.json()
    assert body["status"] is False
    assert "free trial has ended" in body["message"]
    assert body["error_code"] == "QUOTA_EXCEEDED"


def test_providers_listing(client):
    data = client.get("/completion/providers").json()["data"]
    assert data["primary"] == "anthropic"
    assert data["fallbacks"] == ["gemini"]
    assert [p["name"] for p in data["providers"]] == ["anthropic", "gemini"]


def test_batch_lifecycle(client, batch_transport):
    body = {
        "projectTitle": "Groundwater",
        "requests": [
            {"custom_id": "method_1", "body": {"messages": [{"role": "user", "content": "Write the methods"}]}},
            {"custom_id": "analysis_2", "body": {"messages": [{"role": "user", "content": "Write the analysis"}]}},
        ],
    }
    submitted = client.post("/batch", json=body)
    assert submitted.status_code == 200
    assert submitted.json()["batchId"] == "msgbatch_test"
    assert submitted.json()["requestCount"] == 2
    assert submitted.json()["targetWordCount"] == 5000

    pending = client.get("/batch/msgbatch_test").json()
    assert pending["status"] == "processing"
    assert "results" not in pending

    assert client.get("/batch/msgbatch_test/document").status_code == 409

    batch_transport.remote["processing_status"] = "ended"
    batch_transport.bodies = [
        json.dumps(
            {
                "custom_id": "method_1",
                "result": {"type": "succeeded", "message": {"content": [{"type": "text", "text": SECTION}]}},
            }
        )
    ]
    done = client.get("/batch/msgbatch_test").json()

    assert done["status"] == "completed"
    assert [r["id"] for r in done["results"]] == ["method_1", "analysis_2"]
    assert [r["status"] for r in done["results"]] == ["success", "error"]
    assert done["failedCount"] == 1

    document = client.get("/batch/msgbatch_test/document").json()
    assert document["sectionCount"] == 2
    assert document["failedSections"] == 1
    assert "# Section 2: Error" in document["content"]


def test_unknown_batch_is_404(client):
    response = client.get("/batch/nope")
    assert response.status_code == 404
    assert response.json()["error_code"] == "BATCH_NOT_FOUND"


def test_plan_change_and_humanize(client, providers):
    client.put("/usage/plan", json={"accountId": "acct-42", "plan": "premium"})
    providers["anthropic"].script = [anthropic_frames("A calmer rewrite.")]

    response = client.post("/humanize", json={"text": "Furthermore, it is important to note this."}, headers=HEADERS)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["text"] == "A calmer rewrite."
    assert data["chunkCount"] == 1
    assert data["failedChunks"] == []


def test_humanize_blocked_on_trial(client):
    response = client.post("/humanize", json={"text": "Some text."}, headers=HEADERS)
    assert response.status_code == 402


def test_analyze(client):
    response = client.post("/humanize/analyze", json={"text": "Plain words here."})
    assert response.status_code == 200
    assert response.json()["data"]["aiDetected"] is False


def test_health_lists_providers(client):
    checks = client.get("/health").json()["checks"]
    assert checks["anthropic"].startswith("✓")
    assert checks["redis"] == "- in-memory"
