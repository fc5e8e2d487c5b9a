# scribe/llm/api/route.py
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from scribe.core.dto import BaseResponse
from scribe.llm.api.dto import CompletionStreamDTO
from scribe.llm.api.handler import build_completion_request, handle_completion_stream, list_providers
from scribe.llm.service.completion_service import CompletionService
from scribe.llm.service.orchestrator import CancelToken, ProviderOrchestrator
from scribe.usage.api.dependencies import get_account_id

completion_router = APIRouter(prefix="/completion", tags=["Completion"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # for Nginx
}


def get_completion_service(request: Request) -> CompletionService:
    """Dependency to get the completion service from app.state."""
    if not hasattr(request.app.state, "completion_service"):
        raise RuntimeError("Completion service not initialized. Ensure main.py lifespan wires app.state.*")
    return request.app.state.completion_service


def get_orchestrator(request: Request) -> ProviderOrchestrator:
    if not hasattr(request.app.state, "orchestrator"):
        raise RuntimeError("Orchestrator not initialized. Ensure main.py lifespan wires app.state.*")
    return request.app.state.orchestrator


@completion_router.post("/stream")
async def completion_stream_api(
    body: CompletionStreamDTO,
    account_id: str = Depends(get_account_id),
    service: CompletionService = Depends(get_completion_service),
):
    """
    Streaming completion (Server-Sent Events).

    Quota is checked before the stream opens, so an exhausted account gets
    a plain 402 instead of an event stream.
    """
    request = build_completion_request(service, body)
    await service.preflight(account_id, request)

    return StreamingResponse(
        handle_completion_stream(service, account_id, request, CancelToken()),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@completion_router.get("/providers", response_model=BaseResponse)
async def get_providers(orchestrator: ProviderOrchestrator = Depends(get_orchestrator)):
    """Return configured providers with status and last first-byte latency."""
    providers = await list_providers(orchestrator)
    return BaseResponse(status=True, message="Providers fetched successfully", data=providers.model_dump())
