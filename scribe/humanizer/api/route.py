# scribe/humanizer/api/route.py
from fastapi import APIRouter, Depends, Request

from scribe.core.dto import BaseResponse
from scribe.humanizer.api.dto import AnalyzeDTO, HumanizeDTO, HumanizeResponse
from scribe.humanizer.service.humanizer_service import HumanizerService, analyze_text
from scribe.usage.api.dependencies import get_account_id

humanizer_router = APIRouter(prefix="/humanize", tags=["Humanizer"])


def get_humanizer_service(request: Request) -> HumanizerService:
    if not hasattr(request.app.state, "humanizer_service"):
        raise RuntimeError("Humanizer service not initialized. Ensure main.py lifespan wires app.state.*")
    return request.app.state.humanizer_service


@humanizer_router.post("", response_model=BaseResponse)
async def humanize(
    body: HumanizeDTO,
    account_id: str = Depends(get_account_id),
    service: HumanizerService = Depends(get_humanizer_service),
):
    """Rewrite text chunk by chunk; chunks that fail keep their original text."""
    result = await service.humanize(account_id, body.text, body.max_chunk_chars)
    response = HumanizeResponse(
        text=result.text,
        chunk_count=result.chunk_count,
        failed_chunks=result.failed_chunks,
        input_words=result.input_words,
        output_words=result.output_words,
    )
    return BaseResponse(status=True, message="Text humanized successfully", data=response.model_dump(by_alias=True))


@humanizer_router.post("/analyze", response_model=BaseResponse)
async def analyze(body: AnalyzeDTO):
    return BaseResponse(status=True, message="Analysis complete", data=analyze_text(body.text))
