# scribe/batch/service/transport.py
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import anthropic
import httpx
from anthropic import AsyncAnthropic

from scribe.batch.entity.batch import BatchCounts, BatchStatus
from scribe.core.config import settings
from scribe.core.errors import BatchError, ConfigurationError, ProviderNetworkError
from scribe.core.logger import get_logger, truncate
from scribe.llm.service.provider.base_provider import http_status_error

logger = get_logger("BatchTransport")

ANTHROPIC_VERSION = "2023-06-01"

_PROCESSING = ("in_progress", "canceling")
_FAILED = ("failed", "expired", "canceled", "cancelled")


def map_batch_status(processing_status: Optional[str]) -> BatchStatus:
    if processing_status in _PROCESSING:
        return BatchStatus.PROCESSING
    if processing_status == "ended":
        return BatchStatus.COMPLETED
    if processing_status in _FAILED:
        return BatchStatus.FAILED
    return BatchStatus.PENDING


def counts_from_remote(remote: Dict[str, Any], request_count: int) -> BatchCounts:
    counts = remote.get("request_counts") or {}
    failed = sum(int(counts.get(key) or 0) for key in ("errored", "canceled", "expired"))
    completed = int(counts.get("succeeded") or 0) + failed
    return BatchCounts(request_count=request_count, completed_count=completed, failed_count=failed)


class BatchTransport(ABC):
    """Vendor side of a batch job: create, inspect and download results."""

    @abstractmethod
    async def create(self, requests: List[Dict[str, Any]]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def retrieve(self, batch_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def results(self, remote: Dict[str, Any]) -> str:
        """Raw JSONL body of an ended batch."""

    async def aclose(self) -> None:
        return None


class AnthropicBatchTransport(BatchTransport):
    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[AsyncAnthropic] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = (api_key if api_key is not None else settings.ANTHROPIC_API_KEY or "").strip() or None
        self._client = client
        self._http = http_client

    def _require_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("anthropic API key is not configured for batch processing")
        return self.api_key

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(
                api_key=self._require_key(),
                base_url=settings.ANTHROPIC_BASE_URL,
                max_retries=0,
                timeout=settings.REQUEST_TIMEOUT_SECONDS,
            )
        return self._client

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT_SECONDS)
        return self._http

    async def create(self, requests: List[Dict[str, Any]]) -> Dict[str, Any]:
        self._require_key()
        try:
            batch = await self.client.messages.batches.create(requests=requests)
        except anthropic.BadRequestError as e:
            logger.error(f"batch rejected: {e.message}")
            raise BatchError("Invalid batch request format", context={"detail": truncate(e.message)}) from e
        except anthropic.APIStatusError as e:
            logger.error(f"batch create failed status={e.status_code}: {e.message}")
            raise http_status_error("anthropic", e.status_code, e.message) from e
        except anthropic.APIConnectionError as e:
            raise ProviderNetworkError(f"anthropic batch connection failed: {e}") from e
        logger.info(f"created batch id={batch.id} requests={len(requests)}")
        return batch.model_dump(mode="json")

    async def retrieve(self, batch_id: str) -> Dict[str, Any]:
        self._require_key()
        try:
            batch = await self.client.messages.batches.retrieve(batch_id)
        except anthropic.APIStatusError as e:
            logger.error(f"batch retrieve failed id={batch_id} status={e.status_code}: {e.message}")
            raise http_status_error("anthropic", e.status_code, e.message) from e
        except anthropic.APIConnectionError as e:
            raise ProviderNetworkError(f"anthropic batch connection failed: {e}") from e
        return batch.model_dump(mode="json")

    async def results(self, remote: Dict[str, Any]) -> str:
        url = remote.get("results_url")
        if not url:
            raise BatchError("Batch ended without a results URL", context={"batch_id": remote.get("id")})
        headers = {"x-api-key": self._require_key(), "anthropic-version": ANTHROPIC_VERSION}
        try:
            response = await self.http.get(url, headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise ProviderNetworkError(f"batch results download failed: {e}") from e
        if response.status_code != 200:
            raise http_status_error("anthropic", response.status_code, response.text)
        return response.text

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
        if self._http is not None:
            await self._http.aclose()
