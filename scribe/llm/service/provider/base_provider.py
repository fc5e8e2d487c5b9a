# scribe/llm/service/provider/base_provider.py
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, List, Optional

from scribe.core.errors import (
    ConfigurationError,
    ModelNotFoundError,
    ProviderHTTPError,
    ProviderOverloadedError,
)
from scribe.llm.entity.completion import CompletionRequest

OVERLOAD_STATUSES = (429, 529)


def http_status_error(provider: str, status_code: int, detail: str = "") -> Exception:
    """Map an upstream HTTP status onto the error taxonomy."""
    message = f"{provider} returned HTTP {status_code}"
    if detail:
        message = f"{message}: {detail[:300]}"
    if status_code in OVERLOAD_STATUSES:
        return ProviderOverloadedError(message, status_code=status_code, provider=provider)
    if status_code == 404:
        return ModelNotFoundError(message, status_code=status_code, provider=provider)
    if status_code in (401, 403):
        return ConfigurationError(f"{provider} rejected the configured API key (HTTP {status_code})")
    return ProviderHTTPError(message, status_code=status_code, provider=provider)


class BaseProvider(ABC):
    """Abstract base provider for all LLM integrations."""

    name: str = "base"
    key_prefix: str = ""
    model_prefix: str = ""

    def __init__(self, api_key: Optional[str], default_model: str, alternate_model: Optional[str] = None):
        self.api_key = (api_key or "").strip() or None
        self.default_model = default_model
        self.alternate_model = alternate_model

    def is_enabled(self) -> bool:
        """Whether this provider is usable (API key present)."""
        return self.api_key is not None

    def validate_credentials(self) -> None:
        """Fail fast before any network call when the key is absent or malformed."""
        if not self.api_key:
            raise ConfigurationError(f"{self.name} API key is not configured")
        if self.key_prefix and not self.api_key.startswith(self.key_prefix):
            raise ConfigurationError(f"{self.name} API key is malformed (expected prefix '{self.key_prefix}')")

    def owns_model(self, model: Optional[str]) -> bool:
        return bool(model) and bool(self.model_prefix) and model.startswith(self.model_prefix)

    def model_chain(self, requested: Optional[str] = None) -> List[str]:
        """Primary model followed by at most one alternate in the same family."""
        first = requested if self.owns_model(requested) else self.default_model
        chain = [first]
        for candidate in (self.alternate_model, self.default_model):
            if candidate and candidate not in chain:
                chain.append(candidate)
                break
        return chain

    @abstractmethod
    def stream(self, request: CompletionRequest, model: str, prompt: Optional[str] = None) -> AsyncIterator[Any]:
        """
        Yield raw decoded frames for ``request`` against ``model``.

        Implementations raise taxonomy errors (overload, network, HTTP)
        before or during iteration; frame interpretation is left to the
        wire format adapter.
        """

    async def aclose(self) -> None:
        return None

    def __repr__(self):
        return f"<{type(self).__name__} name={self.name} enabled={self.is_enabled()}>"
