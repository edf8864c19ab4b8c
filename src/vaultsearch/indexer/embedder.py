"""Embedding providers — text to fixed-dimension vectors via OpenAI-compatible APIs.

All providers implement the same Protocol. Response validation lives here:
a missing ``data`` item, a non-numeric vector, or a vector whose length is
not the configured dimension is a ``ProviderError``, never a zero vector
and never silently truncated or padded.
"""

from __future__ import annotations

import logging
import math
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from openai import AsyncOpenAI, OpenAIError

from vaultsearch.errors import ConfigurationError, ProviderError

if TYPE_CHECKING:
    from vaultsearch.config import EmbeddingConfig

logger = logging.getLogger(__name__)


class ProviderKind(StrEnum):
    """Closed set of supported embedding backends."""

    OPENAI = "openai"
    LOCAL = "local"


class EmbeddingProvider(Protocol):
    """Protocol for embedding backends.

    Implementations must map every transport, timeout or shape failure to
    ``ProviderError``.
    """

    @property
    def provider_name(self) -> str: ...

    @property
    def dimensions(self) -> int: ...

    async def embed(self, text: str) -> list[float]:
        """Embed *text* into a vector of exactly ``dimensions`` floats.

        Raises:
            ProviderError: On network failure, malformed response, or a
                dimension mismatch.
        """
        ...


class OpenAICompatibleEmbedder:
    """Embedding provider for any server speaking the OpenAI embeddings API."""

    def __init__(
        self,
        *,
        provider_name: str,
        model: str,
        dimensions: int,
        api_key: str,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: Any | None = None,
    ) -> None:
        self._provider_name = provider_name
        self._model = model
        self._dimensions = dimensions
        if client is not None:
            self._client = client
        elif base_url:
            self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        else:
            self._client = AsyncOpenAI(api_key=api_key, timeout=timeout)

    @property
    def provider_name(self) -> str:
        return self._provider_name

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model(self) -> str:
        return self._model

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._client.embeddings.create(model=self._model, input=text)
        except OpenAIError as e:
            raise ProviderError(str(e), provider=self._provider_name, original=e) from e

        data = getattr(response, "data", None)
        if not data:
            raise ProviderError(
                f"Invalid response format from {self._provider_name} embeddings API",
                provider=self._provider_name,
            )

        vector = _as_vector(getattr(data[0], "embedding", None))
        if vector is None:
            raise ProviderError(
                f"Malformed embedding in {self._provider_name} response",
                provider=self._provider_name,
            )

        if len(vector) != self._dimensions:
            raise ProviderError(
                f"{self._provider_name} returned {len(vector)} dimensions, "
                f"expected {self._dimensions}",
                provider=self._provider_name,
            )

        return vector


def _as_vector(raw: object) -> list[float] | None:
    """Coerce a response vector to floats; None if it is not a finite numeric list."""
    if not isinstance(raw, list | tuple) or not raw:
        return None
    vector: list[float] = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, int | float):
            return None
        f = float(value)
        if not math.isfinite(f):
            return None
        vector.append(f)
    return vector


def create_embedding_provider(
    config: EmbeddingConfig,
    api_key: str = "",
) -> EmbeddingProvider:
    """Factory: construct the provider named by ``config.provider``.

    Raises:
        ConfigurationError: Unknown provider tag or missing endpoint/model/key.
    """
    try:
        kind = ProviderKind(config.provider)
    except ValueError:
        raise ConfigurationError(
            f"Invalid embedding provider {config.provider!r}. "
            f"Must be one of: {', '.join(k.value for k in ProviderKind)}"
        ) from None

    if kind is ProviderKind.OPENAI:
        if not api_key:
            raise ConfigurationError(
                "OpenAI API key is missing. Set VAULTSEARCH_OPENAI_API_KEY."
            )
        if not config.openai_model:
            raise ConfigurationError("embedding.openai_model is not set")
        logger.debug("Using OpenAI embeddings (%s)", config.openai_model)
        return OpenAICompatibleEmbedder(
            provider_name=kind.value,
            model=config.openai_model,
            dimensions=config.dimensions,
            api_key=api_key,
            base_url=config.openai_base_url or None,
            timeout=config.timeout_seconds,
        )

    if not config.local_base_url:
        raise ConfigurationError("embedding.local_base_url is not set")
    if not config.local_model:
        raise ConfigurationError("embedding.local_model is not set")
    logger.debug("Using local embeddings at %s (%s)", config.local_base_url, config.local_model)
    # Local OpenAI-compatible servers ignore the key, but the client requires one
    return OpenAICompatibleEmbedder(
        provider_name=kind.value,
        model=config.local_model,
        dimensions=config.dimensions,
        api_key=api_key or "local",
        base_url=config.local_base_url,
        timeout=config.timeout_seconds,
    )
