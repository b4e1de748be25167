"""Capability interface for LLM providers."""
import abc
from typing import Awaitable, Callable, List, Optional, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from execution.cancellation import CancelToken, run_cancellable
from providers.settings import AISettings
from utils.logger import setup_logger
import config

logger = setup_logger(__name__)

T = TypeVar("T")

EXTRACTION_SYSTEM_PROMPT = "You are a precise entity extraction assistant. Return only valid JSON."


class ProviderError(Exception):
    """Raised when a provider call fails."""


class TransientProviderError(ProviderError):
    """A failure worth retrying: rate limits, overload, timeouts, dropped connections."""


class ProviderConfigError(ProviderError):
    """Raised when the provider cannot be constructed from the settings."""


class AIProvider(abc.ABC):
    """One LLM vendor: text completion and, optionally, embeddings."""

    provider_id: str = ""

    def __init__(self, settings: AISettings):
        self.settings = settings

    @property
    @abc.abstractmethod
    def model_name(self) -> str:
        """Completion model identifier"""

    @property
    def embedding_model_name(self) -> Optional[str]:
        return None

    def supports_embeddings(self) -> bool:
        return False

    async def complete(
        self,
        prompt: str,
        cancel_token: Optional[CancelToken] = None,
        system: Optional[str] = EXTRACTION_SYSTEM_PROMPT
    ) -> str:
        """Run a single prompt and return the response text.

        The request is retried on transient failures and aborted as soon as
        ``cancel_token`` is signalled.
        """
        return await run_cancellable(
            self._with_retry(lambda: self._complete(prompt, system), "complete"),
            cancel_token
        )

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed a batch of texts in one call."""
        if not self.supports_embeddings():
            raise ProviderError(f"{self.provider_id} does not support embeddings")
        if not texts:
            return []
        embeddings = await self._with_retry(lambda: self._embed(texts), "embed")
        if len(embeddings) != len(texts):
            raise ProviderError(f"Expected {len(texts)} embeddings, got {len(embeddings)}")
        return embeddings

    async def embed_one(self, text: str) -> List[float]:
        return (await self.embed([text]))[0]

    @abc.abstractmethod
    async def _complete(self, prompt: str, system: Optional[str]) -> str:
        """Vendor-specific completion request"""

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        raise ProviderError(f"{self.provider_id} does not support embeddings")

    async def _with_retry(self, func: Callable[[], Awaitable[T]], label: str) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(config.MAX_RETRIES),
            wait=wait_exponential(multiplier=config.RETRY_BACKOFF_MULTIPLIER, min=1, max=30),
            retry=retry_if_exception_type(TransientProviderError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"{self.provider_id} {label}: retry {attempt.retry_state.attempt_number}/{config.MAX_RETRIES}"
                    )
                return await func()
