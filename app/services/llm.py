"""Transport helpers shared by section generation and document analysis.

Both engines talk to an OpenAI-compatible chat-completion endpoint. Section
generation streams raw bytes through an ``httpx.AsyncClient`` so it can decode
the event stream itself; analysis is a single non-streamed call made with the
``AsyncOpenAI`` SDK on top of the same kind of client.
"""

import logging
from collections.abc import Callable
from typing import Any
from typing import TypeVar

import httpx
from openai import AsyncOpenAI
from tenacity import RetryCallState
from tenacity import retry
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from app.core.config import Settings
from app.core.exceptions import ConfigurationError
from app.core.exceptions import TransportError

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")

SECTION_SYSTEM_PROMPT = (
    "You are an expert RFP analyst with 20+ years of experience in enterprise software procurement. "
    "Your task is to analyze RFP documents with the precision of top consulting firms like McKinsey and Accenture. "
    "When generating RFP responses, leverage your deep understanding of critical requirements, evaluation criteria, "
    "strategic intelligence, win themes, and risk factors to create compelling, strategic content that addresses "
    "the specific needs and demonstrates clear value propositions."
)

ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert RFP analyst with 20+ years of experience in enterprise software procurement. "
    "Your task is to analyze RFP documents with the precision of top consulting firms like McKinsey and Accenture. "
    "Extract and structure critical requirements, evaluation criteria, strategic intelligence, win themes, and red flags. "
    "Output in structured JSON with confidence scores for each finding."
)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def ensure_generation_enabled(settings: Settings) -> None:
    """Fail fast, before any I/O, when the deployment does not allow AI calls."""
    if not settings.enable_ai_generation:
        raise ConfigurationError("AI generation is disabled in configuration")
    if not settings.openai_api_key:
        raise ConfigurationError("OpenAI API key is not configured")


def build_headers(settings: Settings) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.openai_api_key}",
    }
    if settings.openai_organization:
        headers["OpenAI-Organization"] = settings.openai_organization
    return headers


def build_chat_request(
    settings: Settings,
    system_prompt: str,
    user_prompt: str,
    *,
    max_tokens: int,
    temperature: float,
    stream: bool,
) -> dict[str, Any]:
    return {
        "model": settings.model_id,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "max_tokens": max_tokens,
        "temperature": temperature,
        "stream": stream,
    }


def build_timeout(settings: Settings) -> httpx.Timeout:
    return httpx.Timeout(settings.LLM_CONNECT_TIMEOUT, read=settings.LLM_READ_TIMEOUT)


def create_http_client(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Build the client used for streamed requests. Tests pass an ``httpx.MockTransport``."""
    return httpx.AsyncClient(timeout=build_timeout(settings), transport=transport)


def create_openai_client(settings: Settings, http_client: httpx.AsyncClient | None = None) -> AsyncOpenAI:
    # Retries are a caller policy (see retry_transient_failures), never automatic inside the engines.
    return AsyncOpenAI(
        api_key=settings.openai_api_key or "missing-api-key",
        organization=settings.openai_organization,
        base_url=settings.openai_base_url,
        timeout=build_timeout(settings),
        max_retries=0,
        http_client=http_client,
    )


# ---------------------------------------------------------------
# Helper predicate for tenacity retry
# ---------------------------------------------------------------


def _should_retry_transport_error(retry_state: RetryCallState) -> bool:
    """Determines if a retry should occur based on the exception in RetryCallState."""
    if not retry_state.outcome:
        return False

    exc = retry_state.outcome.exception()
    if not isinstance(exc, TransportError):
        return False

    if exc.status_code in RETRYABLE_STATUS_CODES:
        logger.warning("Retryable API error status %s detected. Retrying...", exc.status_code)
        return True
    return False


def retry_transient_failures(
    attempts: int = 3,
    min_wait: float = 2,
    max_wait: float = 10,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Caller-side retry policy for rate limits and upstream 5xx responses.

    The last failure is re-raised as-is once attempts are exhausted.
    """
    return retry(
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        stop=stop_after_attempt(attempts),
        retry=_should_retry_transport_error,
        reraise=True,
    )
