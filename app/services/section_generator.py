from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from uuid import uuid4

import httpx

from app.core.config import Settings
from app.core.config import settings as default_settings
from app.core.exceptions import GenerationCancelledError
from app.core.exceptions import ProposalEngineError
from app.core.exceptions import ProtocolError
from app.core.exceptions import TransportError
from app.models.generation_models import GenerationContext
from app.models.generation_models import GenerationProgress
from app.models.generation_models import SectionTemplate
from app.services.llm import SECTION_SYSTEM_PROMPT
from app.services.llm import build_chat_request
from app.services.llm import build_headers
from app.services.llm import create_http_client
from app.services.llm import ensure_generation_enabled
from app.services.prompt_builder import RelevantExcerptSource
from app.services.prompt_builder import build_prompt
from app.services.stream_decoder import StreamDecoder

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[GenerationProgress], None]
ChunkCallback = Callable[[str], None]

CANCELLED_MESSAGE = "Generation cancelled"
MAX_STREAMING_PROGRESS = 95


def notify(request_id: str, callback: Callable[..., Any] | None, *args: Any) -> None:
    """Invoke a UI callback, logging and discarding anything it raises."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.exception("[%s] Callback %r raised; ignoring", request_id, callback)


@dataclass
class _InFlightCall:
    request_id: str
    section_id: str
    task: asyncio.Task | None = None
    aborted: bool = False
    chunk_count: int = 0
    progress: int = 0
    parts: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.parts)


class SectionGenerator:
    """Streams one proposal section at a time from the chat-completion API.

    An instance holds a single in-flight slot: starting a call cancels the previous
    one, and the cancelled caller receives ``GenerationCancelledError``. Concurrent
    logical calls against one instance are therefore unsafe; use one instance per
    independent stream.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        document_index: RelevantExcerptSource | None = None,
    ):
        self._settings = settings or default_settings
        self._owns_client = http_client is None
        self._http_client = http_client or create_http_client(self._settings)
        self._document_index = document_index
        self._inflight: _InFlightCall | None = None

    @property
    def is_generating(self) -> bool:
        return self._inflight is not None

    async def generate_section(
        self,
        section_id: str,
        context: GenerationContext,
        template: SectionTemplate,
        on_progress: ProgressCallback | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        """Generate *section_id* and return its full text.

        Emits ``generating`` progress per delta and exactly one terminal event
        (``completed`` or ``error``). Failures are re-raised after the error event.
        """
        ensure_generation_enabled(self._settings)
        self.cancel_generation()

        call = _InFlightCall(request_id=str(uuid4()), section_id=section_id)
        self._inflight = call
        logger.info("[%s] Generating section '%s'", call.request_id, section_id)

        notify(
            call.request_id,
            on_progress,
            GenerationProgress(section_id=section_id, status="generating", progress=0),
        )

        try:
            prompt = build_prompt(section_id, context, template, self._document_index)
            max_tokens = template.max_tokens or self._settings.max_tokens
            if call.aborted:
                # Cancelled from the initial progress callback; never issue the request.
                raise asyncio.CancelledError
            call.task = asyncio.ensure_future(self._stream_completion(call, prompt, max_tokens, on_progress, on_chunk))
            text = await call.task
        except asyncio.CancelledError:
            self._emit_error(call, on_progress, CANCELLED_MESSAGE)
            current = asyncio.current_task()
            if call.aborted and (current is None or current.cancelling() == 0):
                logger.info(
                    "[%s] Section '%s' cancelled after %d chunks",
                    call.request_id,
                    section_id,
                    call.chunk_count,
                )
                raise GenerationCancelledError(CANCELLED_MESSAGE) from None
            raise
        except ProposalEngineError as e:
            logger.error("[%s] Section '%s' failed: %s", call.request_id, section_id, str(e), exc_info=False)
            self._emit_error(call, on_progress, str(e))
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error generating section '%s'", call.request_id, section_id)
            self._emit_error(call, on_progress, str(e) or type(e).__name__)
            raise TransportError(f"Unexpected error in LLM call: {str(e)}") from e
        finally:
            if self._inflight is call:
                self._inflight = None

        notify(
            call.request_id,
            on_progress,
            GenerationProgress(section_id=section_id, status="completed", progress=100, content=text),
        )
        logger.info("[%s] Section '%s' completed: %d chars", call.request_id, section_id, len(text))
        return text

    def cancel_generation(self) -> bool:
        """Abort the in-flight call, if any. Returns True when something was cancelled."""
        call = self._inflight
        if call is None:
            return False
        self._inflight = None
        call.aborted = True
        if call.task is not None:
            call.task.cancel()
        logger.info("[%s] Cancellation requested for section '%s'", call.request_id, call.section_id)
        return True

    async def aclose(self) -> None:
        self.cancel_generation()
        if self._owns_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _emit_error(self, call: _InFlightCall, on_progress: ProgressCallback | None, message: str) -> None:
        notify(
            call.request_id,
            on_progress,
            GenerationProgress(section_id=call.section_id, status="error", progress=0, error=message),
        )

    def _estimate_progress(self, call: _InFlightCall) -> int:
        # Advisory only: chunk count against an assumed total, never reaching 100 before [DONE].
        estimate = math.floor(call.chunk_count / self._settings.progress_expected_chunks * 100)
        call.progress = max(call.progress, min(MAX_STREAMING_PROGRESS, estimate))
        return call.progress

    async def _stream_completion(
        self,
        call: _InFlightCall,
        prompt: str,
        max_tokens: int,
        on_progress: ProgressCallback | None,
        on_chunk: ChunkCallback | None,
    ) -> str:
        body = build_chat_request(
            self._settings,
            SECTION_SYSTEM_PROMPT,
            prompt,
            max_tokens=max_tokens,
            temperature=self._settings.temperature,
            stream=True,
        )
        logger.debug(
            "[%s] POST %s model=%s max_tokens=%d prompt=%d chars",
            call.request_id,
            self._settings.chat_completions_url,
            self._settings.model_id,
            max_tokens,
            len(prompt),
        )

        try:
            async with self._http_client.stream(
                "POST",
                self._settings.chat_completions_url,
                json=body,
                headers=build_headers(self._settings),
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise TransportError(
                        f"OpenAI API error: {response.status_code} {response.reason_phrase}",
                        status_code=response.status_code,
                    )
                return await self._consume(call, response, on_progress, on_chunk)
        except httpx.HTTPError as e:
            raise TransportError(f"OpenAI API request failed: {str(e)}") from e

    async def _consume(
        self,
        call: _InFlightCall,
        response: httpx.Response,
        on_progress: ProgressCallback | None,
        on_chunk: ChunkCallback | None,
    ) -> str:
        decoder = StreamDecoder()
        received_bytes = 0

        async for data in response.aiter_bytes():
            received_bytes += len(data)
            for chunk in decoder.feed(data):
                if chunk.type == "complete":
                    return call.text
                self._append(call, chunk.data, on_progress, on_chunk)

        for chunk in decoder.flush():
            if chunk.type == "complete":
                return call.text
            self._append(call, chunk.data, on_progress, on_chunk)

        if received_bytes == 0:
            raise ProtocolError("No response body received")

        logger.warning(
            "[%s] Stream ended without [DONE] after %d frames; keeping %d chars",
            call.request_id,
            decoder.frames_seen,
            len(call.text),
        )
        return call.text

    def _append(
        self,
        call: _InFlightCall,
        delta: str,
        on_progress: ProgressCallback | None,
        on_chunk: ChunkCallback | None,
    ) -> None:
        if call.aborted:
            raise asyncio.CancelledError
        call.parts.append(delta)
        call.chunk_count += 1
        notify(call.request_id, on_chunk, delta)
        if call.aborted:
            raise asyncio.CancelledError
        notify(
            call.request_id,
            on_progress,
            GenerationProgress(
                section_id=call.section_id,
                status="generating",
                progress=self._estimate_progress(call),
                content=call.text,
            ),
        )
