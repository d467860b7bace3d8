import asyncio
import json
import logging
from collections.abc import AsyncIterator
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Sequence
from typing import Any
from uuid import uuid4

from app.core.exceptions import ConfigurationError
from app.core.exceptions import GenerationCancelledError
from app.core.exceptions import ProtocolError
from app.core.exceptions import TransportError
from app.models.generation_models import GenerationContext
from app.models.generation_models import GenerationProgress
from app.models.generation_models import SectionTemplate
from app.services.orchestrator import MultiSectionOrchestrator
from app.services.orchestrator import SectionChunkCallback
from app.services.section_generator import CANCELLED_MESSAGE
from app.services.section_generator import ProgressCallback
from app.services.section_generator import SectionGenerator

__all__ = [
    "create_stream_event",
    "stream_batch_generation",
    "stream_section_generation",
]

logger = logging.getLogger(__name__)

GenerationRun = Callable[[ProgressCallback, SectionChunkCallback], Awaitable[dict[str, str]]]


# ---------------------------------------------------------------------------
# NDJSON event helper
# ---------------------------------------------------------------------------


def create_stream_event(
    event_type: str,
    message: str | None = None,
    payload: Any = None,
    section_id: str | None = None,
) -> str:
    """Serialize one stream event to an NDJSON line."""
    event: dict[str, Any] = {"type": event_type}
    if section_id is not None:
        event["section_id"] = section_id
    if message is not None:
        event["message"] = message
    if payload is not None:
        event["payload"] = payload
    return json.dumps(event) + "\n"


# ---------------------------------------------------------------------------
# Callback -> stream bridge
# ---------------------------------------------------------------------------


async def _stream_generation(run: GenerationRun, request_id: str) -> AsyncIterator[str]:
    """Run a generation in a task and yield its callbacks as NDJSON events as they happen.

    The stream always ends with a ``data`` or ``error`` event followed by ``finished``.
    If the client goes away mid-stream the generation task is cancelled.
    """
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    def on_progress(update: GenerationProgress) -> None:
        queue.put_nowait(create_stream_event("progress", payload=update.model_dump()))

    def on_chunk(section_id: str, delta: str) -> None:
        queue.put_nowait(create_stream_event("chunk", payload=delta, section_id=section_id))

    async def _run() -> dict[str, str]:
        try:
            return await run(on_progress, on_chunk)
        finally:
            queue.put_nowait(None)

    task = asyncio.ensure_future(_run())
    try:
        while (event := await queue.get()) is not None:
            yield event

        results = await task
        yield create_stream_event("data", payload=results)
        logger.info("[%s] Stream delivered %d sections", request_id, len(results))

    except GenerationCancelledError:
        logger.info("[%s] Stream ended by cancellation", request_id)
        yield create_stream_event("error", message=CANCELLED_MESSAGE)
    except ConfigurationError as ce:
        logger.error("[%s] Configuration error: %s", request_id, str(ce))
        yield create_stream_event("error", message=f"Configuration error: {str(ce)}")
    except TransportError as te:
        logger.error("[%s] Language model request error: %s", request_id, str(te))
        yield create_stream_event("error", message=f"Language model request error: {str(te)}")
    except ProtocolError as pe:
        logger.error("[%s] Language model response error: %s", request_id, str(pe))
        yield create_stream_event("error", message=f"Language model response error: {str(pe)}")
    except Exception as e:  # General catch-all MUST be last
        logger.exception("[%s] Unexpected error while streaming generation", request_id)
        yield create_stream_event("error", message=f"An unexpected server error occurred: {str(e)}")
    finally:
        if not task.done():
            logger.info("[%s] Client disconnected; cancelling generation", request_id)
            task.cancel()

    yield create_stream_event("finished", message="Stream completed.")


def stream_section_generation(
    generator: SectionGenerator,
    section_id: str,
    template: SectionTemplate,
    context: GenerationContext,
) -> AsyncIterator[str]:
    request_id = str(uuid4())
    logger.info("[%s] Streaming single section '%s'", request_id, section_id)

    async def _run(on_progress: ProgressCallback, on_chunk: SectionChunkCallback) -> dict[str, str]:
        text = await generator.generate_section(
            section_id,
            context,
            template,
            on_progress,
            lambda delta: on_chunk(section_id, delta),
        )
        return {section_id: text}

    return _stream_generation(_run, request_id)


def stream_batch_generation(
    orchestrator: MultiSectionOrchestrator,
    sections: Sequence[tuple[str, SectionTemplate]],
    context: GenerationContext,
) -> AsyncIterator[str]:
    request_id = str(uuid4())
    logger.info("[%s] Streaming batch of %d sections", request_id, len(sections))

    async def _run(on_progress: ProgressCallback, on_chunk: SectionChunkCallback) -> dict[str, str]:
        return await orchestrator.generate_multiple(sections, context, on_progress, on_chunk)

    return _stream_generation(_run, request_id)
