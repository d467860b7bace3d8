from __future__ import annotations

import logging
from collections.abc import Callable
from collections.abc import Sequence
from uuid import uuid4

from app.core.exceptions import GenerationCancelledError
from app.core.exceptions import ProposalEngineError
from app.models.generation_models import GenerationContext
from app.models.generation_models import SectionTemplate
from app.services.section_generator import CANCELLED_MESSAGE
from app.services.section_generator import ProgressCallback
from app.services.section_generator import SectionGenerator

logger = logging.getLogger(__name__)

SectionChunkCallback = Callable[[str, str], None]

ERROR_PLACEHOLDER = "Error generating content: {message}"


class MultiSectionOrchestrator:
    """Generates a list of sections one after another on a shared SectionGenerator.

    Sections run strictly in order because the generator has a single in-flight slot.
    A failing section is recorded as a placeholder string and the batch carries on.
    """

    def __init__(self, generator: SectionGenerator):
        self.generator = generator
        self._batch_cancelled = False
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def generate_multiple(
        self,
        sections: Sequence[tuple[str, SectionTemplate]],
        context: GenerationContext,
        on_progress: ProgressCallback | None = None,
        on_chunk: SectionChunkCallback | None = None,
    ) -> dict[str, str]:
        """Return one entry per input section, keyed by section id, in input order."""
        request_id = str(uuid4())
        logger.info("[%s] Starting batch generation of %d sections", request_id, len(sections))

        self._batch_cancelled = False
        self._running = True
        results: dict[str, str] = {}
        try:
            for i, (section_id, template) in enumerate(sections):
                if self._batch_cancelled:
                    results[section_id] = CANCELLED_MESSAGE
                    continue

                logger.info("[%s] Section %d/%d: %s", request_id, i + 1, len(sections), template.name)
                try:
                    results[section_id] = await self.generator.generate_section(
                        section_id,
                        context,
                        template,
                        on_progress,
                        self._keyed_chunk_callback(section_id, on_chunk),
                    )
                except GenerationCancelledError:
                    logger.info("[%s] Section %s cancelled", request_id, section_id)
                    results[section_id] = CANCELLED_MESSAGE
                except ProposalEngineError as e:
                    logger.error("[%s] Error generating section %s: %s", request_id, section_id, str(e))
                    results[section_id] = ERROR_PLACEHOLDER.format(message=str(e) or "Unknown error")
        finally:
            self._running = False

        failed = sum(1 for section_id, _ in sections if results[section_id].startswith("Error generating content"))
        logger.info("[%s] Batch finished: %d sections, %d failed", request_id, len(results), failed)
        return results

    def cancel(self) -> bool:
        """Stop the batch: the current section is cancelled and the rest are skipped."""
        if not self._running:
            return self.generator.cancel_generation()
        self._batch_cancelled = True
        self.generator.cancel_generation()
        return True

    @staticmethod
    def _keyed_chunk_callback(
        section_id: str,
        on_chunk: SectionChunkCallback | None,
    ) -> Callable[[str], None] | None:
        if on_chunk is None:
            return None
        return lambda delta: on_chunk(section_id, delta)
