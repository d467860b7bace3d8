from typing import Literal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

GenerationStatus = Literal["pending", "generating", "completed", "error"]


class GenerationContext(BaseModel):
    """Free-text inputs a proposal section is written from. Every field is optional."""

    model_config = ConfigDict(frozen=True)

    rfp_content: str | None = None
    company_profile: str | None = None
    requirements: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()
    target_audience: str | None = None


class SectionTemplate(BaseModel):
    """Human-authored description of one proposal section and how to prompt for it."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    prompt_template: str
    max_tokens: int | None = Field(default=None, gt=0)


class GenerationProgress(BaseModel):
    """One progress report for a section; the last one emitted for a call is authoritative."""

    section_id: str
    status: GenerationStatus
    progress: int = Field(ge=0, le=100)
    content: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "error")


class StreamChunk(BaseModel):
    """A decoded unit of a streamed completion.

    ``content`` carries a text delta in ``data``; ``complete`` marks the ``[DONE]`` sentinel.
    ``progress`` and ``error`` are used when chunks are re-emitted to HTTP clients.
    """

    type: Literal["content", "progress", "error", "complete"]
    data: str | int | GenerationProgress | None = None
