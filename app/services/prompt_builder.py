"""Builds the user prompt for one proposal section."""

import logging
import pathlib
from typing import Protocol

import jinja2

from app.core.exceptions import ConfigurationError
from app.models.generation_models import GenerationContext
from app.models.generation_models import SectionTemplate

logger = logging.getLogger(__name__)

SECTION_TYPE_PLACEHOLDER = "{sectionType}"
TEMPLATE_NAME_PLACEHOLDER = "{templateName}"
CONTEXT_TEMPLATE_NAME = "section_context.jinja2"

PROMPT_DIR = pathlib.Path(__file__).parent / "prompt_templates"
env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(PROMPT_DIR),
    autoescape=False,
    undefined=jinja2.StrictUndefined,
)


class RelevantExcerptSource(Protocol):
    """Anything that can suggest company material relevant to a section of an RFP response."""

    def get_relevant_excerpt(self, source_content: str, section_id: str) -> str: ...


def render_template(template_name: str, **context: object) -> str:
    try:
        return env.get_template(template_name).render(**context)
    except jinja2.TemplateNotFound:
        logger.error("Prompt template not found: %s", template_name)
        raise ConfigurationError(f"Internal configuration error: Template '{template_name}' not found.") from None


def build_prompt(
    section_id: str,
    context: GenerationContext,
    template: SectionTemplate,
    document_index: RelevantExcerptSource | None = None,
) -> str:
    """Return the section instructions followed by whichever context blocks are present.

    Placeholders are substituted once each; templates use every placeholder at most once.
    The company-information block is looked up only when RFP content is present.
    """
    prompt = template.prompt_template.replace(SECTION_TYPE_PLACEHOLDER, section_id, 1).replace(
        TEMPLATE_NAME_PLACEHOLDER, template.name, 1
    )

    relevant_excerpt = ""
    if context.rfp_content and document_index is not None:
        relevant_excerpt = document_index.get_relevant_excerpt(context.rfp_content, section_id)

    prompt += render_template(
        CONTEXT_TEMPLATE_NAME,
        rfp_content=context.rfp_content,
        company_profile=context.company_profile,
        requirements=list(context.requirements),
        constraints=list(context.constraints),
        target_audience=context.target_audience,
        relevant_excerpt=relevant_excerpt,
    )
    logger.debug("Built prompt for section '%s': %d chars", section_id, len(prompt))
    return prompt
