"""Static catalogue of proposal sections and the prompts used to write them."""

import logging

from app.core.exceptions import ConfigurationError
from app.models.generation_models import SectionTemplate

logger = logging.getLogger(__name__)

_SECTION_TEMPLATES: dict[str, SectionTemplate] = {
    "executive-summary": SectionTemplate(
        id="executive-summary",
        name="Executive Summary",
        description="High-level overview of the proposed solution",
        prompt_template=(
            "Create a compelling executive summary for the {sectionType} section of an RFP response.\n"
            "This should be a concise, high-level overview that captures the key value propositions and differentiators.\n"
            "Focus on business outcomes and strategic benefits. Leverage the critical requirements matrix and win themes\n"
            "to demonstrate clear understanding of the customer's needs and your strategic positioning."
        ),
        max_tokens=800,
    ),
    "company-overview": SectionTemplate(
        id="company-overview",
        name="Company Overview",
        description="Introduction to the company and its capabilities",
        prompt_template=(
            "Write a professional {templateName} section that establishes credibility and expertise.\n"
            "Highlight relevant experience, certifications, and success stories that align with the RFP requirements.\n"
            "Address the strategic intelligence insights and demonstrate how your company's strengths position you\n"
            "to overcome incumbent advantages and competitive challenges."
        ),
        max_tokens=600,
    ),
    "technical-approach": SectionTemplate(
        id="technical-approach",
        name="Technical Approach",
        description="Detailed technical methodology and solution design",
        prompt_template=(
            "Develop a comprehensive {templateName} section that demonstrates deep understanding of the requirements.\n"
            "Include methodology, architecture considerations, implementation strategy, and technical innovations.\n"
            "Show how your approach addresses the specific challenges outlined in the RFP and leverages the evaluation criteria\n"
            "to maximize scoring potential. Address any red flags identified in the analysis with mitigation strategies."
        ),
        max_tokens=1200,
    ),
    "project-timeline": SectionTemplate(
        id="project-timeline",
        name="Project Timeline",
        description="Detailed project schedule and milestones",
        prompt_template=(
            "Create a realistic and detailed {templateName} with clear milestones and deliverables.\n"
            "Include phases, key activities, dependencies, and resource allocation considerations.\n"
            "Demonstrate project management expertise and risk mitigation strategies. Address timeline pressures\n"
            "identified in the strategic intelligence and ensure alignment with critical deadlines."
        ),
        max_tokens=800,
    ),
    "team-structure": SectionTemplate(
        id="team-structure",
        name="Team Structure",
        description="Proposed team composition and roles",
        prompt_template=(
            "Design an optimal {templateName} for this project, including key roles, responsibilities, and qualifications.\n"
            "Highlight team member expertise, relevant experience, and how the team composition ensures project success.\n"
            "Include organizational structure and reporting relationships. Align team capabilities with stakeholder\n"
            "priorities and evaluation criteria to maximize scoring potential."
        ),
        max_tokens=700,
    ),
    "pricing": SectionTemplate(
        id="pricing",
        name="Pricing Framework",
        description="Cost structure and pricing strategy",
        prompt_template=(
            "Develop a competitive and transparent {templateName} that demonstrates value for money.\n"
            "Include cost breakdown, payment terms, and value-added services. Leverage budget indicators and price\n"
            "sensitivity analysis to position pricing strategically. Justify pricing decisions and show ROI for the client."
        ),
        max_tokens=600,
    ),
    "references": SectionTemplate(
        id="references",
        name="References & Case Studies",
        description="Relevant client references and success stories",
        prompt_template=(
            "Create compelling case studies and references for the {sectionType} section that demonstrate relevant\n"
            "experience and successful outcomes. Include specific metrics, challenges overcome, and client testimonials\n"
            "where appropriate. Focus on projects similar in scope and complexity to the current RFP. Provide proof points\n"
            "that align with the required proof points identified in the win themes analysis."
        ),
        max_tokens=900,
    ),
    "compliance": SectionTemplate(
        id="compliance",
        name="Compliance & Certifications",
        description="Regulatory compliance and quality certifications",
        prompt_template=(
            "Detail all relevant certifications, compliance standards, and quality assurance processes for the\n"
            "{templateName} section. Include specific certifications, audit results, and compliance frameworks that\n"
            "apply to this project. Demonstrate commitment to quality, security, and regulatory requirements."
        ),
        max_tokens=500,
    ),
}


def get_section_templates() -> dict[str, SectionTemplate]:
    """Return the section catalogue in presentation order. The dict is a copy; templates are frozen."""
    return dict(_SECTION_TEMPLATES)


def get_section_template(section_id: str) -> SectionTemplate:
    try:
        return _SECTION_TEMPLATES[section_id]
    except KeyError:
        logger.error("Unknown section template requested: %s", section_id)
        raise ConfigurationError(f"No template found for section: {section_id}") from None
