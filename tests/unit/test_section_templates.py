import pytest

from app.core.exceptions import ConfigurationError
from app.services.section_templates import get_section_template
from app.services.section_templates import get_section_templates

EXPECTED_BUDGETS = {
    "executive-summary": 800,
    "company-overview": 600,
    "technical-approach": 1200,
    "project-timeline": 800,
    "team-structure": 700,
    "pricing": 600,
    "references": 900,
    "compliance": 500,
}


def test_catalogue_ids_and_budgets():
    templates = get_section_templates()
    assert list(templates) == list(EXPECTED_BUDGETS)
    for section_id, template in templates.items():
        assert template.id == section_id
        assert template.max_tokens == EXPECTED_BUDGETS[section_id]


def test_placeholders_appear_at_most_once():
    for template in get_section_templates().values():
        assert template.prompt_template.count("{sectionType}") <= 1
        assert template.prompt_template.count("{templateName}") <= 1


def test_catalogue_is_a_copy():
    templates = get_section_templates()
    templates.pop("pricing")
    assert "pricing" in get_section_templates()


def test_unknown_template_raises():
    with pytest.raises(ConfigurationError, match="No template found for section: nope"):
        get_section_template("nope")
