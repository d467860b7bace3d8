import asyncio
import datetime
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock
from unittest.mock import Mock

import httpx
import pytest
from openai import APIConnectionError
from openai import APIStatusError
from pydantic import ValidationError

from app.core.exceptions import ConfigurationError
from app.core.exceptions import DocumentValidationError
from app.core.exceptions import ExtractorError
from app.core.exceptions import GenerationCancelledError
from app.core.exceptions import JSONParsingError
from app.core.exceptions import ProtocolError
from app.core.exceptions import TransportError
from app.services.document_analyzer import DocumentAnalyzer
from app.services.document_analyzer import build_analysis_prompt
from app.services.document_analyzer import extract_json_object
from app.services.document_analyzer import fill_analysis_defaults

RFP_TEXT = "The State Department of Revenue seeks a vendor to modernize its tax filing platform. " * 3

FULL_REPLY = {
    "criticalRequirementsMatrix": {
        "mandatory": [{"requirement": "SOC 2 Type II", "complianceMapping": "Section 4.2", "confidence": 0.95}],
        "desired": [{"requirement": "Cloud native", "weightScore": "15%", "confidence": 0.8}],
        "optional": [],
        "hidden": [{"requirement": "Prior state work", "evidence": "Reference list", "confidence": 0.6}],
    },
    "evaluationCriteria": {
        "scoringMethodology": "Best value",
        "criteria": [{"criterion": "Technical", "weight": "40%", "priority": "high", "confidence": 0.9}],
        "budgetIndicators": "$2-3M",
        "riskFactors": [{"factor": "Tight timeline", "severity": "high", "confidence": 0.7}],
    },
    "strategicIntelligence": {
        "incumbentAdvantages": "Incumbent built v1",
        "politicalLandscape": "Legislative mandate",
        "timelinePressures": "Go-live before tax season",
        "competitiveOpportunities": "Incumbent support complaints",
        "confidence": 0.75,
    },
    "winThemes": {
        "primaryValueDrivers": ["Faster refunds"],
        "painPoints": ["Legacy outages"],
        "keyDifferentiators": ["Proven migrations"],
        "requiredProofPoints": ["Two state references"],
        "confidence": 0.8,
    },
    "redFlags": [{"flag": "Unlimited liability", "severity": "critical", "impact": "Legal risk", "confidence": 0.9}],
    "deadlines": [{"task": "Proposal due", "date": "2026-11-30", "daysRemaining": 42, "urgency": "high"}],
    "stakeholders": [
        {"name": "J. Smith", "role": "CIO", "department": "IT", "influence": "high", "priorities": ["uptime"]}
    ],
}


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client(reply=None, side_effect=None):
    client = Mock()
    client.chat.completions.create = AsyncMock(return_value=_completion(reply), side_effect=side_effect)
    client.close = AsyncMock()
    return client


# ---------------------------------------------------------------------------
# extract_json_object
# ---------------------------------------------------------------------------


def test_extract_json_object_ignores_surrounding_prose():
    text = "Here is the analysis:\n```json\n" + json.dumps({"a": {"b": "}"}}) + "\n```\nLet me know!"
    assert extract_json_object(text) == {"a": {"b": "}"}}


def test_extract_json_object_handles_escaped_quotes_and_braces():
    obj = {"quote": 'He said "{not a brace}"', "n": [1, {"x": 2}]}
    assert extract_json_object("prefix " + json.dumps(obj) + " suffix {") == obj


def test_extract_json_object_skips_invalid_candidate():
    text = "Draft {not: valid} then final " + json.dumps({"ok": True})
    assert extract_json_object(text) == {"ok": True}


@pytest.mark.parametrize("text", ["", "no json at all", "{unterminated", "{'single': 'quotes'}"])
def test_extract_json_object_raises_when_nothing_parses(text):
    with pytest.raises(JSONParsingError):
        extract_json_object(text)


def test_extract_json_object_recovers_after_unbalanced_prose_brace():
    text = 'Note: fields use {placeholder syntax.\n{"stakeholders": []}\nDone.'
    assert extract_json_object(text) == {"stakeholders": []}


# ---------------------------------------------------------------------------
# fill_analysis_defaults
# ---------------------------------------------------------------------------


def test_full_reply_needs_no_defaults():
    result = fill_analysis_defaults(FULL_REPLY)
    assert result.defaulted_fields == []
    assert result.critical_requirements_matrix.mandatory[0].compliance_mapping == "Section 4.2"
    assert result.deadlines[0].days_remaining == 42
    assert result.strategic_intelligence.confidence == 0.75


def test_missing_stakeholders_default_to_empty_list():
    reply = {k: v for k, v in FULL_REPLY.items() if k != "stakeholders"}
    result = fill_analysis_defaults(reply)
    assert result.stakeholders == []
    assert result.defaulted_fields == ["stakeholders"]


def test_empty_reply_is_fully_defaulted():
    result = fill_analysis_defaults({})
    assert result.evaluation_criteria.scoring_methodology == "Not specified"
    assert result.strategic_intelligence.confidence == 0.5
    assert result.win_themes.confidence == 0.5
    assert result.red_flags == []
    assert "strategicIntelligence" in result.defaulted_fields
    assert "strategicIntelligence.confidence" not in result.defaulted_fields


def test_partial_block_records_dotted_paths():
    reply = {"strategicIntelligence": {"incumbentAdvantages": "None", "confidence": None}}
    result = fill_analysis_defaults(reply)
    assert result.strategic_intelligence.incumbent_advantages == "None"
    assert "strategicIntelligence.confidence" in result.defaulted_fields
    assert "strategicIntelligence.politicalLandscape" in result.defaulted_fields


def test_confidence_is_clamped_and_zero_is_kept():
    reply = {
        "strategicIntelligence": {"confidence": 1.7},
        "winThemes": {"confidence": 0},
        "redFlags": [{"flag": "x", "confidence": -3}],
    }
    result = fill_analysis_defaults(reply)
    assert result.strategic_intelligence.confidence == 1.0
    assert result.win_themes.confidence == 0.0
    assert "winThemes.confidence" not in result.defaulted_fields
    assert result.red_flags[0].confidence == 0.0


def test_malformed_list_items_are_dropped():
    result = fill_analysis_defaults({"redFlags": ["just a string", {"flag": "real"}], "deadlines": "soon"})
    assert [f.flag for f in result.red_flags] == ["real"]
    assert result.deadlines == []
    assert "deadlines" in result.defaulted_fields

def test_unusable_aggregate_confidence_is_defaulted_and_recorded():
    reply = {"strategicIntelligence": {"confidence": "high"}, "winThemes": {"confidence": "0.4"}}
    result = fill_analysis_defaults(reply)
    assert result.strategic_intelligence.confidence == 0.5
    assert "strategicIntelligence.confidence" in result.defaulted_fields
    assert result.win_themes.confidence == 0.4
    assert "winThemes.confidence" not in result.defaulted_fields


def test_missing_record_fields_are_recorded_by_index():
    reply = {
        "stakeholders": [
            "not a record",
            {"role": "CIO", "department": "IT", "influence": "high", "priorities": []},
        ],
        "deadlines": [{"task": "Proposal due", "date": "2026-11-30", "urgency": "high"}],
    }
    result = fill_analysis_defaults(reply)
    assert result.stakeholders[0].name == "Not specified"
    assert "stakeholders.0.name" in result.defaulted_fields
    assert "stakeholders.0.role" not in result.defaulted_fields
    # daysRemaining is optional by type, so its absence is not a back-fill.
    assert result.deadlines[0].days_remaining is None
    assert not any(path.startswith("deadlines.") for path in result.defaulted_fields)


def test_analysis_result_records_are_immutable():
    result = fill_analysis_defaults(FULL_REPLY)
    with pytest.raises(ValidationError):
        result.stakeholders[0].name = "Someone else"
    with pytest.raises(ValidationError):
        result.strategic_intelligence.confidence = 0.1


def test_analysis_prompt_contains_document_and_date():
    prompt = build_analysis_prompt("RFP BODY", today=datetime.date(2026, 10, 19))
    assert "RFP BODY" in prompt
    assert "2026-10-19" in prompt


# ---------------------------------------------------------------------------
# DocumentAnalyzer.analyze_document
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_analyze_document_with_prose_around_json(test_settings):
    client = _client("Sure! Here you go:\n" + json.dumps(FULL_REPLY) + "\nHope this helps.")
    analyzer = DocumentAnalyzer(test_settings, client)
    progress = []

    result = await analyzer.analyze_document(RFP_TEXT, progress.append)

    assert result.red_flags[0].flag == "Unlimited liability"
    assert [(p.status, p.progress, p.current_step) for p in progress] == [
        ("analyzing", 0, "Preparing analysis..."),
        ("analyzing", 50, "Processing analysis results..."),
        ("analyzing", 90, "Finalizing results..."),
        ("completed", 100, "Analysis complete"),
    ]
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["stream"] is False
    assert kwargs["temperature"] == 0.3
    assert kwargs["model"] == "test-model"
    assert RFP_TEXT.strip() in kwargs["messages"][1]["content"]


@pytest.mark.asyncio
async def test_analyze_document_without_json_fails(test_settings):
    analyzer = DocumentAnalyzer(test_settings, _client("I could not analyze this document."))
    progress = []

    with pytest.raises(JSONParsingError):
        await analyzer.analyze_document(RFP_TEXT, progress.append)

    assert progress[-1].status == "error"
    assert [p.status for p in progress].count("error") == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   \n  ", "too short!", None])
async def test_invalid_content_is_rejected_before_any_call(test_settings, content):
    client = _client("{}")
    analyzer = DocumentAnalyzer(test_settings, client)
    progress = []

    with pytest.raises(DocumentValidationError):
        await analyzer.analyze_document(content, progress.append)

    client.chat.completions.create.assert_not_called()
    assert [p.status for p in progress] == ["error"]


@pytest.mark.asyncio
async def test_empty_reply_raises_protocol_error(test_settings):
    analyzer = DocumentAnalyzer(test_settings, _client(None))
    with pytest.raises(ProtocolError, match="No analysis content received from OpenAI"):
        await analyzer.analyze_document(RFP_TEXT)


@pytest.mark.asyncio
async def test_api_status_error_becomes_transport_error(test_settings):
    response = httpx.Response(429, request=httpx.Request("POST", "https://llm.test/v1/chat/completions"))
    error = APIStatusError("Rate limit reached", response=response, body=None)
    analyzer = DocumentAnalyzer(test_settings, _client(side_effect=error))

    with pytest.raises(TransportError) as exc_info:
        await analyzer.analyze_document(RFP_TEXT)

    assert exc_info.value.status_code == 429
    assert str(exc_info.value).startswith("OpenAI API error: 429")


@pytest.mark.asyncio
async def test_connection_error_becomes_transport_error(test_settings):
    error = APIConnectionError(request=httpx.Request("POST", "https://llm.test/v1/chat/completions"))
    analyzer = DocumentAnalyzer(test_settings, _client(side_effect=error))

    with pytest.raises(TransportError) as exc_info:
        await analyzer.analyze_document(RFP_TEXT)
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_disabled_analysis_fails_fast(test_settings):
    client = _client("{}")
    analyzer = DocumentAnalyzer(test_settings.model_copy(update={"enable_ai_generation": False}), client)

    with pytest.raises(ConfigurationError):
        await analyzer.analyze_document(RFP_TEXT)
    client.chat.completions.create.assert_not_called()


@pytest.mark.asyncio
async def test_cancel_analysis(test_settings):
    started = asyncio.Event()

    async def _hang(**_kwargs):
        started.set()
        await asyncio.Event().wait()

    analyzer = DocumentAnalyzer(test_settings, _client(side_effect=_hang))
    progress = []

    task = asyncio.create_task(analyzer.analyze_document(RFP_TEXT, progress.append))
    await asyncio.wait_for(started.wait(), timeout=5)

    assert analyzer.cancel_analysis() is True
    with pytest.raises(GenerationCancelledError):
        await task
    assert progress[-1].status == "error"
    assert progress[-1].error == "Analysis cancelled"
    assert analyzer.cancel_analysis() is False


@pytest.mark.asyncio
async def test_cancel_from_progress_callback_skips_the_request(test_settings):
    client = _client(json.dumps(FULL_REPLY))
    analyzer = DocumentAnalyzer(test_settings, client)
    progress = []

    def _on_progress(update):
        progress.append(update)
        if update.progress == 0:
            analyzer.cancel_analysis()

    with pytest.raises(GenerationCancelledError):
        await analyzer.analyze_document(RFP_TEXT, _on_progress)

    client.chat.completions.create.assert_not_called()
    assert [p.status for p in progress] == ["analyzing", "error"]
    assert progress[-1].error == "Analysis cancelled"


@pytest.mark.asyncio
async def test_aclose_closes_client(test_settings):
    client = _client("{}")
    analyzer = DocumentAnalyzer(test_settings, client)
    await analyzer.aclose()
    client.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# DocumentAnalyzer.analyze_document_from_file
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_analyze_text_file_rescales_progress(test_settings):
    analyzer = DocumentAnalyzer(test_settings, _client(json.dumps(FULL_REPLY)))
    progress = []

    result = await analyzer.analyze_document_from_file("rfp.txt", RFP_TEXT.encode(), progress.append)

    assert result.stakeholders[0].role == "CIO"
    assert [p.progress for p in progress] == [0, 10, 10, 55, 91, 100]
    assert progress[0].current_step == "Extracting text from file..."
    assert progress[-1].status == "completed"


@pytest.mark.asyncio
async def test_analyze_unsupported_file(test_settings):
    client = _client("{}")
    analyzer = DocumentAnalyzer(test_settings, client)
    progress = []

    with pytest.raises(ExtractorError):
        await analyzer.analyze_document_from_file("rfp.xlsx", b"data", progress.append)

    assert [p.status for p in progress] == ["analyzing", "error"]
    client.chat.completions.create.assert_not_called()


@pytest.mark.asyncio
async def test_file_analysis_error_event_is_not_rescaled(test_settings):
    analyzer = DocumentAnalyzer(test_settings, _client("no json here"))
    progress = []

    with pytest.raises(JSONParsingError):
        await analyzer.analyze_document_from_file("rfp.md", RFP_TEXT.encode(), progress.append)

    assert progress[-1].status == "error"
    assert progress[-1].progress == 0
    assert [p.status for p in progress].count("error") == 1
