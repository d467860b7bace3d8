from __future__ import annotations

import asyncio
import datetime
import io
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from openai import APIStatusError
from openai import AsyncOpenAI
from openai import OpenAIError
from pydantic import BaseModel
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from app.core.config import Settings
from app.core.config import settings as default_settings
from app.core.exceptions import DocumentValidationError
from app.core.exceptions import ExtractorError
from app.core.exceptions import GenerationCancelledError
from app.core.exceptions import JSONParsingError
from app.core.exceptions import ProposalEngineError
from app.core.exceptions import ProtocolError
from app.core.exceptions import TransportError
from app.core.validation import validate_document_content
from app.models.analysis_models import DEFAULT_CONFIDENCE
from app.models.analysis_models import NOT_SPECIFIED
from app.models.analysis_models import AnalysisProgress
from app.models.analysis_models import AnalysisResult
from app.models.analysis_models import Deadline
from app.models.analysis_models import DesiredRequirement
from app.models.analysis_models import DocumentValidation
from app.models.analysis_models import EvaluationCriterion
from app.models.analysis_models import HiddenRequirement
from app.models.analysis_models import MandatoryRequirement
from app.models.analysis_models import OptionalRequirement
from app.models.analysis_models import RedFlag
from app.models.analysis_models import RiskFactor
from app.models.analysis_models import Stakeholder
from app.services.extractor import extract
from app.services.extractor import guard_corpus
from app.services.llm import ANALYSIS_SYSTEM_PROMPT
from app.services.llm import build_chat_request
from app.services.llm import create_openai_client
from app.services.llm import ensure_generation_enabled
from app.services.prompt_builder import render_template
from app.services.section_generator import notify

logger = logging.getLogger(__name__)

AnalysisProgressCallback = Callable[[AnalysisProgress], None]

ANALYSIS_TEMPLATE_NAME = "analysis_prompt.jinja2"
CANCELLED_MESSAGE = "Analysis cancelled"

# Expected reply shape. Dicts recurse, lists default to [], scalars are the neutral placeholder.
ANALYSIS_DEFAULTS: dict[str, Any] = {
    "criticalRequirementsMatrix": {"mandatory": [], "desired": [], "optional": [], "hidden": []},
    "evaluationCriteria": {
        "scoringMethodology": NOT_SPECIFIED,
        "criteria": [],
        "budgetIndicators": NOT_SPECIFIED,
        "riskFactors": [],
    },
    "strategicIntelligence": {
        "incumbentAdvantages": NOT_SPECIFIED,
        "politicalLandscape": NOT_SPECIFIED,
        "timelinePressures": NOT_SPECIFIED,
        "competitiveOpportunities": NOT_SPECIFIED,
        "confidence": DEFAULT_CONFIDENCE,
    },
    "winThemes": {
        "primaryValueDrivers": [],
        "painPoints": [],
        "keyDifferentiators": [],
        "requiredProofPoints": [],
        "confidence": DEFAULT_CONFIDENCE,
    },
    "redFlags": [],
    "deadlines": [],
    "stakeholders": [],
}

# Record type of each list in ANALYSIS_DEFAULTS, keyed by dotted path.
ANALYSIS_RECORDS: dict[str, type[BaseModel]] = {
    "criticalRequirementsMatrix.mandatory": MandatoryRequirement,
    "criticalRequirementsMatrix.desired": DesiredRequirement,
    "criticalRequirementsMatrix.optional": OptionalRequirement,
    "criticalRequirementsMatrix.hidden": HiddenRequirement,
    "evaluationCriteria.criteria": EvaluationCriterion,
    "evaluationCriteria.riskFactors": RiskFactor,
    "redFlags": RedFlag,
    "deadlines": Deadline,
    "stakeholders": Stakeholder,
}


# ---------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------


def _find_object_end(text: str, start: int) -> int | None:
    """Index of the brace closing the object opened at *start*, skipping braces inside strings."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first balanced ``{...}`` block in *text* that parses as a JSON object.

    Prose and markdown fences around the object are ignored. A candidate that fails
    to parse is skipped as a whole, so its nested objects are never returned instead.
    """
    if not text:
        raise JSONParsingError("Invalid JSON response from analysis: empty reply")

    start = text.find("{")
    while start != -1:
        end = _find_object_end(text, start)
        if end is None:
            # Unbalanced brace in prose; a later object may still be complete.
            start = text.find("{", start + 1)
            continue
        try:
            parsed = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable brace block at %d..%d", start, end)
        else:
            if isinstance(parsed, dict):
                return parsed
        start = text.find("{", end + 1)

    raise JSONParsingError("Invalid JSON response from analysis: no JSON object found")


# ---------------------------------------------------------------
# Default filling
# ---------------------------------------------------------------


def _fill(raw: Any, defaults: dict[str, Any], path: str, defaulted: list[str]) -> dict[str, Any]:
    source = raw if isinstance(raw, dict) else {}
    filled: dict[str, Any] = {}
    for key, default in defaults.items():
        dotted = f"{path}.{key}" if path else key
        value = source.get(key)
        if isinstance(default, dict):
            if isinstance(value, dict):
                filled[key] = _fill(value, default, dotted, defaulted)
            else:
                # Report the missing block once rather than every leaf under it.
                defaulted.append(dotted)
                filled[key] = _fill({}, default, dotted, [])
        elif isinstance(default, list):
            if isinstance(value, list):
                record_model = ANALYSIS_RECORDS.get(dotted)
                filled[key] = _fill_records(value, record_model, dotted, defaulted) if record_model else value
            else:
                defaulted.append(dotted)
                filled[key] = []
        elif isinstance(default, float):
            try:
                filled[key] = float(value)
            except (TypeError, ValueError):
                defaulted.append(dotted)
                filled[key] = default
        elif value is None or value == "":
            defaulted.append(dotted)
            filled[key] = default
        else:
            filled[key] = value
    return filled


def _fill_records(items: list[Any], model: type[BaseModel], path: str, defaulted: list[str]) -> list[dict]:
    """Drop non-object items and record each missing field the record model will back-fill.

    Fields that are optional by type (default ``None``) are left out: absence is their value.
    """
    records = [item for item in items if isinstance(item, dict)]
    for index, record in enumerate(records):
        for name, info in model.model_fields.items():
            if info.default is None:
                continue
            alias = to_camel(name)
            if record.get(alias, record.get(name)) is None:
                defaulted.append(f"{path}.{index}.{alias}")
    return records


def fill_analysis_defaults(raw: dict[str, Any]) -> AnalysisResult:
    """Back-fill every expected field of a parsed analysis and build the total result.

    The dotted path of each back-filled field is recorded in ``defaulted_fields``.
    """
    defaulted: list[str] = []
    filled = _fill(raw, ANALYSIS_DEFAULTS, "", defaulted)
    try:
        return AnalysisResult.model_validate({**filled, "defaultedFields": defaulted})
    except ValidationError as e:
        raise ProtocolError(f"Analysis reply has an unexpected structure: {e.error_count()} invalid fields") from e


def build_analysis_prompt(document_content: str, today: datetime.date | None = None) -> str:
    return render_template(
        ANALYSIS_TEMPLATE_NAME,
        document_content=document_content,
        today=(today or datetime.date.today()).isoformat(),
    )


# ---------------------------------------------------------------
# Service
# ---------------------------------------------------------------


@dataclass
class _AnalysisCall:
    request_id: str
    task: asyncio.Task | None = None
    aborted: bool = False


def _raise_if_aborted(call: _AnalysisCall) -> None:
    # A progress callback may cancel synchronously, before or after the request task exists.
    if call.aborted:
        raise asyncio.CancelledError


class DocumentAnalyzer:
    """Runs the structured RFP analysis: one non-streamed completion parsed into an AnalysisResult.

    Like SectionGenerator, an instance has one in-flight slot; a new call cancels the previous one.
    """

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        self._settings = settings or default_settings
        self._client = client or create_openai_client(self._settings)
        self._inflight: _AnalysisCall | None = None

    def validate_document_content(self, content: str | None) -> DocumentValidation:
        return validate_document_content(content, self._settings.min_document_chars)

    async def analyze_document(
        self,
        document_content: str,
        on_progress: AnalysisProgressCallback | None = None,
    ) -> AnalysisResult:
        ensure_generation_enabled(self._settings)
        self.cancel_analysis()

        call = _AnalysisCall(request_id=str(uuid4()))
        self._inflight = call
        logger.info("[%s] Starting document analysis (%d chars)", call.request_id, len(document_content or ""))

        try:
            validation = self.validate_document_content(document_content)
            if not validation.is_valid:
                raise DocumentValidationError(validation.error or "Invalid document content")

            notify(
                call.request_id,
                on_progress,
                AnalysisProgress(status="analyzing", progress=0, current_step="Preparing analysis..."),
            )
            prompt = build_analysis_prompt(document_content)
            _raise_if_aborted(call)
            call.task = asyncio.ensure_future(self._request_analysis(call, prompt))
            reply = await call.task

            notify(
                call.request_id,
                on_progress,
                AnalysisProgress(status="analyzing", progress=50, current_step="Processing analysis results..."),
            )
            _raise_if_aborted(call)
            parsed = extract_json_object(reply)

            notify(
                call.request_id,
                on_progress,
                AnalysisProgress(status="analyzing", progress=90, current_step="Finalizing results..."),
            )
            _raise_if_aborted(call)
            result = fill_analysis_defaults(parsed)
        except asyncio.CancelledError:
            self._emit_error(call, on_progress, CANCELLED_MESSAGE)
            current = asyncio.current_task()
            if call.aborted and (current is None or current.cancelling() == 0):
                logger.info("[%s] Document analysis cancelled", call.request_id)
                raise GenerationCancelledError(CANCELLED_MESSAGE) from None
            raise
        except ProposalEngineError as e:
            logger.error("[%s] Document analysis failed: %s", call.request_id, str(e), exc_info=False)
            self._emit_error(call, on_progress, str(e))
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error during document analysis", call.request_id)
            self._emit_error(call, on_progress, str(e) or type(e).__name__)
            raise ProtocolError(f"Document analysis failed: {str(e)}") from e
        finally:
            if self._inflight is call:
                self._inflight = None

        notify(
            call.request_id,
            on_progress,
            AnalysisProgress(status="completed", progress=100, current_step="Analysis complete"),
        )
        logger.info(
            "[%s] Document analysis complete: %d mandatory requirements, %d red flags, %d defaulted fields",
            call.request_id,
            len(result.critical_requirements_matrix.mandatory),
            len(result.red_flags),
            len(result.defaulted_fields),
        )
        return result

    async def analyze_document_from_file(
        self,
        filename: str,
        data: bytes,
        on_progress: AnalysisProgressCallback | None = None,
    ) -> AnalysisResult:
        """Extract text from an uploaded file, then analyze it.

        Extraction covers 0-10% of the reported progress; the analysis is rescaled into 10-100%.
        """
        ensure_generation_enabled(self._settings)
        request_id = str(uuid4())
        notify(
            request_id,
            on_progress,
            AnalysisProgress(status="analyzing", progress=0, current_step="Extracting text from file..."),
        )

        try:
            with io.BytesIO(data) as file_stream:
                content = await extract(filename, file_stream, request_id)
        except ExtractorError as e:
            notify(request_id, on_progress, AnalysisProgress(status="error", progress=0, error=str(e)))
            raise
        content = guard_corpus(content, self._settings.max_prompt_chars, request_id)

        notify(
            request_id,
            on_progress,
            AnalysisProgress(
                status="analyzing",
                progress=10,
                current_step="Text extraction complete, starting analysis...",
            ),
        )

        def _rescaled(update: AnalysisProgress) -> None:
            if on_progress is None:
                return
            if update.status == "error":
                on_progress(update)
                return
            on_progress(update.model_copy(update={"progress": round(10 + update.progress * 0.9)}))

        return await self.analyze_document(content, _rescaled)

    def cancel_analysis(self) -> bool:
        call = self._inflight
        if call is None:
            return False
        self._inflight = None
        call.aborted = True
        if call.task is not None:
            call.task.cancel()
        logger.info("[%s] Cancellation requested for document analysis", call.request_id)
        return True

    async def aclose(self) -> None:
        self.cancel_analysis()
        await self._client.close()

    def _emit_error(self, call: _AnalysisCall, on_progress: AnalysisProgressCallback | None, message: str) -> None:
        notify(call.request_id, on_progress, AnalysisProgress(status="error", progress=0, error=message))

    async def _request_analysis(self, call: _AnalysisCall, prompt: str) -> str:
        body = build_chat_request(
            self._settings,
            ANALYSIS_SYSTEM_PROMPT,
            prompt,
            max_tokens=self._settings.max_tokens,
            temperature=self._settings.analysis_temperature,
            stream=False,
        )
        logger.info("[%s] Making analysis API call with model: %s", call.request_id, self._settings.model_id)

        try:
            rsp = await self._client.chat.completions.create(**body)
        except APIStatusError as e:
            raise TransportError(f"OpenAI API error: {e.status_code} {e.message}", status_code=e.status_code) from e
        except OpenAIError as e:
            raise TransportError(f"OpenAI API error: {str(e)}") from e

        if not rsp or not getattr(rsp, "choices", None):
            raise ProtocolError("No analysis content received from OpenAI")
        message = rsp.choices[0].message
        content = getattr(message, "content", None) if message is not None else None
        if not content:
            raise ProtocolError("No analysis content received from OpenAI")

        logger.debug("[%s] Analysis reply received, length: %d chars", call.request_id, len(content))
        return content
