import io
import logging
from pathlib import Path
from uuid import uuid4

from fastapi import APIRouter
from fastapi import Depends
from fastapi import File
from fastapi import Form
from fastapi import HTTPException
from fastapi import Request
from fastapi import UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from pydantic import Field as PydanticField

from app.core.exceptions import ConfigurationError
from app.core.security import verify_api_key
from app.core.validation import ALLOWED_EXTENSIONS
from app.core.validation import MAX_FILE_SIZE
from app.generation_logic.stream_events import stream_batch_generation
from app.generation_logic.stream_events import stream_section_generation
from app.models.analysis_models import AnalysisResult
from app.models.analysis_models import DocumentValidation
from app.models.generation_models import GenerationContext
from app.models.generation_models import SectionTemplate
from app.services.document_analyzer import DocumentAnalyzer
from app.services.document_index import CompanyDocument
from app.services.document_index import CompanyDocumentIndex
from app.services.document_index import DocumentCategory
from app.services.document_index import DocumentSearchResult
from app.services.extractor import extract
from app.services.llm import retry_transient_failures
from app.services.orchestrator import MultiSectionOrchestrator
from app.services.section_generator import SectionGenerator
from app.services.section_templates import get_section_template
from app.services.section_templates import get_section_templates

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(verify_api_key)])


# --- Request bodies ---
class BatchGenerationPayload(BaseModel):
    section_ids: list[str] = PydanticField(..., min_length=1, description="Sections to generate, in order.")
    context: GenerationContext = PydanticField(default_factory=GenerationContext)


class DocumentContentPayload(BaseModel):
    content: str = PydanticField(..., description="Plain-text RFP content.")


# --- Service dependencies (created once per app in create_app) ---
def get_generator(request: Request) -> SectionGenerator:
    return request.app.state.generator


def get_orchestrator(request: Request) -> MultiSectionOrchestrator:
    return request.app.state.orchestrator


def get_analyzer(request: Request) -> DocumentAnalyzer:
    return request.app.state.analyzer


def get_document_index(request: Request) -> CompanyDocumentIndex:
    return request.app.state.document_index


def _lookup_template(section_id: str) -> SectionTemplate:
    try:
        return get_section_template(section_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


async def _read_upload(file: UploadFile, request_id: str) -> bytes:
    """Read an upload after checking its extension and size."""
    filename = file.filename or ""
    ext = Path(filename).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        logger.warning("[%s] Rejected upload '%s': unsupported extension", request_id, filename)
        raise HTTPException(status_code=415, detail=f"Unsupported file type: '{ext or filename}'")

    data = await file.read()
    if len(data) > MAX_FILE_SIZE:
        logger.warning("[%s] Rejected upload '%s': %d bytes", request_id, filename, len(data))
        raise HTTPException(status_code=413, detail=f"File too large: {filename}")
    return data


@retry_transient_failures()
async def _analyze_with_retry(analyzer: DocumentAnalyzer, content: str) -> AnalysisResult:
    return await analyzer.analyze_document(content)


# --- Sections ---
@router.get("/sections/templates", tags=["Sections"])
async def list_section_templates() -> list[SectionTemplate]:
    return list(get_section_templates().values())


@router.post("/sections/generate", tags=["Sections"])
async def generate_sections(
    payload: BatchGenerationPayload,
    orchestrator: MultiSectionOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Generate several sections one after another, streaming NDJSON events.

    Stream events:
    - `progress`: a GenerationProgress update for the current section.
    - `chunk`: a text delta, tagged with `section_id`.
    - `data`: every section's final text (or its error placeholder), keyed by id.
    - `error`: the batch could not run.
    - `finished`: always last.
    """
    sections = [(section_id, _lookup_template(section_id)) for section_id in payload.section_ids]
    return StreamingResponse(
        stream_batch_generation(orchestrator, sections, payload.context),
        media_type="application/x-ndjson",
    )


@router.post("/sections/cancel", tags=["Sections"])
async def cancel_generation(
    orchestrator: MultiSectionOrchestrator = Depends(get_orchestrator),
) -> dict[str, bool]:
    return {"cancelled": orchestrator.cancel()}


@router.post("/sections/{section_id}/generate", tags=["Sections"])
async def generate_section(
    section_id: str,
    context: GenerationContext,
    generator: SectionGenerator = Depends(get_generator),
) -> StreamingResponse:
    """Generate one section, streaming the same NDJSON events as the batch endpoint."""
    template = _lookup_template(section_id)
    return StreamingResponse(
        stream_section_generation(generator, section_id, template, context),
        media_type="application/x-ndjson",
    )


# --- Analysis ---
@router.post("/analysis", tags=["Analysis"])
async def analyze_document(
    payload: DocumentContentPayload,
    analyzer: DocumentAnalyzer = Depends(get_analyzer),
) -> AnalysisResult:
    """Structured analysis of plain-text RFP content. Rate limits and upstream 5xx are retried."""
    return await _analyze_with_retry(analyzer, payload.content)


@router.post("/analysis/file", tags=["Analysis"])
async def analyze_document_file(
    file: UploadFile = File(...),
    analyzer: DocumentAnalyzer = Depends(get_analyzer),
) -> AnalysisResult:
    request_id = str(uuid4())
    logger.info("[%s] /analysis/file called for '%s'", request_id, file.filename)
    data = await _read_upload(file, request_id)
    return await analyzer.analyze_document_from_file(file.filename or "", data)


@router.post("/analysis/validate", tags=["Analysis"])
async def validate_document(
    payload: DocumentContentPayload,
    analyzer: DocumentAnalyzer = Depends(get_analyzer),
) -> DocumentValidation:
    return analyzer.validate_document_content(payload.content)


# --- Company documents ---
@router.post("/documents", tags=["Documents"], status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    category: DocumentCategory = Form("other"),
    tags: str = Form(""),
    index: CompanyDocumentIndex = Depends(get_document_index),
) -> CompanyDocument:
    request_id = str(uuid4())
    data = await _read_upload(file, request_id)
    with io.BytesIO(data) as file_stream:
        content = await extract(file.filename or "", file_stream, request_id)
    return index.add_document(
        name=file.filename or "untitled",
        content=content,
        category=category,
        tags=tags.split(","),
    )


@router.get("/documents", tags=["Documents"])
async def list_documents(index: CompanyDocumentIndex = Depends(get_document_index)) -> list[CompanyDocument]:
    return index.get_all_documents()


@router.get("/documents/search", tags=["Documents"])
async def search_documents(
    q: str,
    category: DocumentCategory | None = None,
    index: CompanyDocumentIndex = Depends(get_document_index),
) -> list[DocumentSearchResult]:
    return index.search_documents(q, category)


@router.get("/documents/{document_id}", tags=["Documents"])
async def get_document(
    document_id: str,
    index: CompanyDocumentIndex = Depends(get_document_index),
) -> CompanyDocument:
    return index.get_document(document_id)


@router.delete("/documents/{document_id}", tags=["Documents"])
async def delete_document(
    document_id: str,
    index: CompanyDocumentIndex = Depends(get_document_index),
) -> dict[str, bool]:
    # Raises DocumentIndexError (404) for an unknown id.
    index.get_document(document_id)
    return {"deleted": index.delete_document(document_id)}
