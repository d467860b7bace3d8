import asyncio
import io
import logging
from typing import BinaryIO

import pdfplumber
from docx import Document

from app.core.exceptions import ExtractorError

# Configure module logger
logger = logging.getLogger(__name__)

TEXT_ENCODINGS = ("utf-8", "cp1252", "latin-1")


async def _pdf_to_text(f: BinaryIO, fname: str, request_id: str) -> str:
    """Extract text from a PDF file with pdfplumber. Scanned PDFs without a text layer yield ''."""

    def _sync_pdf_extraction(file_bytes: bytes) -> str:
        buffer = io.BytesIO(file_bytes)
        with pdfplumber.open(buffer) as pdf:
            page_texts = []
            for p in pdf.pages:
                text_content = p.extract_text()
                if text_content is not None:
                    page_texts.append(text_content)
        text = "\n".join(page_texts)
        logger.debug("[%s] PDF: pdfplumber extracted %d chars from '%s'", request_id, len(text), fname)
        return text

    try:
        f.seek(0)
        pdf_bytes = await asyncio.to_thread(f.read)
        return await asyncio.to_thread(_sync_pdf_extraction, pdf_bytes)
    except Exception as e:
        logger.error("[%s] PDF: Failed to extract text from '%s': %s", request_id, fname, str(e), exc_info=True)
        raise ExtractorError(f"Failed to extract text from PDF: {fname}") from e


async def _docx_to_text(f: BinaryIO, fname: str, request_id: str) -> str:
    """Extract text from DOCX file."""

    def _sync_docx_extraction(file_bytes: bytes) -> str:
        buffer = io.BytesIO(file_bytes)
        doc = Document(buffer)
        text = "\n".join(p.text for p in doc.paragraphs)
        logger.debug("[%s] DOCX: Extracted %d chars from DOCX '%s'", request_id, len(text), fname)
        return text

    try:
        f.seek(0)
        file_bytes = await asyncio.to_thread(f.read)
        return await asyncio.to_thread(_sync_docx_extraction, file_bytes)
    except Exception as e:
        logger.error("[%s] DOCX: Failed to extract text from DOCX '%s': %s", request_id, fname, str(e), exc_info=True)
        raise ExtractorError(f"Failed to extract text from DOCX: {fname}") from e


def _decode_text(data: bytes, fname: str, request_id: str) -> str:
    for encoding in TEXT_ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            logger.debug("[%s] TEXT: '%s' is not valid %s", request_id, fname, encoding)
    raise ExtractorError(f"Failed to decode text file: {fname}")


async def extract(fname: str, f: BinaryIO, request_id: str) -> str:
    """Extract text from a file based on its extension."""
    ext = fname.lower().rsplit(".", 1)[-1] if "." in fname else ""
    logger.info("[%s] EXTRACT_MAIN: Starting extraction for file: '%s' (type: %s)", request_id, fname, ext)

    try:
        if ext == "pdf":
            extracted_text = await _pdf_to_text(f, fname, request_id)
        elif ext == "docx":
            extracted_text = await _docx_to_text(f, fname, request_id)
        elif ext in {"txt", "md"}:
            f.seek(0)
            extracted_text = _decode_text(f.read(), fname, request_id)
        else:
            logger.warning(
                "[%s] EXTRACT_MAIN: Unsupported file type '%s' for file '%s'.",
                request_id,
                ext,
                fname,
            )
            raise ExtractorError(f"Unsupported file type: '{ext}' for file '{fname}'")

        logger.info(
            "[%s] EXTRACT_MAIN: Successfully processed file '%s' (type: %s). Final extracted chars: %d",
            request_id,
            fname,
            ext.upper(),
            len(extracted_text.strip()),
        )
        return extracted_text

    except ExtractorError:
        logger.error("[%s] EXTRACT_MAIN: Extraction failed for '%s' due to a caught ExtractorError.", request_id, fname)
        raise
    except Exception as e:
        logger.exception("[%s] EXTRACT_MAIN: Unexpected critical error during text extraction for file: '%s'", request_id, fname)
        raise ExtractorError(f"Unexpected critical failure to process file: {fname}") from e


def guard_corpus(corpus: str, max_chars: int, request_id: str) -> str:
    """Ensure extracted text doesn't exceed *max_chars*."""
    original_len = len(corpus)

    if original_len > max_chars:
        logger.warning(
            "[%s] CORPUS_GUARD: Corpus exceeds max length (%d > %d), truncating",
            request_id,
            original_len,
            max_chars,
        )
        return corpus[:max_chars] + "\n\n[TEXT TRUNCATED TO FIT THE PROMPT LIMIT]"

    logger.debug("[%s] CORPUS_GUARD: Corpus length OK: %d chars", request_id, original_len)
    return corpus
