"""Defines constants for file upload validation and the document-content predicate."""

import logging

from app.models.analysis_models import DocumentValidation

logger = logging.getLogger(__name__)

# Allowed file extensions and size limits
ALLOWED_EXTENSIONS: set[str] = {".pdf", ".docx", ".txt", ".md"}
MAX_FILE_SIZE: int = 25 * 1024 * 1024  # 25 MB per file

DEFAULT_MIN_DOCUMENT_CHARS: int = 50


def validate_document_content(content: str | None, min_chars: int = DEFAULT_MIN_DOCUMENT_CHARS) -> DocumentValidation:
    """Check that *content* is worth sending to the model for analysis.

    Whitespace is stripped before measuring, so a padded short string is still too short.
    """
    if not content or not content.strip():
        return DocumentValidation(is_valid=False, error="Document content is empty")

    if len(content.strip()) < min_chars:
        logger.debug("Document content rejected: %d chars < %d", len(content.strip()), min_chars)
        return DocumentValidation(
            is_valid=False,
            error="Document content is too short for meaningful analysis",
        )

    return DocumentValidation(is_valid=True)
