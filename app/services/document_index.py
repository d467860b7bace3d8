from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import datetime
from datetime import timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel
from pydantic import Field

from app.core.exceptions import DocumentIndexError

# Configure module logger
logger = logging.getLogger(__name__)

DocumentCategory = Literal["capabilities", "case-study", "certification", "team", "pricing", "technical", "other"]

MAX_EXCERPT_CHARS = 4000
MAX_EXCERPT_DOCUMENTS = 3
MAX_SOURCE_KEYWORDS = 10
SNIPPET_RADIUS = 100
MAX_SNIPPETS = 3

# Boost for documents whose category suits the section being written.
SECTION_CATEGORIES: dict[str, tuple[str, ...]] = {
    "executive-summary": ("capabilities", "case-study"),
    "company-overview": ("capabilities", "certification", "team"),
    "technical-approach": ("technical", "capabilities"),
    "project-timeline": ("technical", "case-study"),
    "team-structure": ("team",),
    "pricing": ("pricing",),
    "references": ("case-study",),
    "compliance": ("certification", "technical"),
}
CATEGORY_BOOST = 2

_STOPWORDS = frozenset(
    """
    a about above after all also an and any are as at be been being but by can could do does for from had has
    have how if in into is it its may more most must not of on or other our out over shall should so such than
    that the their them then there these they this those through to under up upon us was we were what when
    where which while who will with within would you your
    """.split()
)
_WORD_RE = re.compile(r"[a-z0-9][a-z0-9\-]*")


def _tokenize(text: str) -> list[str]:
    return [w for w in _WORD_RE.findall(text.lower()) if len(w) > 2 and w not in _STOPWORDS]


class CompanyDocument(BaseModel):
    id: str
    name: str
    category: DocumentCategory = "other"
    content: str
    tags: list[str] = Field(default_factory=list)
    uploaded_at: datetime


class DocumentSearchResult(BaseModel):
    document: CompanyDocument
    relevance: int
    matched_sections: list[str] = Field(default_factory=list)


class CompanyDocumentIndex:
    """In-memory store of company documents with keyword search.

    Feeds the "Relevant Company Information" block of section prompts.
    """

    def __init__(self) -> None:
        self._documents: dict[str, CompanyDocument] = {}

    def add_document(
        self,
        name: str,
        content: str,
        category: DocumentCategory = "other",
        tags: list[str] | None = None,
    ) -> CompanyDocument:
        document = CompanyDocument(
            id=str(uuid4()),
            name=name,
            category=category,
            content=content,
            tags=[t.strip() for t in (tags or []) if t and t.strip()],
            uploaded_at=datetime.now(timezone.utc),
        )
        self._documents[document.id] = document
        logger.info("Indexed company document '%s' (%s, %d chars)", name, category, len(content))
        return document

    def get_document(self, document_id: str) -> CompanyDocument:
        try:
            return self._documents[document_id]
        except KeyError:
            raise DocumentIndexError(f"Document not found: {document_id}") from None

    def get_all_documents(self) -> list[CompanyDocument]:
        return sorted(self._documents.values(), key=lambda d: d.uploaded_at, reverse=True)

    def delete_document(self, document_id: str) -> bool:
        removed = self._documents.pop(document_id, None)
        if removed is not None:
            logger.info("Removed company document '%s'", removed.name)
        return removed is not None

    def search_documents(self, query: str, category: DocumentCategory | None = None) -> list[DocumentSearchResult]:
        """Rank documents by keyword hits in name, tags and content, best first."""
        terms = _tokenize(query)
        if not terms:
            return []

        results: list[DocumentSearchResult] = []
        for document in self._documents.values():
            if category is not None and document.category != category:
                continue
            relevance = self._score(document, terms)
            if relevance > 0:
                results.append(
                    DocumentSearchResult(
                        document=document,
                        relevance=relevance,
                        matched_sections=self._snippets(document.content, terms),
                    )
                )

        results.sort(key=lambda r: r.relevance, reverse=True)
        logger.debug("Search for %r matched %d documents", query, len(results))
        return results

    def get_relevant_excerpt(self, source_content: str, section_id: str) -> str:
        """Concatenate the documents most relevant to *section_id* given the RFP text.

        Keywords come from the section id plus the most frequent significant words of
        *source_content*. Returns an empty string when nothing matches.
        """
        source_terms = [w for w, _ in Counter(_tokenize(source_content)).most_common(MAX_SOURCE_KEYWORDS)]
        terms = list(dict.fromkeys(_tokenize(section_id.replace("-", " ")) + source_terms))
        if not terms or not self._documents:
            return ""

        preferred = SECTION_CATEGORIES.get(section_id, ())
        scored: list[tuple[int, CompanyDocument]] = []
        for document in self._documents.values():
            relevance = self._score(document, terms)
            if relevance == 0:
                continue
            if document.category in preferred:
                relevance *= CATEGORY_BOOST
            scored.append((relevance, document))

        if not scored:
            return ""
        scored.sort(key=lambda pair: pair[0], reverse=True)

        parts = [f"[{doc.name}]\n{doc.content.strip()}" for _, doc in scored[:MAX_EXCERPT_DOCUMENTS]]
        excerpt = "\n\n".join(parts)
        if len(excerpt) > MAX_EXCERPT_CHARS:
            excerpt = excerpt[:MAX_EXCERPT_CHARS].rstrip() + "..."
        logger.debug(
            "Relevant excerpt for section %s: %d documents, %d chars",
            section_id,
            min(len(scored), MAX_EXCERPT_DOCUMENTS),
            len(excerpt),
        )
        return excerpt

    @staticmethod
    def _score(document: CompanyDocument, terms: list[str]) -> int:
        content_words = Counter(_tokenize(document.content))
        name_words = set(_tokenize(document.name))
        tag_words = {w for tag in document.tags for w in _tokenize(tag)}
        score = 0
        for term in terms:
            score += content_words.get(term, 0)
            if term in name_words:
                score += 5
            if term in tag_words:
                score += 3
        return score

    @staticmethod
    def _snippets(content: str, terms: list[str]) -> list[str]:
        lowered = content.lower()
        snippets: list[str] = []
        for term in terms:
            pos = lowered.find(term)
            if pos == -1:
                continue
            start = max(0, pos - SNIPPET_RADIUS)
            snippets.append(content[start : pos + len(term) + SNIPPET_RADIUS].strip())
            if len(snippets) >= MAX_SNIPPETS:
                break
        return snippets
