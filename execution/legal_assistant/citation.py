"""
Citation Formatting for Retrieved Chunks

Attaches document/chunk identity to every piece of evidence so replies can
be rendered with sources:

    [lease.pdf, chunk 3]
"""

import logging
from typing import Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"


@dataclass
class Citation:
    """Identity of one evidence chunk."""
    document_id: str
    chunk_index: int
    document_name: str
    relevance_score: float

    def short_format(self) -> str:
        """Short inline citation format."""
        return f"[{self.document_name}, chunk {self.chunk_index + 1}]"

    def to_dict(self) -> dict:
        return {
            "documentId": self.document_id,
            "chunkIndex": self.chunk_index,
            "documentName": self.document_name,
            "relevanceScore": round(self.relevance_score, 4),
            "shortCitation": self.short_format(),
        }


@dataclass
class CitedContent:
    """Content with its citation."""
    content: str
    citation: Citation


class CitationExtractor:
    """
    Builds citations for ranked chunks.

    Args:
        document_names: Optional mapping of document_id to display name
    """

    def __init__(self, document_names: Optional[dict] = None):
        self._document_names = document_names or {}

    def extract(self, ranked_chunks, document_names: Optional[dict] = None) -> list[CitedContent]:
        names = document_names or self._document_names
        cited = []
        for ranked in ranked_chunks:
            citation = Citation(
                document_id=ranked.document_id,
                chunk_index=ranked.chunk_index,
                document_name=names.get(ranked.document_id) or "Document",
                relevance_score=ranked.similarity,
            )
            cited.append(CitedContent(content=ranked.text, citation=citation))
        return cited

    def format_context(self, cited_contents: list[CitedContent]) -> str:
        """Numbered evidence block for the model prompt."""
        return CONTEXT_SEPARATOR.join(
            f"**[{i + 1}]** {cc.citation.short_format()}:\n{cc.content}"
            for i, cc in enumerate(cited_contents)
        )
