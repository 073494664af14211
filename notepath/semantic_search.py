"""
Semantic search over notes: embed text, look it up in a similarity index.
"""

import logging
from typing import Dict, Iterable, List

from notepath.models import NoteData, SemanticSearchResult
from notepath.similarity_index import DEFAULT_LIMIT, DEFAULT_THRESHOLD

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 2000


def note_embedding_text(note: NoteData) -> str:
    """Text embedded for a note: its title, then the start of its content."""
    return f"{note.basename}\n\n{note.content[:MAX_CONTENT_CHARS]}".strip()


class EmbeddingSemanticSearch:
    """Semantic search backed by an embedder and a similarity index.

    *index* is either a ``SimilarityIndex`` (filled via
    :meth:`index_notes`) or a ``CachedSimilarityIndex`` reading
    precomputed vectors.
    """

    def __init__(self, embedder, index):
        self.embedder = embedder
        self.index = index

    def is_available(self) -> bool:
        try:
            return self.index.size() > 0
        except Exception as exc:
            logger.warning("⚠ Similarity index unavailable: %s", exc)
            return False

    def index_notes(self, notes: Iterable[NoteData]) -> int:
        """Embed *notes* and store their vectors; returns how many were stored."""
        notes = list(notes)
        if not notes:
            return 0
        vectors = self.embedder.embed_texts([note_embedding_text(n) for n in notes])
        for note, vector in zip(notes, vectors):
            self.index.store(note.id, note.path, vector)
        logger.info("Indexed %d note(s) for semantic search.", len(notes))
        return len(notes)

    def find_similar_to_content(
        self,
        content: str,
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
        exclude_ids: Iterable[str] = (),
    ) -> List[SemanticSearchResult]:
        if not content.strip():
            return []
        query = self.embedder.embed(content)
        hits = self.index.search(
            query, limit=limit, threshold=threshold, exclude_ids=list(exclude_ids),
        )
        logger.debug("Search %r → %d hit(s).", content[:60], len(hits))
        return hits

    def find_notes_for_concepts(
        self,
        concepts: Iterable[str],
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
        exclude_ids: Iterable[str] = (),
    ) -> Dict[str, List[SemanticSearchResult]]:
        """Run one search per concept; the mapping keeps input order."""
        exclude_ids = list(exclude_ids)
        return {
            concept: self.find_similar_to_content(
                concept, limit=limit, threshold=threshold, exclude_ids=exclude_ids,
            )
            for concept in concepts
        }
