"""
Learning path generation.

Given a goal note and a candidate note set, produce an ordered list of
notes to read first, plus the knowledge gaps found on the way.

Strategies, tried in order:

1. **semantic**: the language model extracts prerequisite concepts for
   the goal; each concept (and the top keywords) is looked up by semantic
   search; the model orders the matched notes.  Concepts nobody covers
   become knowledge gaps.
2. **link**: breadth-first walk back from the goal through the link
   graph, prerequisite relations derived from links, then ordered by the
   language model (``link_llm``) or by the dependency analyzer
   (``link_graph``).

Only "no notes" and "goal not found" fail the request.  Every other
problem becomes a warning on an otherwise successful result.
"""

import logging
import math
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from notepath import dependency_analyzer as analyzer
from notepath.config import GenerationSettings
from notepath.errors import (
    CircularDependency,
    GoalNotFound,
    NoMatchingNotes,
    NoNotesFound,
)
from notepath.learning_path import LearningNode, LearningPath, merge_knowledge_gaps
from notepath.models import (
    KnowledgeGapItem,
    LearningPathAnalysis,
    NoteData,
    prompt_titles,
    suggested_resources_for,
)
from notepath.relations import (
    DependencyRelation,
    LinkDirection,
    build_prerequisite_index,
    derive_link_relations,
)
from notepath.utils import generate_path_id, timed

logger = logging.getLogger(__name__)

CYCLE_WARNING = "Circular dependency detected. Some ordering may be arbitrary."

_GAP_PRIORITY = {"essential": "high", "helpful": "medium", "optional": "low"}


# =========================================================================
# Request / result
# =========================================================================


class GeneratePathRequest(BaseModel):
    goal_note_id: str = Field(min_length=1)
    folder: Optional[str] = None
    exclude_folders: List[str] = Field(default_factory=list)
    use_llm: bool = True


class GeneratePathResult(BaseModel):
    """Outcome of a generation request.

    ``success=False`` carries only ``error``.  On success ``levels`` lists
    groups of notes that can be studied in parallel.
    """

    success: bool
    error: Optional[str] = None
    path: Optional[LearningPath] = None
    nodes: List[LearningNode] = Field(default_factory=list)
    levels: List[List[str]] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    knowledge_gaps: List[KnowledgeGapItem] = Field(default_factory=list)
    total_analyzed_notes: int = 0
    strategy: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "GeneratePathResult":
        return cls(success=False, error=error)


@dataclass
class _Ordering:
    """What a strategy hands to assembly."""

    strategy: str
    order: List[str]
    relations: List[DependencyRelation] = field(default_factory=list)
    minutes: Dict[str, float] = field(default_factory=dict)


# =========================================================================
# Helpers (module-level so they can be tested alone)
# =========================================================================


def _title_resolver(candidates: Sequence[NoteData]) -> Callable[[str], Optional[str]]:
    """Map a title (or id) from a model answer back to a note id.

    The titles shown in the prompt win; a bare basename shared by several
    notes resolves to the first of them.
    """
    shown = prompt_titles(candidates)
    by_title: Dict[str, str] = {}
    for note in candidates:
        by_title.setdefault(shown[note.id], note.id)
    for note in candidates:
        first = by_title.setdefault(note.basename, note.id)
        if first != note.id:
            logger.debug(
                "Title %r is shared by %s and %s; %s is matched by path.",
                note.basename, first, note.id, note.id,
            )
    by_folded: Dict[str, str] = {}
    for title, note_id in by_title.items():
        by_folded.setdefault(title.casefold(), note_id)
    ids = {n.id for n in candidates}

    def resolve(name: str) -> Optional[str]:
        key = str(name).strip()
        if key in by_title:
            return by_title[key]
        if key in ids:
            return key
        return by_folded.get(key.casefold())

    return resolve


def validate_learning_order(
    learning_order: Iterable[str],
    candidates: Sequence[NoteData],
    goal: NoteData,
) -> List[str]:
    """Turn a model-proposed order of titles into note ids.

    Unknown titles are dropped, duplicates keep their first position and
    the goal is placed last whether or not the model listed it.
    """
    resolve = _title_resolver(list(candidates) + [goal])
    order: List[str] = []
    for name in learning_order:
        note_id = resolve(name)
        if note_id is None:
            logger.debug("Dropping unknown title from model order: %r", name)
            continue
        if note_id != goal.id and note_id not in order:
            order.append(note_id)
    order.append(goal.id)
    return order


def resolve_estimates(
    estimated_minutes: Mapping[str, float],
    candidates: Sequence[NoteData],
) -> Dict[str, float]:
    """Re-key a title → minutes mapping by note id; unknown titles dropped."""
    resolve = _title_resolver(candidates)
    minutes: Dict[str, float] = {}
    for name, value in estimated_minutes.items():
        note_id = resolve(name)
        if note_id is not None:
            minutes.setdefault(note_id, value)
    return minutes


def node_minutes(value: Optional[float], default: int) -> int:
    """Whole minutes for a node; *default* when missing, non-finite or below 1."""
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return default
    minutes = int(round(value))
    return minutes if minutes >= 1 else default


def collect_link_candidates(
    goal_id: str,
    prerequisite_index: Mapping[str, List[str]],
    max_depth: int = 5,
) -> List[str]:
    """Breadth-first walk back from the goal, at most *max_depth* hops.

    Returns the discovered note ids in discovery order, goal excluded.
    """
    visited = {goal_id}
    discovered: List[str] = []
    queue = deque([(goal_id, 0)])
    while queue:
        current, depth = queue.popleft()
        if depth >= max_depth:
            continue
        for prereq in prerequisite_index.get(current, []):
            if prereq in visited:
                continue
            visited.add(prereq)
            discovered.append(prereq)
            queue.append((prereq, depth + 1))
    return discovered


def compute_levels(
    order: List[str], relations: Iterable[DependencyRelation]
) -> List[List[str]]:
    """Parallel-learnable groups over *order*, or one group if that fails."""
    G = analyzer.build_graph(order, relations)
    try:
        return analyzer.get_levels(G)
    except CircularDependency:
        return [list(order)]


# =========================================================================
# Generator
# =========================================================================


class PathGenerator:
    """Builds and stores learning paths.

    Args:
        note_source: Provides the candidate notes.
        path_store: Receives every generated path.
        language_model: Optional; enables the semantic strategy and
            model-assisted ordering.
        semantic_search: Optional; enables the semantic strategy.
        settings: Tunables; defaults to ``GenerationSettings()``.
        id_factory: Produces path ids.
    """

    def __init__(
        self,
        note_source,
        path_store,
        language_model=None,
        semantic_search=None,
        settings: Optional[GenerationSettings] = None,
        id_factory: Callable[[], str] = generate_path_id,
    ):
        self.note_source = note_source
        self.path_store = path_store
        self.language_model = language_model
        self.semantic_search = semantic_search
        self.settings = settings or GenerationSettings()
        self.id_factory = id_factory

    # --- availability ----------------------------------------------------

    def _llm_available(self, request: GeneratePathRequest) -> bool:
        if not request.use_llm or self.language_model is None:
            return False
        return bool(self.language_model.is_available())

    def _semantic_available(self) -> bool:
        return self.semantic_search is not None and bool(
            self.semantic_search.is_available()
        )

    # --- entry point -----------------------------------------------------

    def generate(self, request: GeneratePathRequest) -> GeneratePathResult:
        try:
            notes = self._load_notes(request)
            goal = self._find_goal(notes, request.goal_note_id)
        except (NoNotesFound, GoalNotFound) as exc:
            logger.warning("⚠ Path generation failed: %s", exc)
            return GeneratePathResult.failure(str(exc))

        warnings: List[str] = []
        gaps: List[KnowledgeGapItem] = []
        use_llm = self._llm_available(request)
        ordering: Optional[_Ordering] = None

        if use_llm and self._semantic_available():
            try:
                with timed("Semantic strategy"):
                    ordering = self._semantic_strategy(goal, notes, gaps, warnings)
            except NoMatchingNotes:
                warnings.append(
                    "No related notes found by semantic search. "
                    "Falling back to link-based analysis."
                )
                logger.info("Semantic strategy found no notes; using links.")
            except Exception as exc:
                warnings.append(
                    f"Semantic analysis failed ({exc}). "
                    "Falling back to link-based analysis."
                )
                logger.warning("⚠ Semantic strategy failed: %s", exc, exc_info=True)
        else:
            logger.info(
                "Semantic strategy skipped (llm=%s, semantic_search=%s).",
                use_llm, self._semantic_available(),
            )

        if ordering is None:
            with timed("Link strategy"):
                ordering = self._link_strategy(goal, notes, use_llm, gaps, warnings)

        return self._assemble(goal, notes, ordering, gaps, warnings)

    # --- input -----------------------------------------------------------

    def _load_notes(self, request: GeneratePathRequest) -> List[NoteData]:
        notes = self.note_source.get_all_notes(
            request.folder, request.exclude_folders
        )
        if not notes:
            raise NoNotesFound("No notes found")
        logger.info("📄 %d candidate note(s) loaded.", len(notes))
        return list(notes)

    @staticmethod
    def _find_goal(notes: List[NoteData], goal_id: str) -> NoteData:
        for note in notes:
            if note.id == goal_id:
                return note
        raise GoalNotFound(goal_id)

    # --- semantic strategy -----------------------------------------------

    def _semantic_strategy(
        self,
        goal: NoteData,
        notes: List[NoteData],
        gaps: List[KnowledgeGapItem],
        warnings: List[str],
    ) -> _Ordering:
        s = self.settings
        by_id = {n.id: n for n in notes}

        extraction = self.language_model.extract_prerequisite_concepts(goal)

        matched: "OrderedDict[str, NoteData]" = OrderedDict()

        def search(text: str) -> List[str]:
            hits = self.semantic_search.find_similar_to_content(
                text,
                limit=s.semantic_limit,
                threshold=s.semantic_threshold,
                exclude_ids=[goal.id],
            )
            found = []
            for hit in hits:
                note = by_id.get(hit.note_id)
                if note is None or note.id == goal.id:
                    continue
                matched.setdefault(note.id, note)
                found.append(note.id)
            return found

        for prereq in extraction.prerequisites:
            found = search(prereq.concept)
            logger.debug("Concept %r matched %d note(s).", prereq.concept, len(found))
            if not found and prereq.importance in ("essential", "helpful"):
                gaps.append(KnowledgeGapItem(
                    concept=prereq.concept,
                    reason=prereq.description or "No existing note covers this concept.",
                    priority=_GAP_PRIORITY[prereq.importance],
                    suggested_resources=suggested_resources_for(prereq.concept),
                ))
        for keyword in extraction.keywords[:s.max_keywords]:
            search(keyword)

        if not matched:
            raise NoMatchingNotes(f"No notes matched concepts for '{goal.id}'")
        logger.info("Semantic search matched %d note(s).", len(matched))

        candidates = list(matched.values())
        node_ids = list(matched) + [goal.id]
        relations = derive_link_relations(
            notes, node_ids, LinkDirection(s.link_direction), s.link_confidence,
        )

        try:
            analysis = self.language_model.analyze_notes_for_learning_path(
                goal, candidates
            )
        except Exception as exc:
            warnings.append(f"AI ordering failed ({exc}). Using discovery order.")
            logger.warning("⚠ LLM ordering failed: %s", exc)
            return _Ordering("semantic", node_ids, relations)

        return self._ordering_from_analysis(
            "semantic", analysis, candidates, goal, relations, gaps
        )

    def _ordering_from_analysis(
        self,
        strategy: str,
        analysis: LearningPathAnalysis,
        candidates: List[NoteData],
        goal: NoteData,
        relations: List[DependencyRelation],
        gaps: List[KnowledgeGapItem],
    ) -> _Ordering:
        order = validate_learning_order(analysis.learning_order, candidates, goal)
        minutes = resolve_estimates(analysis.estimated_minutes, candidates + [goal])
        gaps[:] = merge_knowledge_gaps(gaps, analysis.knowledge_gaps)
        return _Ordering(strategy, order, relations, minutes)

    # --- link strategy ---------------------------------------------------

    def _link_strategy(
        self,
        goal: NoteData,
        notes: List[NoteData],
        use_llm: bool,
        gaps: List[KnowledgeGapItem],
        warnings: List[str],
    ) -> _Ordering:
        s = self.settings
        direction = LinkDirection(s.link_direction)
        by_id = {n.id: n for n in notes}

        index = build_prerequisite_index(notes, direction)
        candidate_ids = collect_link_candidates(goal.id, index, s.max_link_depth)
        node_ids = candidate_ids + [goal.id]
        relations = derive_link_relations(notes, node_ids, direction, s.link_confidence)
        logger.info(
            "Link walk found %d prerequisite note(s), %d relation(s).",
            len(candidate_ids), len(relations),
        )

        if not candidate_ids:
            warnings.append("No linked prerequisite notes found for the goal.")
            return _Ordering("link_graph", [goal.id], relations)

        if use_llm:
            candidates = [by_id[i] for i in candidate_ids]
            try:
                analysis = self.language_model.analyze_notes_for_learning_path(
                    goal, candidates
                )
            except Exception as exc:
                warnings.append(
                    f"AI ordering failed ({exc}). Using link graph order."
                )
                logger.warning("⚠ LLM ordering failed: %s", exc)
            else:
                return self._ordering_from_analysis(
                    "link_llm", analysis, candidates, goal, relations, gaps
                )

        G = analyzer.build_graph(node_ids, relations)
        if analyzer.detect_cycle(G):
            warnings.append(CYCLE_WARNING)
            order = analyzer.cycle_tolerant_sort(G)
        else:
            order = analyzer.topological_sort(G)
        return _Ordering("link_graph", order, relations)

    # --- assembly --------------------------------------------------------

    def _assemble(
        self,
        goal: NoteData,
        notes: List[NoteData],
        ordering: _Ordering,
        gaps: List[KnowledgeGapItem],
        warnings: List[str],
    ) -> GeneratePathResult:
        by_id = {n.id: n for n in notes}
        order = [i for i in ordering.order if i != goal.id and i in by_id] + [goal.id]

        default = self.settings.default_minutes
        nodes = []
        for note_id in order:
            note = by_id[note_id]
            nodes.append(LearningNode(
                note_id=note.id,
                note_path=note.path,
                title=note.basename,
                estimated_minutes=node_minutes(ordering.minutes.get(note_id), default),
                dependencies=[
                    r for r in ordering.relations if r.target_id == note_id
                ],
            ))

        path = LearningPath.create(
            id=self.id_factory(),
            goal_note_id=goal.id,
            goal_note_title=goal.basename,
            nodes=nodes,
            knowledge_gaps=gaps,
            total_analyzed_notes=len(notes),
        )
        if path.has_circular_dependency() and CYCLE_WARNING not in warnings:
            warnings.append(CYCLE_WARNING)

        levels = compute_levels(order, ordering.relations)

        self.path_store.save(path)
        logger.info(
            "✅ Path %s for '%s': %d node(s), %d gap(s), %d warning(s), strategy=%s",
            path.id, goal.basename, len(path.nodes), len(path.knowledge_gaps),
            len(warnings), ordering.strategy,
        )
        return GeneratePathResult(
            success=True,
            path=path,
            nodes=list(path.nodes),
            levels=levels,
            warnings=warnings,
            knowledge_gaps=list(path.knowledge_gaps),
            total_analyzed_notes=len(notes),
            strategy=ordering.strategy,
        )


def generate_learning_path(
    goal_note_id: str,
    note_source,
    path_store,
    language_model=None,
    semantic_search=None,
    settings: Optional[GenerationSettings] = None,
    folder: Optional[str] = None,
    exclude_folders: Iterable[str] = (),
    use_llm: bool = True,
) -> GeneratePathResult:
    """One-shot convenience wrapper around ``PathGenerator.generate``."""
    generator = PathGenerator(
        note_source,
        path_store,
        language_model=language_model,
        semantic_search=semantic_search,
        settings=settings,
    )
    return generator.generate(GeneratePathRequest(
        goal_note_id=goal_note_id,
        folder=folder,
        exclude_folders=list(exclude_folders),
        use_llm=use_llm,
    ))
