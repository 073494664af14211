"""
Progress tracking on stored learning paths.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from notepath.learning_path import LearningPath, MasteryLevel
from notepath.models import PathStatistics

logger = logging.getLogger(__name__)

NEXT_RECOMMENDED_LIMIT = 3


class UpdateProgressResult(BaseModel):
    success: bool
    error: Optional[str] = None
    path: Optional[LearningPath] = None
    statistics: Optional[PathStatistics] = None
    next_recommended: List[str] = Field(default_factory=list)

    @classmethod
    def failure(cls, error: str) -> "UpdateProgressResult":
        return cls(success=False, error=error)


def next_recommended_nodes(
    path: LearningPath, limit: int = NEXT_RECOMMENDED_LIMIT
) -> List[str]:
    """Up to *limit* note ids to study next.

    The current in-progress node comes first, then not-started nodes in
    path order.
    """
    recommended: List[str] = []
    current = path.get_current_node()
    if current is not None and current.is_in_progress():
        recommended.append(current.note_id)
    for node in path.get_not_started_nodes():
        if len(recommended) >= limit:
            break
        recommended.append(node.note_id)
    return recommended[:limit]


def update_progress(
    path_store,
    progress_store,
    path_id: str,
    node_id: str,
    level: MasteryLevel,
) -> UpdateProgressResult:
    """Move one node of a stored path to *level* and persist the change."""
    path = path_store.find_by_id(path_id)
    if path is None:
        return UpdateProgressResult.failure(f"Learning path not found: {path_id}")
    if path.get_node(node_id) is None:
        return UpdateProgressResult.failure(
            f"Node not found in path: {node_id}"
        )

    level = MasteryLevel(level)
    now = datetime.now(timezone.utc)
    updated = path.update_node_progress(node_id, level, now=now)
    # A completed node asked to start learning stays completed.
    effective = updated.get_node(node_id).mastery_level

    progress_store.update_progress(node_id, effective)
    if not effective.is_not_started():
        progress_store.update_last_studied(node_id, now)
    if level.is_completed():
        progress_store.increment_study_count(node_id)

    path_store.save(updated)
    stats = updated.get_statistics()
    logger.info(
        "Progress %s/%s → %s (%s)", path_id, node_id, effective.value,
        stats.to_display_string(),
    )
    return UpdateProgressResult(
        success=True,
        path=updated,
        statistics=stats,
        next_recommended=next_recommended_nodes(updated),
    )


def reset_path_progress(path_store, progress_store, path_id: str) -> UpdateProgressResult:
    """Reset every node of a stored path to not started."""
    path = path_store.find_by_id(path_id)
    if path is None:
        return UpdateProgressResult.failure(f"Learning path not found: {path_id}")

    updated = path.reset_all_progress()
    for node in updated.nodes:
        progress_store.reset_progress(node.note_id)
    path_store.save(updated)
    logger.info("Progress reset for path %s.", path_id)
    return UpdateProgressResult(
        success=True,
        path=updated,
        statistics=updated.get_statistics(),
        next_recommended=next_recommended_nodes(updated),
    )
