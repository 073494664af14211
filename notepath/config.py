"""
Generation settings and their JSON persistence.

The CLI builds a ``GenerationSettings`` from its flags, or applies a
saved JSON file via ``--config``; ``--save-config`` dumps the current
settings so a run can be reproduced.
"""

import json
import logging
import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "./data/notepath.db"


class GenerationSettings(BaseModel):
    """Tunables for path generation and the services around it."""

    model_config = ConfigDict(extra="forbid")

    # Semantic strategy
    semantic_limit: int = Field(default=5, ge=1)
    semantic_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    max_keywords: int = Field(default=5, ge=0)

    # Link strategy
    max_link_depth: int = Field(default=5, ge=0)
    link_direction: Literal["linker_first", "linked_first"] = "linker_first"
    link_confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    # Assembly
    default_minutes: int = Field(default=15, ge=1)

    # Services
    llm_model: str = "gpt-4o-mini"
    embedding_model: str = "all-MiniLM-L6-v2"
    cache_ttl_seconds: float = Field(default=60.0, gt=0)

    db_path: str = DEFAULT_DB_PATH


def load_settings(path: str) -> GenerationSettings:
    """Read settings from a JSON file; unknown keys are rejected."""
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    settings = GenerationSettings.model_validate(data)
    logger.info("Settings loaded from %s", path)
    return settings


def save_settings(settings: GenerationSettings, path: str) -> None:
    """Write *settings* as pretty-printed JSON to *path*."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(settings.model_dump_json(indent=2))
    logger.info("Config saved → %s", path)
