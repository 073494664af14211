"""
Language-model adapter: prompts, response parsing, OpenAI-compatible client.

Two questions are asked of the model:

1. Which concepts does the goal note build on?  → ``ConceptExtraction``
2. In which order should these notes be read, how long does each take,
   and what is missing?                         → ``LearningPathAnalysis``

Answers are expected as JSON inside a fenced ```json block.  Parsing
falls back to the outermost ``{...}`` span; anything that still fails
to decode or validate raises ``MalformedModelResponse``.  Transport
failures (after retries) raise ``ExternalServiceUnavailable``.
"""

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from notepath.errors import ExternalServiceUnavailable, MalformedModelResponse
from notepath.models import (
    ConceptExtraction,
    LearningPathAnalysis,
    NoteData,
    prompt_titles,
)
from notepath.utils import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

GOAL_CONTENT_CHARS = 3000
ANALYSIS_GOAL_CHARS = 2000
RELATED_CONTENT_CHARS = 1500

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


# =========================================================================
# Prompts
# =========================================================================


def build_concept_extraction_prompt(goal: NoteData) -> str:
    return f"""You are an expert in knowledge graphs and learning design.

## Goal
Extract the prerequisite concepts someone must know to fully understand the note "{goal.basename}".

## Note Content
{goal.content[:GOAL_CONTENT_CHARS]}

## Response
Respond in JSON only:

```json
{{
  "mainTopic": "the core topic of this note, in one sentence",
  "prerequisites": [
    {{
      "concept": "prerequisite concept name",
      "description": "why this concept is needed (1-2 sentences)",
      "importance": "essential|helpful|optional"
    }}
  ],
  "keywords": ["keywords for searching related notes"]
}}
```

## Rules
1. essential: the note is hard to follow without it. helpful: it aids understanding. optional: background for advanced study.
2. Be specific: "recursive functions" rather than "programming".
3. Give 3-10 prerequisites and 5-15 keywords."""


def build_learning_path_prompt(
    goal: NoteData, related_notes: Sequence[NoteData]
) -> str:
    shown = prompt_titles(list(related_notes) + [goal])
    context = "\n\n".join(
        f"### {shown[n.id]}\n{n.content[:RELATED_CONTENT_CHARS]}"
        for n in related_notes
    )
    titles = ", ".join(shown[n.id] for n in related_notes)
    goal_title = shown[goal.id]
    return f"""You are an educational expert who designs learning paths.

## Goal
Suggest the best order for reading the notes below in order to understand "{goal_title}",
and list knowledge gaps: concepts needed for deep understanding that have no note yet.

## Goal Note Content
{goal.content[:ANALYSIS_GOAL_CHARS]}

## Related Notes
{context}

## Response
Respond in JSON only:

```json
{{
  "learningOrder": ["first note title", "next note title", "...", "{goal_title}"],
  "estimatedMinutes": {{"note title": 20}},
  "knowledgeGaps": [
    {{
      "concept": "missing concept",
      "reason": "why it is needed",
      "priority": "high|medium|low",
      "suggestedResources": ["books, courses or search keywords"]
    }}
  ]
}}
```

## Rules
1. Order from foundational to advanced; "{goal_title}" comes last.
2. Use exact titles from this list: {titles}
3. Estimates range from 5 to 60 minutes.
4. Only report gaps that are not covered by the listed notes."""


# =========================================================================
# Response parsing
# =========================================================================


def extract_json(text: Optional[str]) -> Dict[str, Any]:
    """Pull the JSON object out of a model reply.

    Raises:
        MalformedModelResponse: no decodable JSON object found.
    """
    if not text or not text.strip():
        raise MalformedModelResponse("Empty model response", text)

    match = _FENCED_JSON.search(text)
    if match:
        candidate = match.group(1)
    else:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise MalformedModelResponse("No JSON object in model response", text)
        candidate = text[start:end + 1]

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedModelResponse(f"Invalid JSON from model: {exc}", text) from exc
    if not isinstance(data, dict):
        raise MalformedModelResponse("Model JSON is not an object", text)
    return data


def parse_concept_extraction(text: str) -> ConceptExtraction:
    try:
        return ConceptExtraction.model_validate(extract_json(text))
    except ValidationError as exc:
        raise MalformedModelResponse(
            f"Unexpected concept extraction shape: {exc}", text
        ) from exc


def parse_learning_path_analysis(text: str) -> LearningPathAnalysis:
    try:
        return LearningPathAnalysis.model_validate(extract_json(text))
    except ValidationError as exc:
        raise MalformedModelResponse(
            f"Unexpected learning path analysis shape: {exc}", text
        ) from exc


# =========================================================================
# OpenAI-compatible chat model
# =========================================================================


class OpenAIChatModel:
    """Language model backed by an OpenAI-compatible chat completions API.

    Args:
        model: Chat model name.
        api_key: Defaults to ``$OPENAI_API_KEY``.
        base_url: Defaults to ``$OPENAI_BASE_URL`` (OpenAI if unset).
        client: Pre-built client (for testing); skips key checks.
        temperature: Sampling temperature.
        max_retries: Attempts per request before giving up.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[object] = None,
        temperature: float = 0.3,
        max_retries: int = 3,
    ):
        self.model = model
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.base_url = base_url or os.environ.get("OPENAI_BASE_URL")
        self.temperature = temperature
        self.max_retries = max_retries
        self._client = client

    def is_available(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise ExternalServiceUnavailable("llm")
            from openai import OpenAI

            client_kwargs = {"api_key": self.api_key}
            if self.base_url:
                client_kwargs["base_url"] = self.base_url
            self._client = OpenAI(**client_kwargs)
        return self._client

    def complete(self, prompt: str) -> str:
        """Send one user prompt, return the reply text."""
        client = self._get_client()

        def _call():
            return client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
            )

        try:
            response = retry_with_backoff(
                _call, max_retries=self.max_retries, base_delay=0.5, logger=logger,
            )
        except Exception as exc:
            raise ExternalServiceUnavailable("llm", exc) from exc

        text = response.choices[0].message.content or ""
        logger.debug("LLM reply (%d chars).", len(text))
        return text

    def extract_prerequisite_concepts(self, goal: NoteData) -> ConceptExtraction:
        extraction = parse_concept_extraction(
            self.complete(build_concept_extraction_prompt(goal))
        )
        logger.info(
            "LLM extracted %d concept(s), %d keyword(s) for '%s'.",
            len(extraction.prerequisites), len(extraction.keywords), goal.basename,
        )
        return extraction

    def analyze_notes_for_learning_path(
        self, goal: NoteData, related_notes: List[NoteData]
    ) -> LearningPathAnalysis:
        return parse_learning_path_analysis(
            self.complete(build_learning_path_prompt(goal, related_notes))
        )
