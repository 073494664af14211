"""
Command-line entry point.

Usage::

    python -m notepath.cli index    --notes vault.json
    python -m notepath.cli generate --notes vault.json --goal bayes-rule
    python -m notepath.cli progress --path-id path-... --node priors --level completed
    python -m notepath.cli show     --path-id path-...

``--config`` applies a saved settings JSON; ``--save-config`` writes the
effective settings and exits.
"""

import argparse
import logging
import sys

from notepath.config import GenerationSettings, load_settings, save_settings
from notepath.db import (
    SqlitePathStore,
    SqliteProgressStore,
    embeddings_loader,
    get_connection,
    migrate_db,
    save_note_embeddings,
)
from notepath.learning_path import LearningPath, MasteryLevel
from notepath.utils import setup_logging, timed

logger = logging.getLogger(__name__)

# Flags that map one-to-one onto GenerationSettings fields.
_SETTING_FLAGS = (
    "db_path", "semantic_limit", "semantic_threshold", "max_keywords",
    "max_link_depth", "link_direction", "default_minutes", "llm_model",
    "embedding_model",
)


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="python -m notepath.cli",
        description="Build ordered learning paths from interlinked notes.",
    )
    parser.add_argument("--db", dest="db_path", default=None)
    parser.add_argument(
        "--config", type=str, default=None,
        help="Apply a saved settings JSON.",
    )
    parser.add_argument(
        "--save-config", type=str, default=None,
        help="Save the effective settings to a JSON file and exit.",
    )
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command")

    p_index = sub.add_parser("index", help="Embed notes for semantic search.")
    p_index.add_argument("--notes", required=True, help="JSON note export.")
    p_index.add_argument("--embedding-model", default=None)

    p_gen = sub.add_parser("generate", help="Generate a learning path.")
    p_gen.add_argument("--notes", required=True, help="JSON note export.")
    p_gen.add_argument("--goal", required=True, help="Goal note id.")
    p_gen.add_argument("--folder", default=None)
    p_gen.add_argument("--exclude", action="append", default=[])
    p_gen.add_argument("--no-llm", action="store_true")
    p_gen.add_argument("--semantic-limit", type=int, default=None)
    p_gen.add_argument("--semantic-threshold", type=float, default=None)
    p_gen.add_argument("--max-keywords", type=int, default=None)
    p_gen.add_argument("--max-link-depth", type=int, default=None)
    p_gen.add_argument(
        "--link-direction", choices=["linker_first", "linked_first"], default=None,
    )
    p_gen.add_argument("--default-minutes", type=int, default=None)
    p_gen.add_argument("--llm-model", default=None)
    p_gen.add_argument("--embedding-model", default=None)

    p_prog = sub.add_parser("progress", help="Update a node's mastery level.")
    p_prog.add_argument("--path-id", required=True)
    p_prog.add_argument("--node", default=None, help="Note id of the node.")
    p_prog.add_argument(
        "--level", choices=[m.value for m in MasteryLevel], default=None,
    )
    p_prog.add_argument("--reset", action="store_true", help="Reset all nodes.")

    p_show = sub.add_parser("show", help="Print a stored path.")
    group = p_show.add_mutually_exclusive_group(required=True)
    group.add_argument("--path-id", default=None)
    group.add_argument("--goal", default=None, help="Latest path for this goal.")

    return parser.parse_args(argv)


def _build_settings(args) -> GenerationSettings:
    settings = load_settings(args.config) if args.config else GenerationSettings()
    overrides = {
        name: getattr(args, name)
        for name in _SETTING_FLAGS
        if getattr(args, name, None) is not None
    }
    if overrides:
        settings = GenerationSettings.model_validate(
            {**settings.model_dump(), **overrides}
        )
    return settings


def _print_path(path: LearningPath) -> None:
    print(f"Path {path.id}: {path.to_display_string()}")
    for node in path.nodes:
        print(f"  {node.to_display_string()}  ({node.estimated_minutes} min)")
    for gap in path.knowledge_gaps:
        print(f"  [gap/{gap.priority}] {gap.concept}: {gap.reason}")


# =========================================================================
# Commands
# =========================================================================


def _cmd_index(args, settings: GenerationSettings) -> int:
    from notepath.embeddings.embedder import SentenceTransformerEmbedder
    from notepath.note_source import JsonNoteSource
    from notepath.semantic_search import note_embedding_text

    notes = JsonNoteSource.from_file(args.notes).get_all_notes()
    embedder = SentenceTransformerEmbedder(settings.embedding_model)
    with timed("Note embedding"):
        vectors = embedder.embed_texts([note_embedding_text(n) for n in notes])

    migrate_db(settings.db_path)
    conn = get_connection(settings.db_path)
    try:
        n = save_note_embeddings(
            conn, [(note.id, note.path, vec) for note, vec in zip(notes, vectors)]
        )
    finally:
        conn.close()
    print(f"Indexed {n} note(s) into {settings.db_path}")
    return 0


def _cmd_generate(args, settings: GenerationSettings) -> int:
    from notepath.embeddings.embedder import SentenceTransformerEmbedder
    from notepath.llm import OpenAIChatModel
    from notepath.note_source import JsonNoteSource
    from notepath.path_generator import GeneratePathRequest, PathGenerator
    from notepath.semantic_search import EmbeddingSemanticSearch
    from notepath.similarity_index import CachedSimilarityIndex

    language_model = None
    semantic_search = None
    if not args.no_llm:
        language_model = OpenAIChatModel(model=settings.llm_model)
        semantic_search = EmbeddingSemanticSearch(
            SentenceTransformerEmbedder(settings.embedding_model),
            CachedSimilarityIndex(
                embeddings_loader(settings.db_path),
                ttl_seconds=settings.cache_ttl_seconds,
            ),
        )

    generator = PathGenerator(
        JsonNoteSource.from_file(args.notes),
        SqlitePathStore(settings.db_path),
        language_model=language_model,
        semantic_search=semantic_search,
        settings=settings,
    )
    result = generator.generate(GeneratePathRequest(
        goal_note_id=args.goal,
        folder=args.folder,
        exclude_folders=args.exclude,
        use_llm=not args.no_llm,
    ))
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    _print_path(result.path)
    print(f"Strategy: {result.strategy}")
    for i, level in enumerate(result.levels, start=1):
        print(f"  Level {i}: {', '.join(level)}")
    for warning in result.warnings:
        print(f"Warning: {warning}")
    return 0


def _cmd_progress(args, settings: GenerationSettings) -> int:
    from notepath.progress import reset_path_progress, update_progress

    path_store = SqlitePathStore(settings.db_path)
    progress_store = SqliteProgressStore(settings.db_path)
    if args.reset:
        result = reset_path_progress(path_store, progress_store, args.path_id)
    elif args.node and args.level:
        result = update_progress(
            path_store, progress_store, args.path_id, args.node,
            MasteryLevel(args.level),
        )
    else:
        print("Error: give --node and --level, or --reset", file=sys.stderr)
        return 2

    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    print(result.statistics.to_display_string())
    if result.next_recommended:
        print(f"Next: {', '.join(result.next_recommended)}")
    return 0


def _cmd_show(args, settings: GenerationSettings) -> int:
    store = SqlitePathStore(settings.db_path)
    if args.path_id:
        path = store.find_by_id(args.path_id)
    else:
        path = store.find_by_goal_note(args.goal)
    if path is None:
        print("Error: learning path not found", file=sys.stderr)
        return 1
    _print_path(path)
    return 0


_COMMANDS = {
    "index": _cmd_index,
    "generate": _cmd_generate,
    "progress": _cmd_progress,
    "show": _cmd_show,
}


def main(argv=None) -> int:
    """CLI entry-point."""
    args = _parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    settings = _build_settings(args)

    # --save-config: just dump settings and exit
    if args.save_config:
        save_settings(settings, args.save_config)
        return 0

    if args.command is None:
        print("Error: no command given (index, generate, progress, show)", file=sys.stderr)
        return 2
    return _COMMANDS[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
