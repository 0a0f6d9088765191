"""CLI for codelibrarian."""

from datetime import datetime, timezone
import json
import logging
from pathlib import Path

import click

from . import __version__
from .cache.intent import build_scope_signature, classify_category, normalize_intent
from .cache.response_cache import ResponseCache
from .cache.serialization import encode_response
from .cache.store import SqliteCacheStore
from .index.graph import CodeGraph
from .index.retriever import GraphRetriever
from .query.config import load_engine_config
from .query.engine import QueryEngine
from .query.errors import LibrarianError
from .query.scope import normalize_query_scope
from .query.types import Depth, Query, QueryFilter, Version

DEPTH_CHOICES = [depth.value for depth in Depth]


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """Code Librarian - ranked context packs for code questions."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_query(
    intent: str,
    depth: str,
    path_prefix: str | None,
    language: str | None,
    task_type: str | None,
    working_file: str | None,
    affected: tuple[str, ...],
) -> Query:
    query_filter = None
    if path_prefix or language:
        query_filter = QueryFilter(path_prefix=path_prefix, language=language)
    return Query(
        intent=intent,
        depth=Depth(depth),
        task_type=task_type,
        working_file=working_file,
        affected_files=affected or None,
        filter=query_filter,
    )


def _index_version(index_path: Path, features: tuple[str, ...]) -> Version:
    indexed_at = datetime.fromtimestamp(index_path.stat().st_mtime, tz=timezone.utc)
    return Version(
        major=1,
        minor=0,
        patch=0,
        string="1.0.0",
        quality_tier="mvp",
        indexed_at=indexed_at,
        indexer_version=__version__,
        features=features,
    )


def _print_response(response) -> None:
    status = "hit" if response.cache_hit else "miss"
    click.echo(
        f"{len(response.packs)} packs (cache {status}, {response.latency_ms:.1f}ms, "
        f"confidence {response.total_confidence:.2f})\n"
    )
    for i, pack in enumerate(response.packs, 1):
        click.echo(f"{i}. {pack.target_id} [{pack.pack_type}]")
        click.echo(f"   {pack.summary[:200]}")
        for fact in pack.key_facts:
            click.echo(f"   - {fact}")
        click.echo()
    for disclosure in response.disclosures:
        click.echo(f"note: {disclosure}")
    for gap in response.coverage_gaps:
        click.echo(f"gap: {gap}")
    for hint in response.drill_down_hints:
        click.echo(f"hint: {hint}")


@cli.command()
@click.argument("intent", type=str)
@click.option(
    "--index",
    "index_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Graph JSON written by CodeGraph.save",
)
@click.option(
    "--workspace",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Workspace root",
)
@click.option("--depth", type=click.Choice(DEPTH_CHOICES), default="L1")
@click.option("--path-prefix", default=None, help="Restrict results to a path")
@click.option("--language", default=None)
@click.option("--task-type", default=None)
@click.option("--working-file", default=None, help="File the caller is editing")
@click.option("--affected", multiple=True, help="Files touched by the current change")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None)
@click.option("--cache-db", type=click.Path(path_type=Path), default=None, help="SQLite cache file")
@click.option("--embed/--no-embed", default=False, help="Use a sentence-transformers model")
@click.option("--json", "as_json", is_flag=True, help="Emit the full response as JSON")
def query(
    intent: str,
    index_path: Path,
    workspace: Path,
    depth: str,
    path_prefix: str | None,
    language: str | None,
    task_type: str | None,
    working_file: str | None,
    affected: tuple[str, ...],
    config_path: Path | None,
    cache_db: Path | None,
    embed: bool,
    as_json: bool,
):
    """Answer an intent query against a saved index."""
    try:
        config = load_engine_config(config_path or workspace)
    except LibrarianError as exc:
        raise click.ClickException(str(exc)) from exc
    graph = CodeGraph.load(index_path)

    embedder = None
    if embed:
        from .vector.embedder import Embedder

        embedder = Embedder()
        embedder.embed_entities(graph)

    cache_path = cache_db or (Path(config.cache.sqlite_path) if config.cache.sqlite_path else None)
    response_cache = ResponseCache(
        store=SqliteCacheStore(cache_path) if cache_path else None,
        config=config.cache,
    )
    engine = QueryEngine(
        workspace,
        GraphRetriever(graph, embedder),
        _index_version(index_path, ("graph", "semantic" if embed else "lexical")),
        config=config,
        response_cache=response_cache,
        readiness=graph,
    )

    q = _build_query(intent, depth, path_prefix, language, task_type, working_file, affected)
    try:
        response = engine.answer(q)
    except LibrarianError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(encode_response(response), indent=2, ensure_ascii=False))
        return
    _print_response(response)


@cli.command()
@click.argument("intent", type=str)
@click.option("--depth", type=click.Choice(DEPTH_CHOICES), default="L1")
@click.option("--path-prefix", default=None)
@click.option("--language", default=None)
@click.option("--task-type", default=None)
def classify(
    intent: str,
    depth: str,
    path_prefix: str | None,
    language: str | None,
    task_type: str | None,
):
    """Show how the semantic cache buckets an intent."""
    q = _build_query(intent, depth, path_prefix, language, task_type, None, ())
    category = classify_category(intent)
    click.echo(f"category:   {category.value if category else 'none'}")
    click.echo(f"normalized: {normalize_intent(intent, category) or '(empty)'}")
    click.echo(f"signature:  {build_scope_signature(q)}")


@cli.command()
@click.option(
    "--workspace",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
)
@click.option("--working-file", default=None)
@click.option("--path-prefix", default=None)
def scope(workspace: Path, working_file: str | None, path_prefix: str | None):
    """Show the normalized scope for a working file or path prefix."""
    q = _build_query("scope", "L1", path_prefix, None, None, working_file, ())
    try:
        result = normalize_query_scope(q, workspace)
    except LibrarianError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"path_prefix: {result.query.path_prefix or '(none)'}")
    for disclosure in result.disclosures:
        click.echo(f"note: {disclosure}")


@cli.command()
@click.option(
    "--index",
    "index_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
def stats(index_path: Path):
    """Print graph statistics for a saved index."""
    graph = CodeGraph.load(index_path)
    click.echo(str(graph.get_stats()))


if __name__ == "__main__":
    cli()
