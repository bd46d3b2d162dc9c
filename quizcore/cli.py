"""
CLI interface for quizcore.

Usage:
    quizcore fingerprint "What is the capital of France?"
    quizcore tag Geography --owner alice
    quizcore ingest items.json --owner alice
    quizcore stats
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .audit import NullAuditSink, StoreAuditSink
from .backend import create_store
from .config import StoreConfig, get_store_path, load_or_create_config
from .errors import QuizCoreError
from .fingerprint import compute_fingerprint, get_bucket
from .ingest import IngestPipeline
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .protocol import ItemStoreProtocol
from .tag_resolver import TagResolver
from .types import TAG_KIND_CATEGORY, RecordRequest, Tag, Visibility


# Configure quiet mode by default
# Set QUIZCORE_VERBOSE=1 to enable debug mode via environment
if os.environ.get("QUIZCORE_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"quizcore {version('quizcore')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None
_ops_handler: Optional[logging.Handler] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


app = typer.Typer(
    name="quizcore",
    help="Duplicate-aware ingestion of quiz items.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="QUIZCORE_STORE_PATH",
        help="Path to the store directory (default: ~/.quizcore/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Duplicate-aware ingestion of quiz items."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

OwnerOption = Annotated[
    str,
    typer.Option("--owner", "-o", help="Owning user id")
]

GlobalOption = Annotated[
    bool,
    typer.Option("--global", "-g", help="Request global visibility")
]

PrivilegedOption = Annotated[
    bool,
    typer.Option("--privileged", "-P", help="Act as a privileged caller")
]


def _open_store() -> tuple[StoreConfig, ItemStoreProtocol]:
    """Load config and open the configured store, exiting on failure."""
    path = _store_override if _store_override is not None else get_store_path()
    try:
        config = load_or_create_config(Path(path).expanduser())
        store = create_store(config)
    except (OSError, ValueError, RuntimeError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if config.backend == "sqlite":
        _attach_ops_log(config.path)
    return config, store


def _attach_ops_log(store_path: Path) -> None:
    """Point the ops log at this store, replacing any earlier handler."""
    global _ops_handler
    if _ops_handler is not None:
        logging.getLogger("quizcore").removeHandler(_ops_handler)
        _ops_handler.close()
    _ops_handler = configure_ops_log(store_path)


def _format_tag(tag: Tag) -> str:
    scope = "global" if tag.visibility is Visibility.GLOBAL else f"private:{tag.owner}"
    return f"{tag.id}  {tag.kind}  {tag.display_name}  ({scope})"


def _load_records(path: Path) -> list[RecordRequest]:
    """Read records from a JSON file: {"items": [...]} or a bare list."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        raise ValueError("Expected a JSON list of items or an object with an 'items' list")
    return [RecordRequest.from_dict(item) for item in data]


@app.command()
def fingerprint(
    text: Annotated[str, typer.Argument(help="Text to fingerprint")],
):
    """Print the similarity fingerprint and bucket of TEXT."""
    fp = compute_fingerprint(text)
    bucket = get_bucket(fp)
    if _json_output:
        typer.echo(json.dumps({"fingerprint": fp, "bucket": bucket}))
    else:
        typer.echo(f"{fp}  bucket={bucket}")


@app.command()
def tag(
    name: Annotated[str, typer.Argument(help="Category name")],
    owner: OwnerOption = "anonymous",
    global_: GlobalOption = False,
    privileged: PrivilegedOption = False,
):
    """Resolve a category by name, creating it if absent."""
    config, store = _open_store()
    visibility = Visibility.GLOBAL if global_ and privileged else Visibility.PRIVATE
    resolver = TagResolver(
        store, kind=TAG_KIND_CATEGORY,
        max_name_length=config.limits.max_category_length,
    )
    try:
        result = resolver.resolve_or_create(name, visibility, owner, privileged)
    except QuizCoreError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(1)
    finally:
        store.close()

    if _json_output:
        typer.echo(json.dumps({
            "id": result.id, "kind": result.kind, "name": result.name,
            "display_name": result.display_name,
            "visibility": result.visibility.value, "owner": result.owner,
            "created_at": result.created_at,
        }))
    else:
        typer.echo(_format_tag(result))


@app.command()
def ingest(
    path: Annotated[Path, typer.Argument(help="JSON file of items", exists=True, dir_okay=False)],
    owner: OwnerOption = "anonymous",
    global_: GlobalOption = False,
    privileged: PrivilegedOption = False,
):
    """Ingest a JSON batch of items, skipping duplicates."""
    try:
        records = _load_records(path)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    config, store = _open_store()
    sink = StoreAuditSink(store) if config.audit_enabled else NullAuditSink()
    pipeline = IngestPipeline(store, limits=config.limits, audit_sink=sink)
    visibility = Visibility.GLOBAL if global_ else Visibility.PRIVATE
    try:
        outcome = pipeline.ingest(records, visibility, owner, privileged)
    except QuizCoreError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(1)
    finally:
        store.close()

    if _json_output:
        typer.echo(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False))
        return

    typer.echo(
        f"total={outcome.total} created={outcome.created_count} "
        f"duplicate={outcome.duplicate_count} failed={outcome.failed_count}"
    )
    for dup in outcome.duplicates:
        typer.echo(f"  duplicate [{dup.index}] {dup.question}")
    for err in outcome.errors:
        typer.echo(f"  failed    [{err.index}] {err.question}: {err.message}")


@app.command()
def similar(
    text: Annotated[str, typer.Argument(help="Question text to compare")],
    max_distance: Annotated[int, typer.Option(
        "--max-distance", "-d", help="Maximum differing fingerprint bits"
    )] = 3,
):
    """List stored items whose fingerprint is close to TEXT's."""
    _, store = _open_store()
    try:
        matches = store.find_similar(compute_fingerprint(text), max_distance)
    finally:
        store.close()
    if _json_output:
        typer.echo(json.dumps([
            {"id": m.id, "question": m.question, "fingerprint": m.fingerprint}
            for m in matches
        ], ensure_ascii=False))
        return
    for m in matches:
        typer.echo(f"{m.id}  {m.fingerprint}  {m.question}")


@app.command()
def stats():
    """Show store statistics."""
    _, store = _open_store()
    try:
        info = store.stats()
    finally:
        store.close()
    if _json_output:
        typer.echo(json.dumps(info))
        return
    for key, value in info.items():
        typer.echo(f"{key}: {value}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="quizcore CLI", store_path=_store_override)
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
