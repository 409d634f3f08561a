"""CLI commands for the learned association store."""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import typer

from riglm.cli._errors import handle_error, load_config_or_exit
from riglm.config import RiglmConfig
from riglm.learning.store import SqliteAssociationStore
from riglm.learning.types import LearnedAssociation, PruneThresholds

T = TypeVar("T")


def _existing_store(config: RiglmConfig) -> Path:
    """The configured store path; a missing file is an error, never created here."""
    if not config.db_path.is_file():
        handle_error(f"No association store at {config.db_path}")
    return config.db_path


def _run_on_store(db_path: Path, coro: Coroutine[Any, Any, T]) -> T:
    """asyncio.run() with sqlite failures reported as a CLI error."""
    try:
        return asyncio.run(coro)
    except sqlite3.Error as e:
        handle_error(f"{db_path}: {e}")
        raise  # unreachable: handle_error always exits


async def _prune_impl(db_path: Path, thresholds: PruneThresholds) -> tuple[int, int]:
    store = SqliteAssociationStore(db_path)
    try:
        removed = await store.prune(thresholds)
        return removed, await store.size()
    finally:
        await store.close()


async def _inspect_impl(db_path: Path, limit: int) -> tuple[int, list[LearnedAssociation]]:
    store = SqliteAssociationStore(db_path)
    try:
        return await store.size(), await store.top(limit)
    finally:
        await store.close()


async def _forget_impl(db_path: Path, association_id: str) -> bool:
    store = SqliteAssociationStore(db_path)
    try:
        return await store.remove(association_id)
    finally:
        await store.close()


def prune(
    config_path: Path = typer.Argument(..., help="Path to the proxy config file"),
    min_confidence: float = typer.Option(
        None, "--min-confidence", "-c", help="Drop associations below this confidence"
    ),
    unused_days: int = typer.Option(
        None, "--unused-days", "-d", help="Drop associations unused for this many days"
    ),
    threshold: int = typer.Option(
        None, "--threshold", "-t", help="Size cap that triggers trimming to 90%"
    ),
) -> None:
    """Prune the learned association store.

    Flags override the storage section of the config.

    Examples:
        riglm prune riglm.yaml
        riglm prune riglm.yaml -c 0.2 -d 14
    """
    config = load_config_or_exit(config_path)
    storage = config.storage
    try:
        thresholds = PruneThresholds(
            size_threshold=threshold if threshold is not None else storage.prune_threshold,
            min_confidence=(
                min_confidence if min_confidence is not None else storage.prune_min_confidence
            ),
            unused_days=unused_days if unused_days is not None else storage.prune_unused_days,
        )
    except ValueError as e:
        handle_error(str(e))

    db_path = _existing_store(config)
    removed, remaining = _run_on_store(db_path, _prune_impl(db_path, thresholds))
    typer.echo(f"Pruned {removed} association(s); {remaining} remaining.")


def inspect(
    config_path: Path = typer.Argument(..., help="Path to the proxy config file"),
    limit: int = typer.Option(20, "--limit", "-n", help="Associations to show"),
) -> None:
    """Show the store size and the highest-confidence associations."""
    config = load_config_or_exit(config_path)
    if limit <= 0:
        handle_error("--limit must be positive")

    db_path = _existing_store(config)
    size, top = _run_on_store(db_path, _inspect_impl(db_path, limit))
    typer.echo(f"Store: {db_path}")
    typer.echo(f"Associations: {size}")
    if not top:
        return
    typer.echo("")
    typer.echo(f"{'Confidence':>10}  {'Tool':<40}  Query")
    typer.echo(f"{'-' * 10}  {'-' * 40}  {'-' * 30}")
    for assoc in top:
        typer.echo(f"{assoc.confidence:>10.3f}  {assoc.tool_name:<40}  {assoc.query}")
        typer.echo(f"{'':>10}  id={assoc.id}")


def forget(
    config_path: Path = typer.Argument(..., help="Path to the proxy config file"),
    association_id: str = typer.Argument(..., help="Association id (see `riglm inspect`)"),
) -> None:
    """Remove one learned association."""
    config = load_config_or_exit(config_path)
    db_path = _existing_store(config)
    if not _run_on_store(db_path, _forget_impl(db_path, association_id)):
        handle_error(f"No association with id {association_id!r}")
    typer.echo(f"Removed {association_id}")
