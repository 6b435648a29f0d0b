"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
chapter progress rows, and cached-book listings.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from .errors import PipelineStageError
from .models.datatypes import CachedBookEntry, ChapterEvent, ChapterStatus


_STATUS_COLORS = {
    ChapterStatus.DONE: typer.colors.GREEN,
    ChapterStatus.CACHED: typer.colors.CYAN,
    ChapterStatus.DEGRADED: typer.colors.YELLOW,
    ChapterStatus.FAILED: typer.colors.RED,
}


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, PipelineStageError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(
            f"{command_name} failed ({type(exc).__name__}): {exc}",
            fg=typer.colors.RED,
            err=True,
        )
    raise typer.Exit(code=1) from exc


def format_chapter_event(event: ChapterEvent) -> str:
    """Return one deterministic progress row for a chapter event."""

    row = f"[{event.status.value}] {event.chapter_index}. {event.chapter_title}"
    if event.degraded:
        row += f" (degraded: {event.failed_span_count} span(s) kept in original language)"
    if event.detail:
        row += f" ({event.detail})"
    return row


def echo_chapter_event(event: ChapterEvent) -> None:
    """Print one chapter progress row."""

    typer.secho(format_chapter_event(event), fg=_STATUS_COLORS.get(event.status))


def echo_open_summary(events: list[ChapterEvent]) -> None:
    """Print book identity and per-status chapter totals for an open run."""

    if not events:
        return
    typer.echo(f"Book identity: {events[0].book_identity}")
    typer.echo(f"Target language: {events[0].target_language}")
    counts: dict[str, int] = {}
    for event in events:
        counts[event.status.value] = counts.get(event.status.value, 0) + 1
    summary = ", ".join(f"{status}={counts[status]}" for status in sorted(counts))
    typer.echo(f"Chapters: {summary}")


def echo_cached_books(entries: list[CachedBookEntry]) -> None:
    """Print cached book rows, newest first."""

    if not entries:
        typer.echo("No cached books.")
        return
    for entry in entries:
        state = "complete" if entry.complete else "partial"
        degraded = f", degraded={entry.degraded_chapters}" if entry.degraded_chapters else ""
        typer.echo(
            f"{entry.book_identity[:12]}  {entry.target_language}  {entry.timestamp}  "
            f"{state} ({entry.total_chapters} chapters{degraded})  {entry.title}"
        )
