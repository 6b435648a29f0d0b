"""Command-line interface for bookglot.

Responsibilities:
- Expose user-facing commands for opening, re-translating, listing, showing
  and deleting cached books, plus credential management.
- Convert CLI arguments into a resolved `ConfigStore` and a `TranslationPipeline`.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

from contextlib import closing
from pathlib import Path
from typing import Annotated

import typer

from .cache.store import CacheStore
from .cli_rendering import (
    echo_cached_books,
    echo_chapter_event,
    echo_open_summary,
    exit_with_command_error,
)
from .cli_runtime import build_config_store, load_cli_config, resolve_provider_runtime_sources
from .config import ConfigStore
from .credentials import create_credential_store
from .errors import PipelineStageError
from .models.datatypes import ChapterEvent
from .parsing import normalize_optional_string
from .pipeline import TranslationPipeline
from .provider_factory import ProviderFactory
from .telemetry.logger import RunLogger, configure_file_logging

app = typer.Typer(
    name="bookglot",
    no_args_is_help=True,
    help="Translate ePub books and keep the translations in a local cache.",
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", help="Path to YAML config file with defaults."),
]
LanguageOption = Annotated[
    str | None,
    typer.Option("--language", "-l", help="Target language code (overrides config)."),
]
ProviderOption = Annotated[
    str | None, typer.Option("--provider", help="Translation provider id (`google`, `openai`).")
]
ModelOption = Annotated[
    str | None, typer.Option("--model", help="Model id for LLM-backed providers.")
]
ApiKeyOption = Annotated[
    str | None,
    typer.Option(
        "--api-key",
        help="Provider API key override. Prefer `--prompt-api-key` to avoid shell history.",
    ),
]
PromptApiKeyOption = Annotated[
    bool,
    typer.Option("--prompt-api-key", help="Prompt for API key with hidden input (never echoed)."),
]
StoreApiKeyOption = Annotated[
    bool,
    typer.Option(
        "--store-api-key",
        help="Persist an API key given in this run to secure credential storage.",
    ),
]


def _build_pipeline(
    config_file: Path | None,
    *,
    language: str | None = None,
    provider: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    prompt_api_key: bool = False,
    store_api_key: bool = False,
    use_credentials: bool = True,
) -> tuple[TranslationPipeline, ConfigStore]:
    """Resolve configuration and assemble the pipeline with its collaborators."""

    config = load_cli_config(config_file)
    run_logger = RunLogger(level=config.log_level)
    if config.log_dir is not None:
        configure_file_logging(config.log_dir, level=config.log_level)

    if use_credentials:
        runtime_cli_values, runtime_secure_values = resolve_provider_runtime_sources(
            target_language=language,
            provider=provider,
            model=model,
            api_key=api_key,
            prompt_api_key=prompt_api_key,
            store_api_key=store_api_key,
        )
    else:
        normalized_language = normalize_optional_string(language)
        runtime_secure_values = {}
        runtime_cli_values = (
            {} if normalized_language is None else {"target_language": normalized_language}
        )

    settings = build_config_store(config, runtime_cli_values, runtime_secure_values)
    run_logger.log_event("INFO", "runtime_resolved", "config", **settings.runtime.as_log_metadata())
    client = ProviderFactory.from_runtime(config, settings.runtime)
    pipeline = TranslationPipeline(
        store=CacheStore(settings.cache_root, run_logger=run_logger),
        client=client,
        config=config,
        run_logger=run_logger,
    )
    return pipeline, settings


def _resolve_identity(pipeline: TranslationPipeline, identity: str) -> str:
    """Expand a unique identity prefix from `bookglot list` to the full identity."""

    if pipeline.store.has_book(identity):
        return identity
    candidates = sorted(
        {
            entry.book_identity
            for entry in pipeline.list_cached_books()
            if entry.book_identity.startswith(identity)
        }
    )
    if len(candidates) == 1:
        return candidates[0]
    if len(candidates) > 1:
        raise PipelineStageError(
            stage="cache-read",
            detail=f"Identity prefix `{identity}` matches {len(candidates)} cached books.",
            hint="Use a longer prefix from `bookglot list`.",
        )
    return identity


@app.command("open")
def open_command(
    book: Annotated[Path, typer.Argument(help="Path to the ePub file.")],
    language: LanguageOption = None,
    config_file: ConfigOption = None,
    provider: ProviderOption = None,
    model: ModelOption = None,
    api_key: ApiKeyOption = None,
    prompt_api_key: PromptApiKeyOption = False,
    store_api_key: StoreApiKeyOption = False,
) -> None:
    """Open a book: serve it from the cache or translate and cache it."""

    events: list[ChapterEvent] = []
    try:
        data = book.read_bytes()
        pipeline, settings = _build_pipeline(
            config_file,
            language=language,
            provider=provider,
            model=model,
            api_key=api_key,
            prompt_api_key=prompt_api_key,
            store_api_key=store_api_key,
        )
        with closing(pipeline.open_book(data, settings.get_target_language())) as stream:
            for event in stream:
                events.append(event)
                echo_chapter_event(event)
    except Exception as exc:
        exit_with_command_error("open", exc)

    echo_open_summary(events)


@app.command("translate-chapter")
def translate_chapter_command(
    identity: Annotated[str, typer.Argument(help="Book identity (or unique prefix).")],
    index: Annotated[int, typer.Argument(help="0-based chapter index.", min=0)],
    language: LanguageOption = None,
    config_file: ConfigOption = None,
    provider: ProviderOption = None,
    model: ModelOption = None,
    api_key: ApiKeyOption = None,
    prompt_api_key: PromptApiKeyOption = False,
) -> None:
    """Re-translate one chapter from the cached source and commit it."""

    try:
        pipeline, settings = _build_pipeline(
            config_file,
            language=language,
            provider=provider,
            model=model,
            api_key=api_key,
            prompt_api_key=prompt_api_key,
        )
        event = pipeline.translate_chapter(
            _resolve_identity(pipeline, identity), index, settings.get_target_language()
        )
    except Exception as exc:
        exit_with_command_error("translate-chapter", exc)

    echo_chapter_event(event)


@app.command("list")
def list_command(config_file: ConfigOption = None) -> None:
    """List cached books, newest first."""

    try:
        pipeline, _ = _build_pipeline(config_file, use_credentials=False)
        entries = pipeline.list_cached_books()
    except Exception as exc:
        exit_with_command_error("list", exc)

    echo_cached_books(entries)


@app.command("show")
def show_command(
    identity: Annotated[str, typer.Argument(help="Book identity (or unique prefix).")],
    index: Annotated[int, typer.Argument(help="0-based chapter index.", min=0)],
    language: LanguageOption = None,
    config_file: ConfigOption = None,
    out: Annotated[
        Path | None,
        typer.Option("--out", help="Write the chapter XHTML to a file instead of stdout."),
    ] = None,
) -> None:
    """Print a translated chapter from the cache without network access."""

    try:
        pipeline, settings = _build_pipeline(config_file, language=language, use_credentials=False)
        content = pipeline.load_cached_chapter(
            _resolve_identity(pipeline, identity), index, settings.get_target_language()
        )
        if out is not None:
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(content, encoding="utf-8")
    except Exception as exc:
        exit_with_command_error("show", exc)

    if out is None:
        typer.echo(content)
    else:
        typer.echo(f"Chapter written: {out}")


@app.command("delete")
def delete_command(
    identity: Annotated[
        str | None, typer.Argument(help="Book identity (or unique prefix) to delete.")
    ] = None,
    delete_all: Annotated[
        bool, typer.Option("--all", help="Delete every cached book.")
    ] = False,
    config_file: ConfigOption = None,
) -> None:
    """Delete one cached book in every language, or all cached books."""

    if (identity is None) == (not delete_all):
        exit_with_command_error(
            "delete",
            PipelineStageError(
                stage="cache",
                detail="Pass either a book identity or `--all`.",
                hint="Run `bookglot list` to see cached book identities.",
            ),
        )

    try:
        pipeline, _ = _build_pipeline(config_file, use_credentials=False)
        if delete_all:
            removed_count = pipeline.delete_all_cached_books()
        else:
            removed = pipeline.delete_cached_book(_resolve_identity(pipeline, identity or ""))
    except Exception as exc:
        exit_with_command_error("delete", exc)

    if delete_all:
        typer.echo(f"Deleted cached books: {removed_count}")
    elif removed:
        typer.echo(f"Deleted cached book: {identity}")
    else:
        typer.echo(f"No cached book found for `{identity}`.")


@app.command("credentials")
def credentials_command(
    set_api_key: Annotated[
        bool,
        typer.Option(
            "--set-api-key",
            help="Prompt for API key with hidden input and store it securely.",
        ),
    ] = False,
    clear_api_key: Annotated[
        bool,
        typer.Option(
            "--clear-api-key",
            help="Clear stored API key from secure credential storage.",
        ),
    ] = False,
) -> None:
    """Manage securely stored CLI credentials."""

    if set_api_key and clear_api_key:
        exit_with_command_error(
            "credentials",
            PipelineStageError(
                stage="credentials",
                detail="`--set-api-key` and `--clear-api-key` cannot be used together.",
                hint="Run one credentials action per command invocation.",
            ),
        )

    credential_store = create_credential_store()
    if set_api_key:
        prompted_api_key = normalize_optional_string(
            typer.prompt(
                "Translation API key (hidden input)",
                default="",
                hide_input=True,
                show_default=False,
            )
        )
        if prompted_api_key is None:
            exit_with_command_error(
                "credentials",
                PipelineStageError(
                    stage="credentials",
                    detail="No API key entered.",
                    hint="Provide a non-empty API key when using `--set-api-key`.",
                ),
            )
        try:
            credential_store.set_api_key(prompted_api_key)
        except (RuntimeError, ValueError) as exc:
            exit_with_command_error(
                "credentials",
                PipelineStageError(
                    stage="credentials",
                    detail=f"Failed to store API key securely: {exc}",
                    hint="Install and configure a keyring backend and retry.",
                ),
            )
        typer.echo("API key stored in secure credential storage.")
        return

    if clear_api_key:
        if credential_store.clear_api_key():
            typer.echo("Stored API key cleared from secure credential storage.")
        else:
            typer.echo("No stored API key found in secure credential storage.")
        return

    availability = "available" if credential_store.is_available() else "unavailable"
    status = "present" if credential_store.get_api_key() is not None else "not set"
    typer.echo(f"Secure credential storage: {availability}")
    typer.echo(f"Stored API key: {status}")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
