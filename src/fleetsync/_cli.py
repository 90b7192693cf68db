"""Command-line entry point (Typer-based).

Commands::

    fleetsync run        run the synchronization service
    fleetsync setup-db   create the database and its views
    fleetsync --version

Exit codes: ``0`` ok, ``1`` configuration error, ``3`` runtime error.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import Annotated, get_args

import typer
from pydantic import ValidationError

from fleetsync._couchdb import CouchDocumentStore
from fleetsync._settings import LoggingSettings, Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)

EnvFileOption = Annotated[
    str,
    typer.Option("--env-file", help="Path to .env file."),
]


def _version() -> str:
    from fleetsync import __version__  # noqa: PLC0415

    return __version__


def _load_settings(
    env_file: str,
    log_level: str | None = None,
    log_format: str | None = None,
) -> Settings:
    """Build settings and apply CLI overrides; exit 1 when invalid."""
    if log_level is not None and log_level.upper() not in _VALID_LOG_LEVELS:
        raise typer.BadParameter(
            f"Invalid log level '{log_level}'. "
            f"Choose from: {', '.join(_VALID_LOG_LEVELS)}",
            param_hint="'--log-level'",
        )
    if log_format is not None and log_format.lower() not in _VALID_LOG_FORMATS:
        raise typer.BadParameter(
            f"Invalid log format '{log_format}'. "
            f"Choose from: {', '.join(_VALID_LOG_FORMATS)}",
            param_hint="'--log-format'",
        )

    try:
        settings = Settings(_env_file=env_file)  # type: ignore[call-arg]
    except ValidationError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(EXIT_CONFIG_ERROR) from exc

    if log_level is not None:
        settings.logging = settings.logging.model_copy(update={"level": log_level.upper()})
    if log_format is not None:
        settings.logging = settings.logging.model_copy(update={"format": log_format.lower()})
    return settings


def build_cli() -> typer.Typer:
    """Construct the ``fleetsync`` Typer application."""
    cli = typer.Typer(
        help="fleetsync: device state synchronization and command dispatch.",
        no_args_is_help=True,
    )

    @cli.callback()
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option("--version", is_eager=True, help="Show version and exit."),
        ] = None,
    ) -> None:
        if version_flag:
            typer.echo(f"fleetsync v{_version()}")
            raise typer.Exit()

    @cli.command()
    def run(
        env_file: EnvFileOption = ".env",
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
    ) -> None:
        """Run the synchronization service until SIGINT/SIGTERM."""
        from fleetsync._app import SyncService  # noqa: PLC0415
        from fleetsync._logging import configure_logging  # noqa: PLC0415

        settings = _load_settings(env_file, log_level, log_format)
        configure_logging(settings.logging, service="fleetsync", version=_version())
        try:
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(SyncService(settings).run())
        except SystemExit:
            raise
        except Exception as exc:
            logger.error("Runtime error: %s", exc)
            sys.exit(EXIT_RUNTIME_ERROR)

    @cli.command("setup-db")
    def setup_db(env_file: EnvFileOption = ".env") -> None:
        """Create the database and its query views if missing."""
        settings = _load_settings(env_file)

        async def _setup() -> bool:
            async with CouchDocumentStore(settings.couchdb) as store:
                return await store.ensure_database()

        try:
            created = asyncio.run(_setup())
        except Exception as exc:
            logger.error("Database setup failed: %s", exc)
            typer.echo(f"Database setup failed: {exc}", err=True)
            sys.exit(EXIT_RUNTIME_ERROR)
        state = "created" if created else "already present"
        typer.echo(f"Database '{settings.couchdb.database}' {state}; views installed.")

    return cli


def main() -> None:
    """Console-script entry point."""
    build_cli()()
