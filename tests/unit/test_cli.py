"""Tests for fleetsync._cli — command-line entry point.

Test Techniques Used:
    - Specification-based Testing: flags, commands and output text
    - State-based Testing: settings overrides reaching the service
    - Error Condition Testing: invalid flag values, config errors
    - Behavioural Testing: exit codes
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from fleetsync._cli import EXIT_CONFIG_ERROR, EXIT_OK, EXIT_RUNTIME_ERROR, build_cli
from fleetsync._errors import StoreUnavailable

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def runner() -> CliRunner:
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def env_file(tmp_path: Path) -> str:
    """An empty .env so the working directory's file is never read."""
    path = tmp_path / ".env"
    path.write_text("")
    return str(path)


@pytest.fixture
def service_cls() -> Iterator[MagicMock]:
    """Patch SyncService (and logging setup) for ``run`` invocations."""
    with (
        patch("fleetsync._app.SyncService") as cls,
        patch("fleetsync._logging.configure_logging"),
    ):
        cls.return_value.run = AsyncMock()
        yield cls


class FakeStore:
    """Stand-in for CouchDocumentStore in ``setup-db``."""

    created = True
    error: Exception | None = None

    def __init__(self, settings: object) -> None:
        self.settings = settings

    async def __aenter__(self) -> FakeStore:
        return self

    async def __aexit__(self, *_: object) -> None:
        return None

    async def ensure_database(self) -> bool:
        if self.error is not None:
            raise self.error
        return self.created


# ---------------------------------------------------------------------------
# Top level
# ---------------------------------------------------------------------------


class TestTopLevel:
    """Technique: Specification-based Testing."""

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(build_cli(), ["--version"])
        assert result.exit_code == EXIT_OK
        assert result.output.startswith("fleetsync v")

    def test_help_lists_commands(self, runner: CliRunner) -> None:
        result = runner.invoke(build_cli(), ["--help"])
        assert result.exit_code == EXIT_OK
        assert "run" in result.output
        assert "setup-db" in result.output

    def test_exit_code_constants(self) -> None:
        assert (EXIT_OK, EXIT_CONFIG_ERROR, EXIT_RUNTIME_ERROR) == (0, 1, 3)


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRunCommand:
    """Technique: State-based Testing / Behavioural Testing."""

    def test_clean_run_exits_zero(
        self, runner: CliRunner, env_file: str, service_cls: MagicMock
    ) -> None:
        result = runner.invoke(build_cli(), ["run", "--env-file", env_file])
        assert result.exit_code == EXIT_OK
        service_cls.return_value.run.assert_awaited_once()

    def test_log_overrides_reach_settings(
        self, runner: CliRunner, env_file: str, service_cls: MagicMock
    ) -> None:
        result = runner.invoke(
            build_cli(),
            ["run", "--env-file", env_file, "--log-level", "debug", "--log-format", "TEXT"],
        )
        assert result.exit_code == EXIT_OK
        settings = service_cls.call_args.args[0]
        assert settings.logging.level == "DEBUG"
        assert settings.logging.format == "text"

    def test_env_reaches_settings(
        self, runner: CliRunner, env_file: str, service_cls: MagicMock
    ) -> None:
        result = runner.invoke(
            build_cli(),
            ["run", "--env-file", env_file],
            env={"FLEETSYNC_MQTT__HOST": "broker.test"},
        )
        assert result.exit_code == EXIT_OK
        assert service_cls.call_args.args[0].mqtt.host == "broker.test"

    @pytest.mark.parametrize(
        "flag",
        [["--log-level", "VERBOSE"], ["--log-format", "yaml"]],
    )
    def test_invalid_override_rejected(
        self, runner: CliRunner, env_file: str, service_cls: MagicMock, flag: list[str]
    ) -> None:
        result = runner.invoke(build_cli(), ["run", "--env-file", env_file, *flag])
        assert result.exit_code != EXIT_OK
        service_cls.assert_not_called()

    def test_config_error_exits_one(
        self, runner: CliRunner, env_file: str, service_cls: MagicMock
    ) -> None:
        result = runner.invoke(
            build_cli(),
            ["run", "--env-file", env_file],
            env={"FLEETSYNC_MQTT__PORT": "0"},
        )
        assert result.exit_code == EXIT_CONFIG_ERROR
        service_cls.assert_not_called()

    def test_runtime_error_exits_three(
        self, runner: CliRunner, env_file: str, service_cls: MagicMock
    ) -> None:
        service_cls.return_value.run.side_effect = RuntimeError("kaboom")
        result = runner.invoke(build_cli(), ["run", "--env-file", env_file])
        assert result.exit_code == EXIT_RUNTIME_ERROR


# ---------------------------------------------------------------------------
# setup-db
# ---------------------------------------------------------------------------


class TestSetupDb:
    """Technique: Behavioural Testing."""

    @pytest.fixture(autouse=True)
    def _fake_store(self) -> Iterator[None]:
        FakeStore.created = True
        FakeStore.error = None
        with patch("fleetsync._cli.CouchDocumentStore", FakeStore):
            yield

    def test_created(self, runner: CliRunner, env_file: str) -> None:
        result = runner.invoke(build_cli(), ["setup-db", "--env-file", env_file])
        assert result.exit_code == EXIT_OK
        assert "Database 'digital_signage' created" in result.output

    def test_already_present(self, runner: CliRunner, env_file: str) -> None:
        FakeStore.created = False
        result = runner.invoke(
            build_cli(),
            ["setup-db", "--env-file", env_file],
            env={"FLEETSYNC_COUCHDB__DATABASE": "screens"},
        )
        assert result.exit_code == EXIT_OK
        assert "Database 'screens' already present" in result.output

    def test_store_failure_exits_three(self, runner: CliRunner, env_file: str) -> None:
        FakeStore.error = StoreUnavailable("connection refused")
        result = runner.invoke(build_cli(), ["setup-db", "--env-file", env_file])
        assert result.exit_code == EXIT_RUNTIME_ERROR
