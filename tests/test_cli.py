"""Tests for the command-line interface."""

import json
from pathlib import Path

import click
import pytest
import yaml
from click.testing import CliRunner
from fakes import SOURCE_URL, TARGET_URL

from cms_migration.cli.commands import migrate as migrate_commands
from cms_migration.cli.decorators import handle_errors
from cms_migration.cli.main import cli
from cms_migration.client.exceptions import (
    AuthExhaustedError,
    ConfigurationError,
    NetworkError,
    NotFoundError,
)


@pytest.fixture
def runner(monkeypatch) -> CliRunner:
    monkeypatch.delenv("CMS_BRIDGE_CONFIG", raising=False)
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    data = {
        "source": {"url": SOURCE_URL, "username": "migrator", "password": "secret"},
        "target": {"url": TARGET_URL, "static_token": "static-token"},
        "paths": {"csv_dir": str(tmp_path / "csv"), "logs_dir": str(tmp_path / "logs")},
        "stages": {"users": False},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


def invoke(runner: CliRunner, tmp_path: Path, *args: str):
    return runner.invoke(cli, ["--log-file", str(tmp_path / "logs" / "cli.log"), *args])


class TestConfigValidate:
    def test_valid_configuration(self, runner, tmp_path, config_file):
        result = invoke(runner, tmp_path, "--config", str(config_file), "config", "validate")

        assert result.exit_code == 0, result.output
        assert "Source auth strategies: basic, cookie" in result.output
        assert "Target auth: static token" in result.output
        assert "Configuration is valid!" in result.output
        assert (tmp_path / "csv").is_dir()

    def test_missing_config_exits_2(self, runner, tmp_path):
        result = invoke(runner, tmp_path, "config", "validate")
        assert result.exit_code == 2

    def test_invalid_yaml_exits_2(self, runner, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("source: [unclosed")

        result = invoke(runner, tmp_path, "--config", str(path), "config", "validate")

        assert result.exit_code == 2

    def test_missing_env_var_exits_2(self, runner, tmp_path, monkeypatch):
        monkeypatch.delenv("CMS_TOKEN_UNSET", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "source": {"url": SOURCE_URL, "username": "u", "password": "p"},
                    "target": {"url": TARGET_URL, "static_token": "${CMS_TOKEN_UNSET}"},
                }
            )
        )

        result = invoke(runner, tmp_path, "--config", str(path), "config", "validate")

        assert result.exit_code == 2


class TestMappingShow:
    def test_shows_entries(self, runner, tmp_path, config_file):
        csv_dir = tmp_path / "csv"
        csv_dir.mkdir()
        (csv_dir / "company_mapping.json").write_text(json.dumps({"abc-1": "abc-1"}))

        result = invoke(
            runner, tmp_path, "--config", str(config_file), "mapping", "show", "company", "--json"
        )

        assert result.exit_code == 0, result.output
        assert '"abc-1": "abc-1"' in result.output

    def test_missing_map_warns(self, runner, tmp_path, config_file):
        result = invoke(
            runner, tmp_path, "--config", str(config_file), "mapping", "show", "regions"
        )

        assert result.exit_code == 0
        assert "No mappings for 'regions'" in result.output


class TestCacheStats:
    def test_counts_cached_files(self, runner, tmp_path, config_file):
        csv_dir = tmp_path / "csv"
        csv_dir.mkdir()
        (csv_dir / "image_map.json").write_text(json.dumps({"f1": "t1", "f2": "t1", "f3": "t2"}))
        logs_dir = tmp_path / "logs"
        logs_dir.mkdir()
        (logs_dir / "image_errors.log").write_text("t1 error='a'\nt2 error='b'\n")

        result = invoke(runner, tmp_path, "--config", str(config_file), "cache", "stats")

        assert result.exit_code == 0, result.output
        assert "Media Cache" in result.output
        lines = result.output.splitlines()
        assert any("Transferred" in line and "3" in line for line in lines)
        assert any("Distinct" in line and "2" in line for line in lines)
        assert any("Image Failures" in line and "2" in line for line in lines)


class TestMigrate:
    @pytest.fixture
    def recorded(self, monkeypatch):
        calls: dict = {}

        async def fake_run_stages(config, reporter, stage_names):
            calls["stages"] = stage_names
            failure = calls.get("failure")
            if failure is not None:
                reporter.record_systemic_failure(stage_names[0], failure)
            return reporter

        monkeypatch.setattr(migrate_commands, "run_stages", fake_run_stages)
        return calls

    def test_all_runs_enabled_stages_in_order(self, runner, tmp_path, config_file, recorded):
        report = tmp_path / "report.json"
        args = ["--config", str(config_file), "migrate", "all", "--report", str(report)]
        result = invoke(runner, tmp_path, *args)

        assert result.exit_code == 0, result.output
        assert recorded["stages"] == ["taxonomies", "roles", "companies", "projects"]
        assert "Migration finished" in result.output
        assert json.loads(report.read_text())["systemic_failure"] is False

    def test_named_stages_are_ordered(self, runner, tmp_path, config_file, recorded):
        result = invoke(
            runner, tmp_path, "--config", str(config_file), "migrate", "projects", "users"
        )

        assert result.exit_code == 0, result.output
        assert recorded["stages"] == ["users", "projects"]

    def test_systemic_auth_failure_exits_3(self, runner, tmp_path, config_file, recorded):
        recorded["failure"] = AuthExhaustedError("All source authentication strategies failed")

        result = invoke(runner, tmp_path, "--config", str(config_file), "migrate", "users")

        assert result.exit_code == 3
        assert "Migration Summary" in result.output
        error_log = tmp_path / "logs" / "migration_errors.log"
        assert "=== USERS MIGRATION FAILED ===" in error_log.read_text()

    def test_unknown_stage_is_a_usage_error(self, runner, tmp_path, config_file):
        result = invoke(runner, tmp_path, "--config", str(config_file), "migrate", "nodes")
        assert result.exit_code == 2
        assert "Invalid value" in result.output


@pytest.mark.parametrize(
    ("exc", "code"),
    [
        (ConfigurationError("bad"), 2),
        (AuthExhaustedError("none left"), 3),
        (NotFoundError("gone", status_code=404), 4),
        (NetworkError("timeout"), 4),
        (RuntimeError("boom"), 1),
    ],
)
def test_handle_errors_exit_codes(exc, code):
    @click.command()
    @handle_errors
    def failing() -> None:
        raise exc

    result = CliRunner().invoke(failing, [])

    assert result.exit_code == code
