"""Tests for the converge CLI."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from converge.cli import cli

PROGRAM = """\
from converge.resource_group import ResourceGroup


async def main(scope):
    await ResourceGroup(scope, "main", location="eastus")
    if scope.stage == "broken":
        await scope.gather(ResourceGroup(scope, "broken", location=" "))
"""


@pytest.fixture
def program(tmp_path: Path) -> Path:
    path = tmp_path / "infra.py"
    path.write_text(PROGRAM)
    return path


@pytest.fixture
def runner() -> Iterator[CliRunner]:
    # Keep the JSON handler off the runner's captured streams
    with patch("converge.cli.setup_logging"):
        yield CliRunner(
            env={"APP_NAME": None, "STAGE": None, "USER": None, "LOCAL": None, "AZURE_SUBSCRIPTION_ID": None}
        )


class TestApply:
    """Tests for `converge apply`."""

    def test_local_apply(self, runner: CliRunner, program: Path) -> None:
        result = runner.invoke(cli, ["apply", str(program), "--app", "shop", "--local"])

        assert result.exit_code == 0, result.output
        assert "Applied: 1" in result.output
        assert "✓ Run succeeded" in result.output

    def test_failed_declaration(self, runner: CliRunner, program: Path) -> None:
        result = runner.invoke(cli, ["apply", str(program), "--app", "shop", "--stage", "broken", "--local"])

        assert result.exit_code == 1
        assert "✗ shop/broken/broken" in result.output
        assert "✗ Run failed" in result.output

    def test_missing_subscription(self, runner: CliRunner, program: Path) -> None:
        result = runner.invoke(cli, ["apply", str(program), "--app", "shop"])

        assert result.exit_code == 2
        assert "Run did not start" in result.output

    def test_missing_program(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["apply", str(tmp_path / "missing.py"), "--app", "shop"])

        assert result.exit_code == 2
        assert "does not exist" in result.output


class TestDestroy:
    """Tests for `converge destroy`."""

    def test_local_destroy(self, runner: CliRunner, program: Path) -> None:
        result = runner.invoke(cli, ["destroy", str(program), "--app", "shop", "--local"])

        assert result.exit_code == 0, result.output
        assert "Deleted: 0" in result.output


class TestVersion:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output
