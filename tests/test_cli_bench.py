from __future__ import annotations

from typer.testing import CliRunner

from cli.bench.app import app
from kdtreex import config as kx_config


def test_query_command_verifies_against_linear_scan() -> None:
    runner = CliRunner()

    result = runner.invoke(
        app,
        [
            "query",
            "--dimension",
            "2",
            "--tree-points",
            "200",
            "--queries",
            "16",
            "--k",
            "4",
            "--leaf-max-size",
            "5",
            "--disable-diagnostics",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "kdtreex | build=" in result.output
    assert "mismatches=0/16" in result.output
    assert kx_config.current_runtime_context() is None


def test_query_command_supports_so3() -> None:
    runner = CliRunner()

    result = runner.invoke(
        app,
        ["query", "--metric", "so3", "--dimension", "4", "--tree-points", "64", "--queries", "4", "--k", "3"],
    )

    assert result.exit_code == 0, result.output
    assert "mismatches=0/4" in result.output


def test_query_command_rejects_bad_so3_dimension() -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["query", "--metric", "so3", "--dimension", "3"])

    assert result.exit_code != 0


def test_dynamic_command_reports_levels() -> None:
    runner = CliRunner()

    result = runner.invoke(
        app,
        ["dynamic", "--dimension", "2", "--tree-points", "100", "--batch-size", "16"],
    )

    assert result.exit_code == 0, result.output
    assert "levels=3" in result.output
    assert "level[2] | capacity=4 live=4" in result.output
    assert "level[5] | capacity=32 live=32" in result.output
    assert "level[6] | capacity=64 live=64" in result.output
