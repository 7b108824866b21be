"""Tests for the Typer CLI."""

from __future__ import annotations

import duckdb
import pytest
from typer.testing import CliRunner

from arnab.cli import app

runner = CliRunner()


@pytest.fixture
def project(tmp_path):
    (tmp_path / "config.yaml").write_text("db_path: warehouse.duckdb\nmax_workers: 2\n")
    models = tmp_path / "models"
    (models / "staging").mkdir(parents=True)
    (models / "staging" / "orders.sql").write_text(
        "-- config: materialized=view\nSELECT 1 AS id, 250 AS amount_cents\n"
    )
    (models / "revenue.sql").write_text(
        "SELECT sum(amount_cents) AS total FROM {{ ref('staging.orders') }}\n"
    )
    return tmp_path


def test_no_args_shows_help():
    result = runner.invoke(app, [])
    assert "Usage" in result.output


def test_run(project):
    result = runner.invoke(app, ["run", "--project", str(project)])
    assert result.exit_code == 0, result.output
    assert "2 succeeded" in result.output

    conn = duckdb.connect(str(project / "warehouse.duckdb"))
    try:
        assert conn.execute("SELECT total FROM revenue").fetchone()[0] == 250
    finally:
        conn.close()


def test_run_with_workers(project):
    result = runner.invoke(app, ["run", "--workers", "1", "--project", str(project)])
    assert result.exit_code == 0, result.output


def test_run_rejects_zero_workers(project):
    result = runner.invoke(app, ["run", "--workers", "0", "--project", str(project)])
    assert result.exit_code == 1


def test_run_failure_exits_non_zero(project):
    (project / "models" / "broken.sql").write_text("SELECT * FROM no_such_table\n")
    result = runner.invoke(app, ["run", "--project", str(project)])
    assert result.exit_code == 1
    assert "broken" in result.output


def test_run_aborts_on_cycle(project):
    (project / "models" / "staging" / "orders.sql").write_text("SELECT * FROM {{ ref('revenue') }}\n")
    result = runner.invoke(app, ["run", "--project", str(project)])
    assert result.exit_code == 1
    assert "Cyclic dependency" in result.output
    assert not (project / "warehouse.duckdb").exists()


def test_missing_config(tmp_path):
    result = runner.invoke(app, ["run", "--project", str(tmp_path)])
    assert result.exit_code == 1
    assert "config.yaml" in result.output


def test_invalid_config(tmp_path):
    (tmp_path / "config.yaml").write_text("max_workers: 2\n")
    result = runner.invoke(app, ["plan", "--project", str(tmp_path)])
    assert result.exit_code == 1


def test_plan(project):
    result = runner.invoke(app, ["plan", "--project", str(project)])
    assert result.exit_code == 0, result.output
    assert "staging.orders" in result.output
    assert "revenue" in result.output
    assert not (project / "warehouse.duckdb").exists()


def test_compile(project):
    result = runner.invoke(app, ["compile", "revenue", "--project", str(project)])
    assert result.exit_code == 0, result.output
    assert 'CREATE OR REPLACE TABLE "revenue"' in result.output
    assert '"staging"."orders"' in result.output


def test_compile_unknown_model(project):
    result = runner.invoke(app, ["compile", "nope", "--project", str(project)])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_viz(project):
    out = project / "graph.svg"
    result = runner.invoke(app, ["viz", str(out), "--project", str(project)])
    assert result.exit_code == 0, result.output
    assert out.read_text().startswith("<svg")


def test_run_file(project):
    script = project / "seed.sql"
    script.write_text("CREATE TABLE seeded AS SELECT 7 AS v;\n")
    result = runner.invoke(app, ["run-file", str(script), "--project", str(project)])
    assert result.exit_code == 0, result.output

    conn = duckdb.connect(str(project / "warehouse.duckdb"))
    try:
        assert conn.execute("SELECT v FROM seeded").fetchone()[0] == 7
    finally:
        conn.close()


def test_run_file_failure(project):
    good = project / "good.sql"
    good.write_text("SELECT 1;\n")
    bad = project / "bad.sql"
    bad.write_text("SELEC 1;\n")
    result = runner.invoke(app, ["run-file", str(bad), str(good), "--project", str(project)])
    assert result.exit_code == 1
