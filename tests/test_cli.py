"""Tests for the Visit-Facts command line interface."""

import asyncio
import logging
import os
from datetime import datetime
from unittest.mock import patch

import pandas as pd
import pytest
from typer.testing import CliRunner

from visitfacts.adapters.storage import DuckDBFactRepository
from visitfacts.cli import app
from visitfacts.domain.codecs import build_default_registry
from visitfacts.domain.observation_fact import FactKey, ValueType
from visitfacts.domain.values import NumericValue

runner = CliRunner()

CATALOG_CSV = """code,name,value_type,default_unit,category
WEIGHT,Body weight,N,kg,Vitals
HEIGHT,Body height,N,cm,Vitals
NOTE,Clinical note,T,,Notes
"""


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def cli_env(tmp_path):
    """DuckDB file with one weight per visit and a seeded catalog."""
    db_path = tmp_path / "facts.duckdb"
    catalog_path = tmp_path / "concepts.csv"
    catalog_path.write_text(CATALOG_CSV, encoding="utf-8")

    registry = build_default_registry()
    rows = [
        registry.encode(
            NumericValue(value=kg, unit="kg"),
            ValueType.NUMERIC,
            key=FactKey("P001", visit_id, "WEIGHT"),
            recorded_at=recorded_at,
            category="Vitals",
            source_system="SEED"
        )
        for visit_id, kg, recorded_at in [
            ("V1", 70, datetime(2024, 1, 5, 9, 0)),
            ("V2", 72, datetime(2024, 2, 5, 9, 0)),
        ]
    ]

    async def seed():
        repository = DuckDBFactRepository(db_path=str(db_path))
        try:
            for row in rows:
                assert (await repository.upsert(row)).is_success()
        finally:
            await repository.close()

    asyncio.run(seed())

    env = {
        "VF_DB_TYPE": "duckdb",
        "VF_DB_PATH": str(db_path),
        "VF_CATALOG_CSV": str(catalog_path),
    }
    with patch.dict(os.environ, env, clear=True):
        yield tmp_path


class TestCLI:
    """Test suite for the CLI commands."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "Visit-Facts v1.0.0" in result.stdout

    def test_info(self, cli_env):
        result = runner.invoke(app, ["info"])
        assert result.exit_code == 0
        assert "duckdb" in result.stdout
        assert "VISIT_EDITOR" in result.stdout

    def test_stats(self, cli_env):
        result = runner.invoke(app, ["stats", "P001", "V2"])

        assert result.exit_code == 0
        assert "Vitals" in result.stdout
        assert "50%" in result.stdout
        assert "33%" in result.stdout

    def test_stats_single_category(self, cli_env):
        result = runner.invoke(app, ["stats", "P001", "V2", "--category", "Notes"])

        assert result.exit_code == 0
        assert "Vitals" not in result.stdout
        assert "Uncategorized observations:" in result.stdout

    def test_previous(self, cli_env):
        result = runner.invoke(app, ["previous", "P001", "WEIGHT", "--before", "2024-02-05"])

        assert result.exit_code == 0
        assert "V1" in result.stdout
        assert "value=70.0" in result.stdout

    def test_previous_miss(self, cli_env):
        result = runner.invoke(app, ["previous", "P001", "WEIGHT", "--before", "2024-01-01"])

        assert result.exit_code == 1
        assert "No value of WEIGHT" in result.stdout

    def test_export(self, cli_env):
        output = cli_env / "visit.csv"
        result = runner.invoke(app, ["export", "P001", "V1", str(output)])

        assert result.exit_code == 0
        assert "Exported 1 facts" in result.stdout
        exported = pd.read_csv(output)
        assert exported.loc[0, "concept_code"] == "WEIGHT"

    def test_invalid_configuration(self):
        env = {"VF_DB_TYPE": "postgresql"}
        with patch.dict(os.environ, env, clear=True):
            result = runner.invoke(app, ["stats", "P001", "V1"])

        assert result.exit_code == 1
        assert "Failed to initialize" in result.stdout
