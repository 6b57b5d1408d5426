"""
Unit tests for the inspection CLI.

Tests cover:
- Rendering of tables, dumps and lookups
- Exit codes of main()
- Logging setup
"""

import json
import logging
import tempfile

import json_log_formatter
import pytest

from tabledb import num, open_database
from tabledb.config import ObservabilityConfig, StoreConfig
from tabledb.storage.memory import InMemoryFileManager
from tabledb.tools.inspect_cli import InspectCLI, main, setup_logging


class TestInspectCLI:
    """Tests for InspectCLI rendering."""

    @pytest.fixture
    async def db(self):
        db = await open_database("mem", file_manager=InMemoryFileManager())
        await db.commit(db.define("actors", {"cash": num}), db.define("positions"))
        return db

    @pytest.mark.asyncio
    async def test_tables(self, db):
        await db.commit(db.create("actors", {"cash": 1}))
        assert InspectCLI(db).tables() == "actors\t1 (1 tagged fields)\npositions\t0"

    @pytest.mark.asyncio
    async def test_no_tables(self):
        db = await open_database("mem", file_manager=InMemoryFileManager())
        assert InspectCLI(db).tables() == "No tables defined"

    @pytest.mark.asyncio
    async def test_dump_and_get(self, db):
        (record_id,) = await db.commit(db.create("actors", {"cash": 5000}))
        cli = InspectCLI(db)

        assert json.loads(cli.dump("actors")) == {record_id: {"cash": 5000}}
        assert json.loads(cli.get(record_id)) == {
            "table": "actors",
            "id": record_id,
            "record": {"cash": 5000},
        }
        assert cli.get("missing") is None


class TestMain:
    """Tests for the CLI entry point."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_tables_on_empty_store(self, data_dir, capsys):
        assert main(["--data-dir", data_dir, "tables"]) == 0
        assert "No tables defined" in capsys.readouterr().out

    def test_get_missing_record(self, data_dir, capsys):
        assert main(["--data-dir", data_dir, "get", "nope"]) == 1
        assert "No record with id 'nope'" in capsys.readouterr().err

    def test_dump_undefined_table(self, data_dir, capsys):
        assert main(["--data-dir", data_dir, "dump", "ghosts"]) == 1
        assert "Table not found: 'ghosts'" in capsys.readouterr().err

    @pytest.mark.parametrize(
        "name,value,message",
        [
            ("LOG_FORMAT", "xml", "Invalid LOG_FORMAT"),
            ("TABLEDB_ID_LENGTH", "2", "TABLEDB_ID_LENGTH must be at least 4"),
            ("TABLEDB_COMPACT_EVERY", "often", "invalid literal"),
        ],
    )
    def test_invalid_environment(self, data_dir, capsys, monkeypatch, name, value, message):
        monkeypatch.setenv(name, value)
        assert main(["--data-dir", data_dir, "tables"]) == 1
        err = capsys.readouterr().err
        assert err.startswith("error: invalid configuration")
        assert message in err

    def test_compact(self, data_dir, capsys):
        assert main(["--data-dir", data_dir, "compact"]) == 0
        assert "Compacted 0 record(s)" in capsys.readouterr().out


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(StoreConfig(observability=ObservabilityConfig(log_format="json")))
        (handler,) = logging.getLogger().handlers
        assert isinstance(handler.formatter, json_log_formatter.JSONFormatter)

    def test_text_format_and_level(self):
        setup_logging(StoreConfig(observability=ObservabilityConfig(log_level="debug")))
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
