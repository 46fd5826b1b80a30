"""Tests for database engine setup."""

from pathlib import Path

from sqlalchemy import inspect, text

from mobile_appgen.db import create_all_tables, get_engine


class TestGetEngine:
    """Tests for get_engine."""

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        """The directory of a sqlite file is created."""
        db_file = tmp_path / "nested" / "dir" / "jobs.db"
        engine = get_engine(f"sqlite:///{db_file}")
        create_all_tables(engine)
        assert db_file.is_file()

    def test_file_database_uses_wal(self, tmp_path: Path) -> None:
        """File databases are switched to WAL journaling."""
        engine = get_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
        with engine.connect() as conn:
            mode = conn.execute(text("PRAGMA journal_mode")).scalar()
        assert mode == "wal"

    def test_memory_database(self) -> None:
        """In-memory databases work without a file."""
        engine = get_engine("sqlite:///:memory:")
        create_all_tables(engine)
        assert {"build_jobs", "build_logs"} <= set(inspect(engine).get_table_names())
