"""Tests for SQLite connection and schema helpers."""

import sqlite3

import pytest

from pxe_fleet.core.database import (
    _split_sql,
    create_connection,
    create_test_db,
    get_schema_files,
    init_schema,
)


def _tables(conn) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {r[0] for r in rows}


class TestSplitSql:
    def test_comments_and_blank_lines_skipped(self):
        sql = "-- header\n\nCREATE TABLE a (x INT);\n-- note\nCREATE TABLE b (\n  y INT\n);\n"
        assert _split_sql(sql) == ["CREATE TABLE a (x INT);", "CREATE TABLE b (\n  y INT\n);"]

    def test_trailing_statement_without_semicolon(self):
        assert _split_sql("SELECT 1") == ["SELECT 1"]


class TestSchema:
    def test_bundled_files(self):
        names = [p.name for p in get_schema_files()]
        assert names == sorted(names)
        assert "01_deployments.sql" in names

    def test_missing_dir(self, tmp_path):
        assert get_schema_files(tmp_path / "nope") == []

    def test_creates_tables(self):
        conn = create_test_db()
        assert {"deployments", "task_runs", "activity_logs"} <= _tables(conn)

    def test_idempotent(self):
        conn = create_connection(":memory:")
        first = init_schema(conn)
        second = init_schema(conn)
        assert first == second

    def test_custom_dir(self, tmp_path):
        (tmp_path / "01_x.sql").write_text("CREATE TABLE IF NOT EXISTS x (id TEXT);\n")
        conn = create_connection(":memory:")
        assert init_schema(conn, tmp_path) == ["01_x.sql"]
        assert "x" in _tables(conn)


class TestConnection:
    def test_foreign_keys_enabled(self):
        conn = create_connection(":memory:")
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "fleet.db"
        conn = create_connection(str(path))
        init_schema(conn)
        conn.close()
        assert path.exists()

    def test_task_runs_cascade(self):
        conn = create_test_db()
        conn.execute(
            "INSERT INTO deployments (id, device_id, image_id, status, schedule_type, created_at, updated_at) "
            "VALUES ('d-1', 'lab', 'img', 'pending', 'immediate', 't', 't')"
        )
        conn.execute(
            "INSERT INTO task_runs (id, deployment_id, task_type, status, created_at) "
            "VALUES ('t-1', 'd-1', 'hostname', 'pending', 't')"
        )
        conn.execute("DELETE FROM deployments WHERE id = 'd-1'")
        assert conn.execute("SELECT COUNT(*) FROM task_runs").fetchone()[0] == 0

    def test_task_run_requires_deployment(self):
        conn = create_test_db()
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO task_runs (id, deployment_id, task_type, status, created_at) "
                "VALUES ('t-1', 'missing', 'hostname', 'pending', 't')"
            )
