"""SQLite connection and schema utilities.

The deployment store is a single SQLite database. ``create_connection``
opens it for use from both the request threads and the scheduler thread;
``init_schema`` applies the bundled ``schema/*.sql`` files in filename
order. Every statement is idempotent (``CREATE ... IF NOT EXISTS``) so
startup can always call it.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from pxe_fleet.core.protocols import Connection

logger = logging.getLogger(__name__)

# Default schema directory
SCHEMA_DIR = Path(__file__).resolve().parent / "schema"


def create_connection(database_path: str = ":memory:") -> sqlite3.Connection:
    """Open the deployment database.

    ``check_same_thread=False`` because the scheduler thread and the API
    share one connection; the repository serialises access with its own
    lock.
    """
    if database_path != ":memory:":
        Path(database_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(database_path, check_same_thread=False, timeout=5.0)
    conn.execute("PRAGMA foreign_keys = ON")
    logger.debug(f"Opened deployment database at {database_path}")
    return conn


def _split_sql(sql: str) -> list[str]:
    """Split a SQL script into individual semicolon-terminated statements."""
    statements = []
    current = []
    for line in sql.splitlines():
        stripped = line.strip()
        if stripped.startswith("--") or not stripped:
            continue
        current.append(line)
        if stripped.endswith(";"):
            stmt = "\n".join(current).strip()
            if stmt and stmt != ";":
                statements.append(stmt)
            current = []
    if current:
        stmt = "\n".join(current).strip()
        if stmt:
            statements.append(stmt)
    return statements


def get_schema_files(schema_dir: Path | str | None = None) -> list[Path]:
    """Sorted ``.sql`` files in ``schema_dir`` (defaults to core/schema/)."""
    directory = Path(schema_dir) if schema_dir else SCHEMA_DIR
    if not directory.exists():
        return []
    return sorted(directory.glob("*.sql"))


def init_schema(conn: Connection, schema_dir: Path | str | None = None) -> list[str]:
    """Apply all schema files to ``conn``.

    Returns:
        Names of the applied files.
    """
    applied = []
    for sql_file in get_schema_files(schema_dir):
        sql = sql_file.read_text(encoding="utf-8")
        for statement in _split_sql(sql):
            conn.execute(statement)
        applied.append(sql_file.name)
        logger.debug(f"Applied schema file {sql_file.name}")

    conn.commit()
    logger.info(f"Deployment schema ready ({len(applied)} file(s))")
    return applied


def create_test_db() -> sqlite3.Connection:
    """In-memory database with the schema applied. Convenience for tests."""
    conn = create_connection(":memory:")
    init_schema(conn)
    return conn
