"""SQLite database setup and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1
BUSY_TIMEOUT = 30.0  # seconds

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS solutions (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    title TEXT NOT NULL,
    symptom TEXT NOT NULL,
    root_cause TEXT,
    fix TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    occurrence_count INTEGER NOT NULL DEFAULT 1 CHECK (occurrence_count >= 1),
    revision INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS solution_sources (
    solution_id TEXT NOT NULL REFERENCES solutions(id),
    source_ref TEXT NOT NULL,
    PRIMARY KEY (solution_id, source_ref)
);

CREATE TABLE IF NOT EXISTS solution_links (
    solution_id TEXT NOT NULL REFERENCES solutions(id),
    linked_id TEXT NOT NULL,
    PRIMARY KEY (solution_id, linked_id)
);

CREATE TABLE IF NOT EXISTS solution_tags (
    solution_id TEXT NOT NULL REFERENCES solutions(id),
    tag TEXT NOT NULL,
    PRIMARY KEY (solution_id, tag)
);

CREATE TABLE IF NOT EXISTS critical_patterns (
    pattern_id TEXT PRIMARY KEY,
    source_document_id TEXT NOT NULL REFERENCES solutions(id),
    statement TEXT NOT NULL,
    promoted_at TIMESTAMP NOT NULL,
    still_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS pattern_members (
    pattern_id TEXT NOT NULL REFERENCES critical_patterns(pattern_id),
    solution_id TEXT NOT NULL,
    PRIMARY KEY (pattern_id, solution_id)
);

CREATE INDEX IF NOT EXISTS idx_solutions_category ON solutions(category);
CREATE INDEX IF NOT EXISTS idx_solutions_updated ON solutions(updated_at);
CREATE INDEX IF NOT EXISTS idx_links_linked ON solution_links(linked_id);
CREATE INDEX IF NOT EXISTS idx_pattern_members_solution ON pattern_members(solution_id);
CREATE INDEX IF NOT EXISTS idx_patterns_active ON critical_patterns(still_active);
"""

FTS_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS solutions_fts USING fts5(
    title,
    symptom,
    root_cause,
    fix,
    content='solutions',
    content_rowid='rowid'
);

-- Triggers to keep FTS index in sync
CREATE TRIGGER IF NOT EXISTS solutions_ai AFTER INSERT ON solutions BEGIN
    INSERT INTO solutions_fts(rowid, title, symptom, root_cause, fix)
    VALUES (new.rowid, new.title, new.symptom, new.root_cause, new.fix);
END;

CREATE TRIGGER IF NOT EXISTS solutions_ad AFTER DELETE ON solutions BEGIN
    INSERT INTO solutions_fts(solutions_fts, rowid, title, symptom, root_cause, fix)
    VALUES ('delete', old.rowid, old.title, old.symptom, old.root_cause, old.fix);
END;

CREATE TRIGGER IF NOT EXISTS solutions_au AFTER UPDATE ON solutions BEGIN
    INSERT INTO solutions_fts(solutions_fts, rowid, title, symptom, root_cause, fix)
    VALUES ('delete', old.rowid, old.title, old.symptom, old.root_cause, old.fix);
    INSERT INTO solutions_fts(rowid, title, symptom, root_cause, fix)
    VALUES (new.rowid, new.title, new.symptom, new.root_cause, new.fix);
END;
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Create or open a SQLite database with the compoundkb schema.

    The connection runs in autocommit mode; the repository opens explicit
    ``BEGIN IMMEDIATE`` transactions for every write so read-modify-write
    sequences are atomic across processes sharing the file.
    """
    conn = sqlite3.connect(
        str(db_path),
        timeout=BUSY_TIMEOUT,
        check_same_thread=False,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.executescript(FTS_SQL)
    conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")

    return conn
