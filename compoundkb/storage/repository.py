"""Store operations for solution documents and critical patterns."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from compoundkb.errors import ConcurrentUpdateConflict, NotFoundError
from compoundkb.models import CriticalPattern, SolutionDocument


class Repository:
    """Data access layer for the compoundkb SQLite database.

    Writes run inside ``BEGIN IMMEDIATE`` transactions. Set-valued fields
    (source refs, cross refs, tags) are merged on every put, so two writers
    adding different refs never lose each other. ``occurrence_count`` is
    guarded by the ``revision`` compare-and-swap in ``put``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()
        self._id_locks: dict[str, list] = {}  # doc_id -> [lock, holders and waiters]
        self._id_locks_guard = threading.Lock()

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def locked(self, doc_id: str) -> Iterator[None]:
        """Per-document mutual exclusion within this process.

        An id's lock lives only while someone holds or waits for it.
        """
        with self._id_locks_guard:
            entry = self._id_locks.setdefault(doc_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._id_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._id_locks[doc_id]

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    # -- solution documents ------------------------------------------------

    def get(self, doc_id: str) -> SolutionDocument:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM solutions WHERE id = ?", (doc_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError("solution", doc_id)
            return self._row_to_document(row)

    def exists(self, doc_id: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM solutions WHERE id = ?", (doc_id,)
            ).fetchone()
        return row is not None

    def put(
        self, doc: SolutionDocument, expected_revision: int | None = None
    ) -> SolutionDocument:
        """Insert or update a document and return the stored version.

        If ``expected_revision`` is given, the write only applies when the
        stored revision still matches (0 means "must not exist yet");
        otherwise ConcurrentUpdateConflict is raised.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT revision FROM solutions WHERE id = ?", (doc.id,)
            ).fetchone()
            current = row["revision"] if row else 0
            if expected_revision is not None and current != expected_revision:
                raise ConcurrentUpdateConflict(doc.id, expected_revision, current)

            conn.execute(
                """INSERT INTO solutions
                (id, category, title, symptom, root_cause, fix,
                 created_at, updated_at, occurrence_count, revision)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                ON CONFLICT(id) DO UPDATE SET
                    category = excluded.category,
                    title = excluded.title,
                    symptom = excluded.symptom,
                    root_cause = excluded.root_cause,
                    fix = excluded.fix,
                    updated_at = excluded.updated_at,
                    occurrence_count = excluded.occurrence_count,
                    revision = solutions.revision + 1""",
                (
                    doc.id,
                    doc.category,
                    doc.title,
                    doc.symptom,
                    doc.root_cause,
                    doc.fix,
                    doc.created_at.isoformat(),
                    doc.updated_at.isoformat(),
                    doc.occurrence_count,
                ),
            )

            for ref in doc.source_refs:
                conn.execute(
                    "INSERT OR IGNORE INTO solution_sources (solution_id, source_ref) VALUES (?, ?)",
                    (doc.id, ref),
                )
            for tag in doc.tags:
                conn.execute(
                    "INSERT OR IGNORE INTO solution_tags (solution_id, tag) VALUES (?, ?)",
                    (doc.id, tag),
                )
            for other_id in doc.cross_refs:
                self._insert_link(conn, doc.id, other_id)

            stored = conn.execute(
                "SELECT * FROM solutions WHERE id = ?", (doc.id,)
            ).fetchone()
            return self._row_to_document(stored)

    def link(self, doc_id: str, other_id: str) -> None:
        """Record a symmetric cross reference between two stored documents."""
        if doc_id == other_id:
            return
        with self._transaction() as conn:
            for key in (doc_id, other_id):
                if conn.execute("SELECT 1 FROM solutions WHERE id = ?", (key,)).fetchone() is None:
                    raise NotFoundError("solution", key)
            self._insert_link(conn, doc_id, other_id)

    def list(self, category: str, limit: int | None = None) -> list[SolutionDocument]:
        """Documents in a category, most recently updated first."""
        query = "SELECT * FROM solutions WHERE category = ? ORDER BY updated_at DESC, id"
        params: list = [category]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
            return [self._row_to_document(row) for row in rows]

    def all(self) -> list[SolutionDocument]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM solutions ORDER BY updated_at DESC, id"
            ).fetchall()
            return [self._row_to_document(row) for row in rows]

    def recent(self, limit: int = 10, category: str | None = None) -> list[SolutionDocument]:
        if category:
            return self.list(category, limit=limit)
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM solutions ORDER BY updated_at DESC, id LIMIT ?", (limit,)
            ).fetchall()
            return [self._row_to_document(row) for row in rows]

    def search(
        self, fts_query: str, category: str | None = None, limit: int = 50
    ) -> list[SolutionDocument]:
        """Full-text search across title, symptom, root cause and fix."""
        if not fts_query:
            return []
        query = """
            SELECT s.* FROM solutions s
            JOIN solutions_fts fts ON s.rowid = fts.rowid
            WHERE solutions_fts MATCH ?
        """
        params: list = [fts_query]
        if category:
            query += " AND s.category = ?"
            params.append(category)
        query += " ORDER BY rank LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
            return [self._row_to_document(row) for row in rows]

    # -- critical patterns -------------------------------------------------

    def get_pattern(self, pattern_id: str) -> CriticalPattern:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM critical_patterns WHERE pattern_id = ?", (pattern_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError("pattern", pattern_id)
            return self._row_to_pattern(row)

    def insert_pattern_if_absent(self, pattern: CriticalPattern) -> bool:
        """Insert a pattern unless one already covers any of its member documents.

        The check and the insert share one write transaction, so two
        concurrent promotions of the same cluster produce exactly one pattern.
        """
        members = set(pattern.member_ids) | {pattern.source_document_id}
        placeholders = ", ".join("?" for _ in members)
        with self._transaction() as conn:
            taken = conn.execute(
                f"SELECT 1 FROM pattern_members WHERE solution_id IN ({placeholders}) LIMIT 1",
                sorted(members),
            ).fetchone()
            if taken is not None:
                return False
            if conn.execute(
                "SELECT 1 FROM critical_patterns WHERE pattern_id = ?", (pattern.pattern_id,)
            ).fetchone():
                return False

            conn.execute(
                """INSERT INTO critical_patterns
                (pattern_id, source_document_id, statement, promoted_at, still_active)
                VALUES (?, ?, ?, ?, ?)""",
                (
                    pattern.pattern_id,
                    pattern.source_document_id,
                    pattern.statement,
                    pattern.promoted_at.isoformat(),
                    int(pattern.still_active),
                ),
            )
            for member in sorted(members):
                conn.execute(
                    "INSERT INTO pattern_members (pattern_id, solution_id) VALUES (?, ?)",
                    (pattern.pattern_id, member),
                )
        return True

    def patterns(self, active_only: bool = True) -> list[CriticalPattern]:
        query = "SELECT * FROM critical_patterns"
        if active_only:
            query += " WHERE still_active = 1"
        query += " ORDER BY promoted_at, pattern_id"
        with self._lock:
            rows = self._conn.execute(query).fetchall()
            return [self._row_to_pattern(row) for row in rows]

    def patterns_for_documents(self, doc_ids: set[str]) -> list[CriticalPattern]:
        """Patterns (active or not) whose cluster includes any of ``doc_ids``."""
        if not doc_ids:
            return []
        placeholders = ", ".join("?" for _ in doc_ids)
        with self._lock:
            rows = self._conn.execute(
                f"""SELECT DISTINCT p.* FROM critical_patterns p
                JOIN pattern_members m ON p.pattern_id = m.pattern_id
                WHERE m.solution_id IN ({placeholders})
                ORDER BY p.promoted_at, p.pattern_id""",
                sorted(doc_ids),
            ).fetchall()
            return [self._row_to_pattern(row) for row in rows]

    def demote_pattern(self, pattern_id: str) -> CriticalPattern:
        """Mark a pattern inactive. Demotion is terminal."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE critical_patterns SET still_active = 0 WHERE pattern_id = ?",
                (pattern_id,),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("pattern", pattern_id)
        return self.get_pattern(pattern_id)

    # -- stats -------------------------------------------------------------

    def get_stats(self) -> dict:
        """Get summary statistics about the knowledge base."""
        with self._lock:
            total = self._conn.execute("SELECT COUNT(*) FROM solutions").fetchone()[0]
            occurrences = self._conn.execute(
                "SELECT COALESCE(SUM(occurrence_count), 0) FROM solutions"
            ).fetchone()[0]
            by_category = {
                row["category"]: row["n"]
                for row in self._conn.execute(
                    "SELECT category, COUNT(*) AS n FROM solutions GROUP BY category ORDER BY category"
                ).fetchall()
            }
            active = self._conn.execute(
                "SELECT COUNT(*) FROM critical_patterns WHERE still_active = 1"
            ).fetchone()[0]
            demoted = self._conn.execute(
                "SELECT COUNT(*) FROM critical_patterns WHERE still_active = 0"
            ).fetchone()[0]

        return {
            "total_solutions": total,
            "total_occurrences": occurrences,
            "by_category": by_category,
            "active_patterns": active,
            "demoted_patterns": demoted,
        }

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _insert_link(conn: sqlite3.Connection, doc_id: str, other_id: str) -> None:
        if doc_id == other_id:
            return
        conn.execute(
            "INSERT OR IGNORE INTO solution_links (solution_id, linked_id) VALUES (?, ?)",
            (doc_id, other_id),
        )
        conn.execute(
            """INSERT OR IGNORE INTO solution_links (solution_id, linked_id)
            SELECT ?, ? WHERE EXISTS (SELECT 1 FROM solutions WHERE id = ?)""",
            (other_id, doc_id, other_id),
        )

    def _row_to_document(self, row: sqlite3.Row) -> SolutionDocument:
        """Convert a database row to a SolutionDocument with its ref sets."""
        doc_id = row["id"]
        sources = self._conn.execute(
            "SELECT source_ref FROM solution_sources WHERE solution_id = ?", (doc_id,)
        ).fetchall()
        links = self._conn.execute(
            "SELECT linked_id FROM solution_links WHERE solution_id = ?", (doc_id,)
        ).fetchall()
        tags = self._conn.execute(
            "SELECT tag FROM solution_tags WHERE solution_id = ?", (doc_id,)
        ).fetchall()

        return SolutionDocument(
            id=doc_id,
            category=row["category"],
            title=row["title"],
            symptom=row["symptom"],
            root_cause=row["root_cause"],
            fix=row["fix"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            occurrence_count=row["occurrence_count"],
            source_refs={r[0] for r in sources},
            cross_refs={r[0] for r in links},
            tags={r[0] for r in tags},
            revision=row["revision"],
        )

    def _row_to_pattern(self, row: sqlite3.Row) -> CriticalPattern:
        members = self._conn.execute(
            "SELECT solution_id FROM pattern_members WHERE pattern_id = ?",
            (row["pattern_id"],),
        ).fetchall()
        return CriticalPattern(
            pattern_id=row["pattern_id"],
            source_document_id=row["source_document_id"],
            statement=row["statement"],
            promoted_at=datetime.fromisoformat(row["promoted_at"]),
            still_active=bool(row["still_active"]),
            member_ids={r[0] for r in members},
        )
