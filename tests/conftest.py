"""Shared test fixtures for compoundkb."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

import pytest

from compoundkb.models import Excerpt, Finding, SolutionDocument, solution_id
from compoundkb.storage.db import get_connection
from compoundkb.storage.repository import Repository

PERF = "performance-issue"
DB = "database-issue"


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db_conn(db_path: Path) -> sqlite3.Connection:
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def repo(db_conn: sqlite3.Connection) -> Repository:
    return Repository(db_conn)


@pytest.fixture
def n_plus_one() -> Finding:
    return Finding(
        symptom="N+1 query in DashboardController",
        root_cause="Each widget lazily loaded its owner inside the loop",
        fix="Added includes(:owner) to the widgets query to eager load owners.",
        evidence=[Excerpt(0, "N+1 query in DashboardController")],
        session_id="session-1",
    )


@pytest.fixture
def n_plus_one_variant() -> Finding:
    """Same problem, reported with slightly different wording."""
    return Finding(
        symptom="N+1 query in DashboardController#show",
        root_cause="Owners loaded one at a time",
        fix="Added includes(:owner) to the widgets query to eager load owners.",
        session_id="session-3",
    )


@pytest.fixture
def connection_leak() -> Finding:
    return Finding(
        symptom="Database connection leak exhausts the connection pool under load",
        root_cause="Background job opened a connection per batch and never released it",
        fix="Wrapped the batch in with_connection so the connection returns to the pool.",
        session_id="session-leak",
    )


def make_document(
    category: str,
    symptom: str,
    fix: str,
    occurrence_count: int = 1,
    updated_at: datetime | None = None,
    root_cause: str | None = None,
) -> SolutionDocument:
    """Build a document the way reconcile would, for seeding the store directly."""
    when = updated_at or datetime(2026, 10, 1, 12, 0, 0)
    return SolutionDocument(
        id=solution_id(category, symptom),
        category=category,
        title=symptom[:80],
        symptom=symptom,
        fix=fix,
        root_cause=root_cause,
        created_at=when,
        updated_at=when,
        occurrence_count=occurrence_count,
    )


@pytest.fixture
def populated_repo(repo: Repository) -> Repository:
    """Repository seeded with database and performance solutions for search tests."""
    docs = [
        make_document(
            DB,
            "Database connection leak in the import worker",
            "Release the connection in a finally block.",
            occurrence_count=4,
        ),
        make_document(
            DB,
            "Connection pool exhausted after deploy",
            "Lowered the pool size per process and added a reaper.",
            occurrence_count=1,
        ),
        make_document(
            DB,
            "Slow migration locks the orders table",
            "Create the index concurrently in a separate migration.",
        ),
        make_document(
            DB,
            "Deadlock between invoice and payment transactions",
            "Acquire row locks in a consistent order.",
        ),
        make_document(
            PERF,
            "N+1 query in DashboardController",
            "Added includes(:owner) to eager load owners.",
            occurrence_count=2,
        ),
    ]
    for doc in docs:
        repo.put(doc)
    return repo
