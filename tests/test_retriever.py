"""Tests for planning-time retrieval."""

from __future__ import annotations

import json
from datetime import datetime, timedelta

from compoundkb.models import CriticalPattern
from compoundkb.query.retriever import Retriever, results_to_json
from compoundkb.storage.repository import Repository
from conftest import DB, PERF, make_document

NOW = datetime(2026, 10, 18, 12, 0, 0)


def _promote(repo: Repository, doc_id: str, statement: str) -> CriticalPattern:
    pattern = CriticalPattern(
        pattern_id=f"pattern-{doc_id[-6:]}",
        source_document_id=doc_id,
        statement=statement,
        promoted_at=NOW - timedelta(days=1),
        member_ids={doc_id},
    )
    assert repo.insert_pattern_if_absent(pattern)
    return pattern


class TestSearch:
    def test_pattern_first_then_ranked_within_category(self, populated_repo: Repository):
        slow_migration = next(
            d for d in populated_repo.list(DB) if d.symptom.startswith("Slow migration")
        )
        pattern = _promote(
            populated_repo, slow_migration.id, "Database issue: Create the index concurrently."
        )
        for i in range(4):
            populated_repo.put(make_document(
                DB, f"Connection timeout number {'x' * (i + 1)}", "Raise the database timeout."
            ))

        results = Retriever(populated_repo).search(
            "database connection leak", category=DB, limit=5, now=NOW
        )

        assert 0 < len(results) <= 5
        assert results[0].is_pattern
        assert results[0].pattern.pattern_id == pattern.pattern_id
        assert all(not r.is_pattern for r in results[1:])
        assert all(r.document.category == DB for r in results)
        scores = [r.score for r in results[1:]]
        assert scores == sorted(scores, reverse=True)
        assert results[1].document.symptom == "Database connection leak in the import worker"

    def test_patterns_rank_above_better_matches(self, populated_repo: Repository):
        deadlock = next(d for d in populated_repo.list(DB) if d.symptom.startswith("Deadlock"))
        _promote(populated_repo, deadlock.id, "Database issue: Acquire row locks in a consistent order.")

        results = Retriever(populated_repo).search("connection leak transactions", now=NOW)
        assert results[0].document.id == deadlock.id
        assert results[0].is_pattern
        assert results[1].score > 0

    def test_unmatched_pattern_is_not_returned(self, populated_repo: Repository):
        deadlock = next(d for d in populated_repo.list(DB) if d.symptom.startswith("Deadlock"))
        _promote(populated_repo, deadlock.id, "Database issue: Acquire row locks in a consistent order.")

        results = Retriever(populated_repo).search("eager load owners", now=NOW)
        assert results
        assert not any(r.is_pattern for r in results)
        assert results[0].document.category == PERF

    def test_limit(self, populated_repo: Repository):
        assert len(Retriever(populated_repo).search("connection", limit=1, now=NOW)) == 1
        assert Retriever(populated_repo).search("connection", limit=0) == []

    def test_no_match(self, populated_repo: Repository):
        assert Retriever(populated_repo).search("kubernetes helm chart", now=NOW) == []

    def test_occurrence_boost_breaks_even_relevance(self, repo: Repository):
        once = make_document(DB, "Stale cache entry", "Bust the cache key.", occurrence_count=1, updated_at=NOW)
        often = make_document(DB, "Stale cache entry", "Bust the cache key.", occurrence_count=6, updated_at=NOW)
        often.id = "database-issue-bbbbbbbbbbbb"
        repo.put(once)
        repo.put(often)

        results = Retriever(repo).search("stale cache entry", now=NOW)
        assert [r.document.id for r in results] == [often.id, once.id]

    def test_recency_boost(self, repo: Repository):
        retriever = Retriever(repo)
        fresh = make_document(DB, "A", "B", updated_at=NOW)
        stale = make_document(DB, "C", "D", updated_at=NOW - timedelta(days=365))
        assert retriever.boost(fresh, NOW) > retriever.boost(stale, NOW) >= 1.0

    def test_fresh_call_sees_new_documents(self, repo: Repository):
        retriever = Retriever(repo)
        assert retriever.search("connection leak", now=NOW) == []
        repo.put(make_document(DB, "Connection leak in cron", "Close it."))
        assert len(retriever.search("connection leak", now=NOW)) == 1

    def test_stop_word_query_browses_recent(self, populated_repo: Repository):
        results = Retriever(populated_repo).search("what is the", category=DB, limit=3, now=NOW)
        assert len(results) == 3
        assert all(r.document.category == DB for r in results)

    def test_results_to_json(self, populated_repo: Repository):
        results = Retriever(populated_repo).search("connection leak", now=NOW)
        data = json.loads(results_to_json("connection leak", results))
        assert data["query"] == "connection leak"
        assert data["count"] == len(results)
        assert "document" in data["results"][0]


class TestDemotion:
    def test_demoted_pattern_loses_priority(self, populated_repo: Repository):
        deadlock = next(d for d in populated_repo.list(DB) if d.symptom.startswith("Deadlock"))
        pattern = _promote(populated_repo, deadlock.id, "Database issue: Acquire row locks in a consistent order.")
        retriever = Retriever(populated_repo)
        assert retriever.search("connection leak transactions", now=NOW)[0].is_pattern

        populated_repo.demote_pattern(pattern.pattern_id)

        results = retriever.search("connection leak transactions", now=NOW)
        assert not any(r.is_pattern for r in results)
        assert retriever.critical_patterns() == []
        assert "No critical patterns" in retriever.render_critical_patterns()


class TestCriticalPatterns:
    def test_render(self, populated_repo: Repository):
        deadlock = next(d for d in populated_repo.list(DB) if d.symptom.startswith("Deadlock"))
        _promote(populated_repo, deadlock.id, "Database issue: Acquire row locks in a consistent order.")

        text = Retriever(populated_repo).render_critical_patterns()
        assert text.startswith("# Critical Patterns")
        assert "1. **Database issue: Acquire row locks in a consistent order.**" in text
        assert deadlock.id in text

    def test_render_empty(self, repo: Repository):
        text = Retriever(repo).render_critical_patterns()
        assert "_No critical patterns have been promoted yet._" in text
