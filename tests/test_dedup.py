"""Tests for reconciling findings against the store."""

from __future__ import annotations

import threading
from dataclasses import replace

import pytest

from compoundkb.dedup import EXACT, NEAR_DUPLICATE, NEW, Deduplicator
from compoundkb.errors import ConcurrentUpdateConflict
from compoundkb.models import Finding, SolutionDocument, solution_id
from compoundkb.storage.repository import Repository

PERF = "performance-issue"


class TestContentAddressing:
    def test_equivalent_symptoms_share_an_id(self, repo: Repository, n_plus_one: Finding):
        reworded = replace(n_plus_one, symptom="  n+1 Query in dashboardcontroller!  ")
        dedup = Deduplicator(repo)

        first = dedup.reconcile(n_plus_one, PERF)
        second = dedup.reconcile(reworded, PERF)

        assert first.id == second.id == solution_id(PERF, n_plus_one.symptom)
        assert second.occurrence_count == 2

    def test_category_is_part_of_the_id(self, n_plus_one: Finding):
        assert solution_id(PERF, n_plus_one.symptom) != solution_id(
            "database-issue", n_plus_one.symptom
        )
        assert solution_id(PERF, n_plus_one.symptom).startswith("performance-issue-")


class TestReconcile:
    def test_new_document(self, repo: Repository, n_plus_one: Finding):
        result = Deduplicator(repo).reconcile_detailed(n_plus_one, PERF)

        assert result.outcome == NEW
        assert result.matched_id is None
        doc = repo.get(result.document.id)
        assert doc.occurrence_count == 1
        assert doc.source_refs == {"session-1"}
        assert doc.title == "N+1 query in DashboardController"
        assert doc.cross_refs == set()

    def test_identical_finding_increments_twice(self, repo: Repository, n_plus_one: Finding):
        dedup = Deduplicator(repo)
        dedup.reconcile(n_plus_one, PERF)
        dedup.reconcile(n_plus_one, PERF)
        result = dedup.reconcile_detailed(n_plus_one, PERF)

        assert result.outcome == EXACT
        assert result.document.occurrence_count == 3
        assert len(repo.list(PERF)) == 1

    def test_exact_match_keeps_original_text(self, repo: Repository, n_plus_one: Finding):
        dedup = Deduplicator(repo)
        original = dedup.reconcile(n_plus_one, PERF)
        later = replace(n_plus_one, fix="Something else entirely.", session_id="session-2")
        merged = dedup.reconcile(later, PERF)

        assert merged.fix == original.fix
        assert merged.source_refs == {"session-1", "session-2"}

    def test_near_duplicate_is_linked(
        self, repo: Repository, n_plus_one: Finding, n_plus_one_variant: Finding
    ):
        dedup = Deduplicator(repo)
        d1 = dedup.reconcile(n_plus_one, PERF)
        result = dedup.reconcile_detailed(n_plus_one_variant, PERF)

        assert result.outcome == NEAR_DUPLICATE
        assert result.matched_id == d1.id
        assert result.match_score >= 0.6
        assert result.document.id != d1.id
        assert result.document.occurrence_count == 1
        assert repo.get(d1.id).cross_refs == {result.document.id}
        assert repo.get(d1.id).occurrence_count == 1

    def test_other_category_is_never_a_candidate(
        self, repo: Repository, n_plus_one: Finding, n_plus_one_variant: Finding
    ):
        dedup = Deduplicator(repo)
        dedup.reconcile(n_plus_one, "database-issue")
        result = dedup.reconcile_detailed(n_plus_one_variant, PERF)
        assert result.outcome == NEW

    def test_unrelated_finding_is_new(
        self, repo: Repository, n_plus_one: Finding, connection_leak: Finding
    ):
        dedup = Deduplicator(repo)
        dedup.reconcile(n_plus_one, PERF)
        assert dedup.reconcile_detailed(connection_leak, PERF).outcome == NEW

    def test_best_match_prefers_higher_occurrence_on_equal_score(self, repo: Repository):
        dedup = Deduplicator(repo, similarity_threshold=0.1)
        finding = Finding(symptom="Slow page", fix="Cache it")
        low = SolutionDocument(
            id="performance-issue-aaaaaaaaaaaa", category=PERF, title="Slow pages",
            symptom="Slow pages", fix="Cache it", occurrence_count=1,
        )
        high = SolutionDocument(
            id="performance-issue-bbbbbbbbbbbb", category=PERF, title="Slow pages",
            symptom="Slow pages", fix="Cache it", occurrence_count=5,
        )
        repo.put(low)
        repo.put(high)

        match, score = dedup.best_match(finding, PERF)
        assert match.id == high.id
        assert score > 0.1


class TestConflicts:
    def test_retries_after_conflict(self, repo: Repository, n_plus_one: Finding):
        dedup = Deduplicator(repo)
        dedup.reconcile(n_plus_one, PERF)

        real_put = repo.put
        calls = {"n": 0}

        def flaky_put(doc, expected_revision=None):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConcurrentUpdateConflict(doc.id, expected_revision, expected_revision + 1)
            return real_put(doc, expected_revision=expected_revision)

        repo.put = flaky_put
        doc = dedup.reconcile(n_plus_one, PERF)

        assert calls["n"] == 2
        assert doc.occurrence_count == 2

    def test_gives_up_after_max_retries(self, repo: Repository, n_plus_one: Finding):
        dedup = Deduplicator(repo, max_retries=2)

        def always_conflict(doc, expected_revision=None):
            raise ConcurrentUpdateConflict(doc.id, 0, 1)

        repo.put = always_conflict
        with pytest.raises(ConcurrentUpdateConflict):
            dedup.reconcile(n_plus_one, PERF)

    def test_concurrent_reconcile_loses_no_increments(
        self, repo: Repository, n_plus_one: Finding
    ):
        dedup = Deduplicator(repo)
        workers = 8
        barrier = threading.Barrier(workers)
        errors: list[Exception] = []

        def worker(i: int) -> None:
            barrier.wait()
            try:
                dedup.reconcile(replace(n_plus_one, session_id=f"session-{i}"), PERF)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        docs = repo.list(PERF)
        assert len(docs) == 1
        assert docs[0].occurrence_count == workers
        assert len(docs[0].source_refs) == workers
