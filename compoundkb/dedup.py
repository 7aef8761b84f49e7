"""Reconcile a classified Finding against the Store.

Three outcomes:

- exact match (same content-derived id): the stored document's occurrence
  count and provenance grow; its symptom, root cause and fix stay as first
  recorded.
- near-duplicate in the same category: a new document is created and
  cross-linked to the match. Wording differs enough that merging would lose
  precision; promotion aggregates over the link cluster instead.
- no match: a new, unlinked document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from compoundkb.errors import ConcurrentUpdateConflict, NotFoundError
from compoundkb.models import Finding, SolutionDocument, solution_id
from compoundkb.storage.repository import Repository
from compoundkb.text import similarity

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.6
CANDIDATE_LIMIT = 200
SYMPTOM_WEIGHT = 0.6
FIX_WEIGHT = 0.4
MAX_RETRIES = 3

EXACT = "incremented"
NEAR_DUPLICATE = "linked"
NEW = "created"


@dataclass
class Reconciliation:
    document: SolutionDocument
    outcome: str  # "incremented" | "linked" | "created"
    matched_id: str | None = None  # Near-duplicate the new document was linked to
    match_score: float = 0.0


class Deduplicator:
    """Folds new findings into the knowledge base without duplicating it."""

    def __init__(
        self,
        store: Repository,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        candidate_limit: int = CANDIDATE_LIMIT,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        self._store = store
        self._threshold = similarity_threshold
        self._candidate_limit = candidate_limit
        self._max_retries = max(1, max_retries)

    def reconcile(self, finding: Finding, category: str) -> SolutionDocument:
        return self.reconcile_detailed(finding, category).document

    def reconcile_detailed(
        self, finding: Finding, category: str, now: datetime | None = None
    ) -> Reconciliation:
        """Reconcile and report which branch was taken.

        The read-modify-write runs under the document's lock and is retried
        when another process wins the revision race. After ``max_retries``
        failed attempts the ConcurrentUpdateConflict propagates.
        """
        doc_id = solution_id(category, finding.symptom)

        for attempt in range(self._max_retries):
            try:
                with self._store.locked(doc_id):
                    return self._apply(doc_id, finding, category, now or datetime.now())
            except ConcurrentUpdateConflict as e:
                if attempt < self._max_retries - 1:
                    logger.warning(f"{e}; retrying ({attempt + 1}/{self._max_retries})")
                else:
                    logger.error(f"Giving up on {doc_id} after {self._max_retries} conflicts")
                    raise

    def _apply(
        self, doc_id: str, finding: Finding, category: str, now: datetime
    ) -> Reconciliation:
        try:
            existing = self._store.get(doc_id)
        except NotFoundError:
            existing = None

        if existing is not None:
            existing.occurrence_count += 1
            if finding.session_id:
                existing.source_refs.add(finding.session_id)
            existing.updated_at = now
            stored = self._store.put(existing, expected_revision=existing.revision)
            logger.info(f"Recurrence of {doc_id} (occurrence_count={stored.occurrence_count})")
            return Reconciliation(document=stored, outcome=EXACT)

        doc = SolutionDocument.from_finding(finding, category, now=now)
        match, score = self.best_match(finding, category)

        if match is not None:
            doc.cross_refs.add(match.id)
            stored = self._store.put(doc, expected_revision=0)
            logger.info(
                f"Created {doc_id} as near-duplicate of {match.id} (similarity={score:.2f})"
            )
            return Reconciliation(
                document=stored, outcome=NEAR_DUPLICATE, matched_id=match.id, match_score=score
            )

        stored = self._store.put(doc, expected_revision=0)
        logger.info(f"Created {doc_id} in {category}")
        return Reconciliation(document=stored, outcome=NEW)

    def best_match(
        self, finding: Finding, category: str
    ) -> tuple[SolutionDocument | None, float]:
        """Most similar existing document in ``category`` above the threshold."""
        candidates = self._store.list(category, limit=self._candidate_limit)

        best: SolutionDocument | None = None
        best_score = 0.0
        for candidate in candidates:
            score = self.score(finding, candidate)
            if score < self._threshold:
                continue
            if best is None or _ranks_before(score, candidate, best_score, best):
                best, best_score = candidate, score
        return best, best_score

    @staticmethod
    def score(finding: Finding, doc: SolutionDocument) -> float:
        return SYMPTOM_WEIGHT * similarity(finding.symptom, doc.symptom) + FIX_WEIGHT * similarity(
            finding.fix, doc.fix
        )


def _ranks_before(
    score: float, doc: SolutionDocument, best_score: float, best: SolutionDocument
) -> bool:
    """Higher score, then higher occurrence count, then smaller id."""
    return (-score, -doc.occurrence_count, doc.id) < (-best_score, -best.occurrence_count, best.id)
