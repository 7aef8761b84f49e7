"""Promotion of recurring solution clusters into critical patterns.

A cluster is the transitive closure of ``cross_refs`` from one document.
Once the cluster's combined occurrence count reaches the promotion threshold
and no pattern covers any of its documents yet, a CriticalPattern is written.
The "no pattern yet" check and the insert are one compare-and-set in the
Store, so concurrent evaluations of a cluster yield a single pattern.

Patterns move candidate -> promoted -> (optionally) demoted. Demotion is an
explicit operator action and is never undone automatically.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from datetime import datetime

from compoundkb.errors import NotFoundError
from compoundkb.models import CriticalPattern, SolutionDocument, pattern_id_for
from compoundkb.storage.repository import Repository
from compoundkb.text import first_sentence, normalize

logger = logging.getLogger(__name__)

PROMOTION_THRESHOLD = 3
STATEMENT_CHARS = 200


class Promoter:
    def __init__(self, store: Repository, threshold: int = PROMOTION_THRESHOLD) -> None:
        self._store = store
        self._threshold = threshold

    def cluster_of(self, document_id: str) -> set[SolutionDocument]:
        """All documents reachable from ``document_id`` through cross references."""
        seen: dict[str, SolutionDocument] = {}
        queue = deque([document_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            try:
                doc = self._store.get(current)
            except NotFoundError:
                logger.warning(f"Dangling cross reference to {current}")
                continue
            seen[current] = doc
            queue.extend(sorted(doc.cross_refs - seen.keys()))
        return set(seen.values())

    def evaluate_document(self, document_id: str) -> CriticalPattern | None:
        return self.evaluate(self.cluster_of(document_id))

    def evaluate(
        self, document_cluster: set[SolutionDocument], now: datetime | None = None
    ) -> CriticalPattern | None:
        """Promote the cluster if it crossed the threshold and isn't promoted yet.

        Returns the new pattern, or None (below threshold, or already promoted).
        """
        if not document_cluster:
            return None

        total = sum(doc.occurrence_count for doc in document_cluster)
        if total < self._threshold:
            return None

        member_ids = {doc.id for doc in document_cluster}
        if self._store.patterns_for_documents(member_ids):
            return None

        source = _representative(document_cluster)
        pattern = CriticalPattern(
            pattern_id=pattern_id_for(source.id),
            source_document_id=source.id,
            statement=synthesize_statement(document_cluster, source),
            promoted_at=now or datetime.now(),
            still_active=True,
            member_ids=member_ids,
        )

        if not self._store.insert_pattern_if_absent(pattern):
            logger.debug(f"Cluster around {source.id} was promoted concurrently")
            return None

        logger.info(
            f"Promoted {pattern.pattern_id} from {len(member_ids)} document(s), "
            f"{total} occurrence(s): {pattern.statement}"
        )
        return pattern


def _representative(cluster: set[SolutionDocument]) -> SolutionDocument:
    """Highest occurrence count, then earliest created, then smallest id."""
    return min(cluster, key=lambda d: (-d.occurrence_count, d.created_at, d.id))


def synthesize_statement(cluster: set[SolutionDocument], source: SolutionDocument) -> str:
    """Imperative rule built from the cluster's most frequent fix.

    Fix texts are compared after normalization and weighted by each
    document's occurrence count. Ties fall back to the source document's fix.
    """
    votes: Counter[str] = Counter()
    wording: dict[str, str] = {}
    for doc in sorted(cluster, key=lambda d: (-d.occurrence_count, d.created_at, d.id)):
        key = normalize(doc.fix)
        votes[key] += doc.occurrence_count
        wording.setdefault(key, doc.fix)

    top = max(votes.values())
    leaders = [key for key, count in votes.items() if count == top]
    source_key = normalize(source.fix)
    chosen = source_key if source_key in leaders else sorted(leaders)[0]

    rule = first_sentence(wording[chosen], limit=STATEMENT_CHARS)
    rule = rule[:1].upper() + rule[1:]
    label = source.category.replace("-", " ").capitalize()
    return f"{label}: {rule}"
