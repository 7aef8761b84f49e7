"""Planning-time retrieval: query -> ranked solutions, critical patterns first.

Ranking combines textual relevance with a boost for documents that recur
often or were seen recently. Active critical patterns that match the query
are always returned ahead of ordinary documents, whatever their relevance,
so enforced rules are never buried.

Reads take no locks; results may lag concurrent writes slightly.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime

from compoundkb.errors import NotFoundError
from compoundkb.models import CriticalPattern, SolutionDocument
from compoundkb.storage.repository import Repository
from compoundkb.text import build_fts_query, query_relevance, tokenize

logger = logging.getLogger(__name__)

OCCURRENCE_WEIGHT = 0.25
RECENCY_WEIGHT = 0.15
RECENCY_HALF_LIFE_DAYS = 30.0
CANDIDATE_LIMIT = 200


@dataclass
class SearchResult:
    document: SolutionDocument
    score: float
    pattern: CriticalPattern | None = None  # Set when this hit is an enforced rule

    @property
    def is_pattern(self) -> bool:
        return self.pattern is not None

    def to_dict(self) -> dict:
        d = {"score": round(self.score, 4), "document": self.document.to_dict()}
        if self.pattern is not None:
            d["pattern"] = self.pattern.to_dict()
        return d


def document_text(doc: SolutionDocument) -> str:
    return " ".join(filter(None, [doc.title, doc.symptom, doc.root_cause, doc.fix]))


class Retriever:
    """Serves ranked knowledge to the planning workflow."""

    def __init__(
        self,
        store: Repository,
        occurrence_weight: float = OCCURRENCE_WEIGHT,
        recency_weight: float = RECENCY_WEIGHT,
        recency_half_life_days: float = RECENCY_HALF_LIFE_DAYS,
        candidate_limit: int = CANDIDATE_LIMIT,
    ) -> None:
        self._store = store
        self._occurrence_weight = occurrence_weight
        self._recency_weight = recency_weight
        self._half_life = recency_half_life_days
        self._candidate_limit = candidate_limit

    def search(
        self,
        query: str,
        category: str | None = None,
        limit: int = 10,
        now: datetime | None = None,
    ) -> list[SearchResult]:
        """Rank stored knowledge against ``query``.

        Each call re-ranks from the current Store state. At most ``limit``
        results come back: matching active patterns first, then documents by
        combined relevance/recurrence score, highest first.
        """
        if limit <= 0:
            return []
        now = now or datetime.now()
        browse = not tokenize(query)

        results = self._pattern_hits(query, category, browse)
        emitted = {hit.document.id for hit in results}

        if browse:
            for doc in self._store.recent(limit=limit, category=category):
                if doc.id not in emitted:
                    results.append(SearchResult(document=doc, score=self.boost(doc, now)))
            return results[:limit]

        doc_hits: list[SearchResult] = []
        for doc in self._candidates(query, category):
            if doc.id in emitted:
                continue
            relevance = query_relevance(query, document_text(doc))
            if relevance <= 0.0:
                continue
            doc_hits.append(SearchResult(document=doc, score=relevance * self.boost(doc, now)))

        doc_hits.sort(key=lambda hit: (-hit.score, hit.document.id))
        results.extend(doc_hits)
        return results[:limit]

    def boost(self, doc: SolutionDocument, now: datetime) -> float:
        """Multiplier >= 1 rewarding recurrence and recency."""
        age_days = max((now - doc.updated_at).total_seconds(), 0.0) / 86400
        recency = 0.5 ** (age_days / self._half_life) if self._half_life > 0 else 0.0
        return (
            1.0
            + self._occurrence_weight * math.log1p(doc.occurrence_count - 1)
            + self._recency_weight * recency
        )

    def critical_patterns(self) -> list[CriticalPattern]:
        """Every active pattern, for injection into planning contexts."""
        return self._store.patterns(active_only=True)

    def render_critical_patterns(self) -> str:
        """Markdown block of active patterns, meant to be injected verbatim."""
        patterns = self.critical_patterns()
        lines = ["# Critical Patterns", ""]
        if not patterns:
            lines.append("_No critical patterns have been promoted yet._")
            return "\n".join(lines) + "\n"

        lines.append(
            "These rules were promoted from problems that kept recurring. "
            "Follow them before planning or changing related code."
        )
        lines.append("")
        for i, pattern in enumerate(patterns, 1):
            lines.append(f"{i}. **{pattern.statement}**")
            lines.append(
                f"   (source: `{pattern.source_document_id}`, "
                f"promoted {pattern.promoted_at.strftime('%Y-%m-%d')})"
            )
        return "\n".join(lines) + "\n"

    def _pattern_hits(
        self, query: str, category: str | None, browse: bool
    ) -> list[SearchResult]:
        hits: list[SearchResult] = []
        for pattern in self._store.patterns(active_only=True):
            try:
                source = self._store.get(pattern.source_document_id)
            except NotFoundError:
                logger.warning(f"Pattern {pattern.pattern_id} points at a missing document")
                continue
            if category and source.category != category:
                continue
            if browse:
                relevance = 1.0
            else:
                relevance = max(
                    query_relevance(query, pattern.statement),
                    query_relevance(query, document_text(source)),
                )
                if relevance <= 0.0:
                    continue
            hits.append(SearchResult(document=source, score=relevance, pattern=pattern))

        hits.sort(key=lambda hit: (-hit.score, hit.pattern.pattern_id))
        return hits

    def _candidates(self, query: str, category: str | None) -> list[SolutionDocument]:
        """FTS prefilter, widened with the category listing when it comes back thin."""
        seen: dict[str, SolutionDocument] = {}
        for doc in self._store.search(
            build_fts_query(query), category=category, limit=self._candidate_limit
        ):
            seen.setdefault(doc.id, doc)

        if len(seen) < self._candidate_limit:
            if category:
                extra = self._store.list(category, limit=self._candidate_limit)
            else:
                extra = self._store.recent(limit=self._candidate_limit)
            for doc in extra:
                seen.setdefault(doc.id, doc)
        return list(seen.values())


def results_to_json(query: str, results: list[SearchResult]) -> str:
    return json.dumps(
        {
            "query": query,
            "count": len(results),
            "results": [r.to_dict() for r in results],
        },
        indent=2,
    )
