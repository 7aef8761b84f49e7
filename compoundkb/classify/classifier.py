"""Deterministic finding classifier.

Scores a Finding against every taxonomy category by lexicon phrase overlap,
with multi-word phrases weighted by their length, plus a fixed bonus for a
category hint. The hint is a nudge, not an override: a strong lexicon signal
for another category still wins.

Tie-break order: highest score, then the category whose longest matched phrase
is longest. Anything still tied, or scoring under the confidence floor, is
``other``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from compoundkb.classify.taxonomy import OTHER, Taxonomy, default_taxonomy
from compoundkb.models import Finding
from compoundkb.text import normalize

logger = logging.getLogger(__name__)

HINT_BONUS = 2.0
MIN_CONFIDENCE = 2.0


@dataclass
class Classification:
    category: str
    scores: dict[str, float] = field(default_factory=dict)
    longest_match: dict[str, int] = field(default_factory=dict)
    ambiguous: bool = False  # Resolved to "other" because of a tie or a weak signal


class Classifier:
    """Assigns a taxonomy category to a Finding."""

    def __init__(
        self,
        taxonomy: Taxonomy | None = None,
        min_confidence: float = MIN_CONFIDENCE,
        hint_bonus: float = HINT_BONUS,
    ) -> None:
        self._taxonomy = taxonomy or default_taxonomy()
        self._min_confidence = min_confidence
        self._hint_bonus = hint_bonus

    def classify(self, finding: Finding) -> str:
        return self.explain(finding).category

    def explain(self, finding: Finding) -> Classification:
        """Classify and return the full score breakdown."""
        text = f" {normalize(' '.join(filter(None, [finding.symptom, finding.root_cause, finding.fix])))} "
        scores: dict[str, float] = {}
        longest: dict[str, int] = {}

        for category in self._taxonomy.categories:
            score = 0.0
            best = 0
            for phrase in self._taxonomy.lexicon.get(category, ()):
                if f" {phrase} " in text:
                    words = len(phrase.split())
                    score += words
                    best = max(best, words)
            scores[category] = score
            longest[category] = best

        hinted = self._taxonomy.resolve_hint(finding.category_hint)
        if hinted is not None:
            scores[hinted] += self._hint_bonus
        elif finding.category_hint:
            logger.debug(f"Ignoring unrecognized category hint: {finding.category_hint!r}")

        category, ambiguous = self._pick(scores, longest)
        if ambiguous:
            # Not an error; a signal that the taxonomy or lexicon may need review.
            logger.info(
                f"Classification ambiguous for {finding.headline!r}, assigned '{OTHER}' "
                f"(scores: {_top_scores(scores)})"
            )
        return Classification(
            category=category, scores=scores, longest_match=longest, ambiguous=ambiguous
        )

    def _pick(self, scores: dict[str, float], longest: dict[str, int]) -> tuple[str, bool]:
        top = max(scores.values(), default=0.0)
        if top <= 0.0:
            return OTHER, False
        if top < self._min_confidence:
            return OTHER, True

        leaders = [c for c in self._taxonomy.categories if scores[c] == top]
        if len(leaders) > 1:
            best_len = max(longest[c] for c in leaders)
            leaders = [c for c in leaders if longest[c] == best_len]
        if len(leaders) > 1:
            return OTHER, True
        return leaders[0], False


def _top_scores(scores: dict[str, float], n: int = 3) -> str:
    ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))[:n]
    return ", ".join(f"{c}={s:g}" for c, s in ranked if s > 0) or "none"
