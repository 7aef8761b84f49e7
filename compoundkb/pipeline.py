"""End-to-end knowledge capture for one finished session.

Extractor -> Classifier -> Deduplicator -> Store -> Promoter.

``capture_session`` never raises into the calling workflow. Any engine error
degrades to a "skipped" result with a diagnostic note; the fix or decision
that triggered the capture is never blocked by it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

import anthropic

from compoundkb.classify.classifier import Classifier
from compoundkb.classify.taxonomy import load_taxonomy
from compoundkb.config import Config
from compoundkb.dedup import Deduplicator
from compoundkb.errors import CompoundKBError
from compoundkb.extraction import transcript as rule_extractor
from compoundkb.extraction.llm import ClaudeExtractor
from compoundkb.models import CriticalPattern, Finding, NoFinding, SolutionDocument
from compoundkb.promotion import Promoter
from compoundkb.storage.repository import Repository

logger = logging.getLogger(__name__)

NO_FINDING_STATUS = "no_finding"
SKIPPED = "skipped"


class Extractor(Protocol):
    def extract(
        self,
        transcript: Sequence[str],
        session_id: str = "",
        category_hint: str | None = None,
    ) -> Finding | NoFinding: ...


class RuleExtractor:
    """Adapter exposing the rule-based extractor through the Extractor protocol."""

    def extract(
        self,
        transcript: Sequence[str],
        session_id: str = "",
        category_hint: str | None = None,
    ) -> Finding | NoFinding:
        return rule_extractor.extract(transcript, session_id=session_id, category_hint=category_hint)


@dataclass
class CaptureResult:
    status: str  # "created" | "incremented" | "linked" | "no_finding" | "skipped"
    document: SolutionDocument | None = None
    category: str | None = None
    linked_to: str | None = None
    pattern: CriticalPattern | None = None
    note: str = ""
    evidence: list[dict] = field(default_factory=list)

    @property
    def captured(self) -> bool:
        return self.document is not None

    def to_json(self) -> str:
        return json.dumps(
            {
                "status": self.status,
                "category": self.category,
                "document": self.document.to_dict() if self.document else None,
                "linked_to": self.linked_to,
                "pattern": self.pattern.to_dict() if self.pattern else None,
                "note": self.note,
                "evidence": self.evidence,
            },
            indent=2,
        )


class KnowledgeEngine:
    """Wires the components together around one Store."""

    def __init__(
        self,
        store: Repository,
        extractor: Extractor | None = None,
        classifier: Classifier | None = None,
        deduplicator: Deduplicator | None = None,
        promoter: Promoter | None = None,
    ) -> None:
        self.store = store
        self.extractor = extractor or RuleExtractor()
        self.classifier = classifier or Classifier()
        self.deduplicator = deduplicator or Deduplicator(store)
        self.promoter = promoter or Promoter(store)

    def capture_session(
        self,
        transcript: Sequence[str],
        session_id: str = "",
        category_hint: str | None = None,
    ) -> CaptureResult:
        """Turn a finished session into stored knowledge. Never raises."""
        try:
            finding = self.extractor.extract(
                transcript, session_id=session_id, category_hint=category_hint
            )
        except CompoundKBError as e:
            logger.warning(f"Knowledge capture skipped for session {session_id!r}: {e}")
            return CaptureResult(status=SKIPPED, note=f"Knowledge capture skipped: {e}")

        if isinstance(finding, NoFinding):
            return CaptureResult(
                status=NO_FINDING_STATUS,
                note="No symptom/fix pair found; nothing captured this time.",
            )
        return self.capture_finding(finding)

    def capture_finding(self, finding: Finding) -> CaptureResult:
        """Classify, reconcile and promote an already extracted finding. Never raises."""
        evidence = [{"event_index": e.event_index, "text": e.text} for e in finding.evidence]
        try:
            category = self.classifier.classify(finding)
            reconciliation = self.deduplicator.reconcile_detailed(finding, category)
            pattern = self.promoter.evaluate_document(reconciliation.document.id)
        except (CompoundKBError, sqlite3.Error) as e:
            logger.warning(f"Knowledge capture skipped for session {finding.session_id!r}: {e}")
            return CaptureResult(
                status=SKIPPED, note=f"Knowledge capture skipped: {e}", evidence=evidence
            )

        return CaptureResult(
            status=reconciliation.outcome,
            document=reconciliation.document,
            category=category,
            linked_to=reconciliation.matched_id,
            pattern=pattern,
            evidence=evidence,
        )


def build_engine(
    config: Config, store: Repository, use_claude: bool = False
) -> KnowledgeEngine:
    """Assemble an engine with the thresholds and lexicon from ``config``."""
    extractor: Extractor = RuleExtractor()
    if use_claude:
        extractor = ClaudeExtractor(
            anthropic.Anthropic(api_key=config.anthropic_api_key), model=config.model
        )

    return KnowledgeEngine(
        store,
        extractor=extractor,
        classifier=Classifier(
            load_taxonomy(config.lexicon_path), min_confidence=config.min_confidence
        ),
        deduplicator=Deduplicator(store, similarity_threshold=config.similarity_threshold),
        promoter=Promoter(store, threshold=config.promotion_threshold),
    )
