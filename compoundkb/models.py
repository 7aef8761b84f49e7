"""Core data models for compoundkb."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime

from compoundkb.text import normalize

ID_DIGEST_SIZE = 6  # 12 hex chars


@dataclass(frozen=True)
class Excerpt:
    event_index: int  # Position of the event in the transcript
    text: str  # The sentence that was used as evidence


@dataclass
class Finding:
    symptom: str
    fix: str
    root_cause: str | None = None  # None means unknown
    evidence: list[Excerpt] = field(default_factory=list)
    category_hint: str | None = None
    session_id: str = ""  # Opaque provenance, becomes a source_refs entry
    title: str = ""

    @property
    def headline(self) -> str:
        """Short title, falling back to the first line of the symptom."""
        if self.title:
            return self.title
        first_line = self.symptom.strip().split("\n")[0].strip()
        if len(first_line) > 80:
            first_line = first_line[:77] + "..."
        return first_line


class NoFinding:
    """Sentinel for a session that produced nothing actionable."""

    _instance: NoFinding | None = None

    def __new__(cls) -> NoFinding:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_FINDING"


NO_FINDING = NoFinding()


def solution_id(category: str, symptom: str) -> str:
    """Content-derived id: equivalent (category, symptom) pairs map to the same id."""
    content = f"{category}:{normalize(symptom)}"
    digest = hashlib.blake2b(content.encode(), digest_size=ID_DIGEST_SIZE).hexdigest()
    return f"{category}-{digest}"


def pattern_id_for(source_document_id: str) -> str:
    digest = hashlib.blake2b(
        source_document_id.encode(), digest_size=ID_DIGEST_SIZE
    ).hexdigest()
    return f"pattern-{digest}"


@dataclass
class SolutionDocument:
    id: str  # solution_id(category, symptom)
    category: str
    title: str
    symptom: str
    fix: str
    root_cause: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    occurrence_count: int = 1
    source_refs: set[str] = field(default_factory=set)
    cross_refs: set[str] = field(default_factory=set)
    tags: set[str] = field(default_factory=set)
    revision: int = 0  # Bumped by every successful put

    @classmethod
    def from_finding(
        cls, finding: Finding, category: str, now: datetime | None = None
    ) -> SolutionDocument:
        now = now or datetime.now()
        return cls(
            id=solution_id(category, finding.symptom),
            category=category,
            title=finding.headline,
            symptom=finding.symptom,
            fix=finding.fix,
            root_cause=finding.root_cause,
            created_at=now,
            updated_at=now,
            occurrence_count=1,
            source_refs={finding.session_id} if finding.session_id else set(),
        )

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SolutionDocument):
            return NotImplemented
        return self.id == other.id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "title": self.title,
            "symptom": self.symptom,
            "root_cause": self.root_cause,
            "fix": self.fix,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "occurrence_count": self.occurrence_count,
            "source_refs": sorted(self.source_refs),
            "cross_refs": sorted(self.cross_refs),
            "tags": sorted(self.tags),
        }


@dataclass
class CriticalPattern:
    pattern_id: str
    source_document_id: str
    statement: str  # Short imperative rule
    promoted_at: datetime = field(default_factory=datetime.now)
    still_active: bool = True
    member_ids: set[str] = field(default_factory=set)  # Cluster at promotion time

    def to_dict(self) -> dict:
        return {
            "pattern_id": self.pattern_id,
            "source_document_id": self.source_document_id,
            "statement": self.statement,
            "promoted_at": self.promoted_at.isoformat(),
            "still_active": self.still_active,
            "member_ids": sorted(self.member_ids),
        }
