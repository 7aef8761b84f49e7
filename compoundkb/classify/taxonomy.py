"""Category taxonomy: a closed set of categories plus the ``other`` escape value.

The taxonomy is loaded once per process and is immutable afterwards. A JSON
lexicon file may add phrases to existing categories; it can never introduce a
new category.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from compoundkb.text import normalize

logger = logging.getLogger(__name__)

OTHER = "other"

CATEGORIES = (
    "build-error",
    "test-failure",
    "runtime-error",
    "performance-issue",
    "database-issue",
    "security-issue",
    "ui-bug",
    "pattern",
    "decision",
)

DEFAULT_LEXICON: dict[str, tuple[str, ...]] = {
    "build-error": (
        "build failed", "build error", "compile error", "compilation error",
        "compiler", "linker", "webpack", "bundler", "dependency resolution",
        "missing module", "module not found", "cannot find module",
        "undefined reference", "syntax error", "lockfile", "gemfile",
        "bundle install", "npm install", "pip install", "docker build",
        "ci build", "asset pipeline",
    ),
    "test-failure": (
        "test failed", "test failure", "tests failing", "failing test",
        "flaky test", "flaky", "assertion", "assertionerror", "rspec",
        "pytest", "jest", "test suite", "fixture", "mock", "snapshot test",
        "expected but got", "test timeout", "spec failed",
    ),
    "runtime-error": (
        "exception", "traceback", "stack trace", "crash", "crashed",
        "nil", "null pointer", "nomethoderror", "typeerror", "keyerror",
        "attributeerror", "undefined method", "segfault", "panic",
        "unhandled", "raised", "internal server error",
        "nil pointer", "index out of range",
    ),
    "performance-issue": (
        "slow", "latency", "timeout", "n+1 query", "n+1", "memory leak",
        "high cpu", "cpu usage", "throughput", "response time",
        "eager loading", "includes", "caching", "cache miss", "bottleneck",
        "profiling", "performance", "page load", "too many queries",
    ),
    "database-issue": (
        "database", "migration", "sql", "query", "deadlock", "index",
        "foreign key", "constraint", "postgres", "postgresql", "mysql",
        "sqlite", "transaction", "connection pool", "connection leak",
        "database connection", "schema", "orm", "activerecord", "rollback",
    ),
    "security-issue": (
        "security", "vulnerability", "xss", "csrf", "sql injection",
        "injection", "authentication", "authorization", "permission",
        "secret", "credential", "token leak", "exposed", "cve",
        "sanitize", "escape", "password", "access control",
    ),
    "ui-bug": (
        "ui", "css", "layout", "render", "rendering", "button", "modal",
        "frontend", "style", "alignment", "overflow", "responsive",
        "stimulus", "turbo", "react component", "hover", "click handler",
        "dark mode", "z-index",
    ),
    "pattern": (
        "pattern", "convention", "best practice", "always", "never",
        "recurring", "anti-pattern", "idiom", "refactor", "abstraction",
        "reusable", "guideline",
    ),
    "decision": (
        "decided", "decision", "chose", "choose", "trade-off", "tradeoff",
        "alternative", "we will use", "adopt", "adopted", "instead of",
        "architecture", "went with", "rejected",
    ),
}

# Free-text hints that mean a taxonomy category.
HINT_ALIASES = {
    "build": "build-error",
    "compile": "build-error",
    "test": "test-failure",
    "tests": "test-failure",
    "runtime": "runtime-error",
    "crash": "runtime-error",
    "perf": "performance-issue",
    "performance": "performance-issue",
    "db": "database-issue",
    "database": "database-issue",
    "security": "security-issue",
    "ui": "ui-bug",
    "frontend": "ui-bug",
    "patterns": "pattern",
    "decisions": "decision",
}


@dataclass(frozen=True)
class Taxonomy:
    categories: tuple[str, ...]
    lexicon: Mapping[str, tuple[str, ...]]

    def __contains__(self, category: object) -> bool:
        return category == OTHER or category in self.categories

    def resolve_hint(self, hint: str | None) -> str | None:
        """Map a free-text hint to a taxonomy category, or None."""
        if not hint:
            return None
        cleaned = hint.strip().lower().replace("_", "-").replace(" ", "-")
        if cleaned in self.categories:
            return cleaned
        return HINT_ALIASES.get(cleaned)


def _normalize_phrases(phrases: tuple[str, ...] | list[str]) -> tuple[str, ...]:
    result: list[str] = []
    for phrase in phrases:
        norm = normalize(phrase)
        if norm and norm not in result:
            result.append(norm)
    return tuple(result)


def load_taxonomy(lexicon_path: Path | None = None) -> Taxonomy:
    """Build the taxonomy, overlaying extra phrases from ``lexicon_path`` if given.

    The overlay is a JSON object of ``{category: [phrase, ...]}``. Unknown
    categories are ignored with a warning.
    """
    merged = {cat: list(DEFAULT_LEXICON[cat]) for cat in CATEGORIES}

    if lexicon_path is not None:
        data = json.loads(Path(lexicon_path).read_text())
        for category, phrases in data.items():
            if category not in merged:
                logger.warning(f"Ignoring lexicon entries for unknown category: {category}")
                continue
            merged[category].extend(phrases)

    lexicon = {cat: _normalize_phrases(phrases) for cat, phrases in merged.items()}
    return Taxonomy(categories=CATEGORIES, lexicon=MappingProxyType(lexicon))


_default: Taxonomy | None = None


def default_taxonomy() -> Taxonomy:
    """The process-wide taxonomy with the built-in lexicon."""
    global _default
    if _default is None:
        _default = load_taxonomy()
    return _default
