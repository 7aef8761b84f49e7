"""Configuration loading for compoundkb.

Config sources (in priority order):
1. Explicit arguments passed to functions
2. Environment variables (COMPOUNDKB_DB_PATH, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from compoundkb.classify.classifier import MIN_CONFIDENCE
from compoundkb.dedup import SIMILARITY_THRESHOLD
from compoundkb.extraction.llm import DEFAULT_MODEL
from compoundkb.promotion import PROMOTION_THRESHOLD

load_dotenv()

DEFAULT_DB_PATH = Path("compoundkb.db")


@dataclass
class Config:
    db_path: Path = DEFAULT_DB_PATH
    anthropic_api_key: str = ""  # Only needed for the Claude extractor
    model: str = DEFAULT_MODEL
    promotion_threshold: int = PROMOTION_THRESHOLD
    similarity_threshold: float = SIMILARITY_THRESHOLD
    min_confidence: float = MIN_CONFIDENCE
    lexicon_path: Path | None = None

    @classmethod
    def load(cls) -> Config:
        lexicon = os.getenv("COMPOUNDKB_LEXICON_PATH", "")
        return cls(
            db_path=Path(os.getenv("COMPOUNDKB_DB_PATH", str(DEFAULT_DB_PATH))),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            model=os.getenv("COMPOUNDKB_MODEL", DEFAULT_MODEL),
            promotion_threshold=int(
                os.getenv("COMPOUNDKB_PROMOTION_THRESHOLD", str(PROMOTION_THRESHOLD))
            ),
            similarity_threshold=float(
                os.getenv("COMPOUNDKB_SIMILARITY_THRESHOLD", str(SIMILARITY_THRESHOLD))
            ),
            min_confidence=float(os.getenv("COMPOUNDKB_MIN_CONFIDENCE", str(MIN_CONFIDENCE))),
            lexicon_path=Path(lexicon) if lexicon else None,
        )

    def validate(self) -> list[str]:
        """Return a list of config issues."""
        issues = []
        if self.promotion_threshold < 1:
            issues.append("Promotion threshold must be at least 1 (COMPOUNDKB_PROMOTION_THRESHOLD)")
        if not 0.0 < self.similarity_threshold <= 1.0:
            issues.append(
                "Similarity threshold must be in (0, 1] (COMPOUNDKB_SIMILARITY_THRESHOLD)"
            )
        if self.min_confidence <= 0.0:
            issues.append("Minimum confidence must be positive (COMPOUNDKB_MIN_CONFIDENCE)")
        if self.lexicon_path is not None and not self.lexicon_path.exists():
            issues.append(f"Lexicon file not found: {self.lexicon_path} (COMPOUNDKB_LEXICON_PATH)")
        return issues
