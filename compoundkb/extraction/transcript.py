"""Rule-based session transcript extraction.

Turns an ordered sequence of transcript events (plain text, never parsed
beyond that) into a Finding: the symptom that was observed, the root cause if
one was stated, and the fix or decision that closed the episode.

Explicitly labeled lines ("Symptom: ...", "Root cause: ...", "Fix: ...") win
over sentences picked up by cue words. The first symptom and root cause are
kept; the last fix is kept since later attempts supersede earlier ones.

A session without both a symptom and a fix returns NO_FINDING. That is a
normal outcome, not an error.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from compoundkb.errors import ExtractionError
from compoundkb.models import NO_FINDING, Excerpt, Finding, NoFinding

logger = logging.getLogger(__name__)

MAX_EXCERPT_CHARS = 280

_LABELS = {
    "symptom": re.compile(
        r"^\s*(?:[-*]\s*)?(?:symptoms?|problem|issue|bug|error|context)\s*:\s*(.+)$", re.I
    ),
    "root_cause": re.compile(r"^\s*(?:[-*]\s*)?(?:root[ -]cause|cause)\s*:\s*(.+)$", re.I),
    "fix": re.compile(
        r"^\s*(?:[-*]\s*)?(?:fix|solution|resolution|decision|workaround)\s*:\s*(.+)$", re.I
    ),
    "category": re.compile(r"^\s*(?:[-*]\s*)?(?:category|type)\s*:\s*([\w -]+)$", re.I),
}

_STRONG_CAUSE = re.compile(r"\b(root cause|caused by|the reason|turned out)\b", re.I)
_WEAK_CAUSE = re.compile(r"\b(because|due to)\b", re.I)
_FIX = re.compile(
    r"\b(fixed by|fixed it|fixed this|the fix|resolved by|solved by|fixed|resolved"
    r"|we decided|decided to|switched to|added|changed|replaced|now uses?|instead)\b",
    re.I,
)
_SYMPTOM = re.compile(
    r"(\b(error|exception|failed|failing|fails|failure|broken|crash(?:es|ed)?|slow"
    r"|timeout|timed out|traceback|leak(?:s|ing)?|not working|doesn't work"
    r"|does not work|bug|problem|issue|need to choose|should we)\b|\bn\+1\b)",
    re.I,
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def extract(
    transcript: Sequence[str],
    session_id: str = "",
    category_hint: str | None = None,
) -> Finding | NoFinding:
    """Extract a Finding from a session transcript.

    Args:
        transcript: Ordered text events of one session.
        session_id: Opaque session identifier recorded as provenance.
        category_hint: Optional free-text category suggestion.

    Raises:
        ExtractionError: The transcript is not a sequence of strings, or is empty.
    """
    validate_transcript(transcript)

    picked: dict[str, tuple[Excerpt, bool]] = {}  # role -> (excerpt, labeled)
    hint = category_hint

    for index, event in enumerate(transcript):
        for line in event.splitlines():
            line = line.strip()
            if not line:
                continue

            label_role, label_text = _match_label(line)
            if label_role == "category":
                hint = hint or label_text.strip()
                continue
            if label_role is not None:
                _offer(picked, label_role, Excerpt(index, _clip(label_text)), labeled=True)
                continue

            for sentence in _SENTENCE_SPLIT.split(line):
                sentence = sentence.strip()
                if sentence:
                    _classify_sentence(picked, index, sentence)

    if "symptom" not in picked or "fix" not in picked:
        logger.debug(f"No actionable symptom/fix pair in session {session_id or '(anonymous)'}")
        return NO_FINDING

    symptom = picked["symptom"][0]
    fix = picked["fix"][0]
    cause = picked.get("root_cause")
    evidence = sorted(
        {excerpt for excerpt, _ in picked.values()},
        key=lambda e: (e.event_index, e.text),
    )

    return Finding(
        symptom=symptom.text,
        root_cause=cause[0].text if cause else None,
        fix=fix.text,
        evidence=evidence,
        category_hint=hint,
        session_id=session_id,
    )


def validate_transcript(transcript: Sequence[str]) -> None:
    if isinstance(transcript, (str, bytes)) or not isinstance(transcript, Sequence):
        raise ExtractionError(
            f"Transcript must be a sequence of text events, got {type(transcript).__name__}"
        )
    if not transcript:
        raise ExtractionError("Transcript is empty")
    for index, event in enumerate(transcript):
        if not isinstance(event, str):
            raise ExtractionError(
                f"Transcript event {index} is {type(event).__name__}, expected text"
            )
    if not any(event.strip() for event in transcript):
        raise ExtractionError("Transcript contains only blank events")


def _match_label(line: str) -> tuple[str | None, str]:
    for role, pattern in _LABELS.items():
        match = pattern.match(line)
        if match:
            return role, match.group(1).strip()
    return None, ""


def _classify_sentence(picked: dict[str, tuple[Excerpt, bool]], index: int, sentence: str) -> None:
    excerpt = Excerpt(index, _clip(sentence))

    if _STRONG_CAUSE.search(sentence):
        _offer(picked, "root_cause", excerpt)
        return
    if _WEAK_CAUSE.search(sentence):
        # "The page is slow because ..." opens the episode; later it explains it.
        if "symptom" not in picked and _SYMPTOM.search(sentence):
            _offer(picked, "symptom", excerpt)
        else:
            _offer(picked, "root_cause", excerpt)
        return
    if "symptom" in picked and _FIX.search(sentence):
        _offer(picked, "fix", excerpt)
        return
    if _SYMPTOM.search(sentence):
        _offer(picked, "symptom", excerpt)


def _offer(
    picked: dict[str, tuple[Excerpt, bool]], role: str, excerpt: Excerpt, labeled: bool = False
) -> None:
    """Record an excerpt for a role, honoring label precedence and first/last rules."""
    current = picked.get(role)
    if current is not None:
        _, current_labeled = current
        if current_labeled and not labeled:
            return
        if role != "fix" and current_labeled == labeled:
            return
    picked[role] = (excerpt, labeled)


def _clip(text: str) -> str:
    text = text.strip()
    if len(text) > MAX_EXCERPT_CHARS:
        return text[: MAX_EXCERPT_CHARS - 3].rstrip() + "..."
    return text
