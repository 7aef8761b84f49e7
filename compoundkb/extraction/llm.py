"""Session finding extraction using Claude.

A drop-in alternative to the rule-based extractor for transcripts that are
too conversational for cue matching. Same contract: returns a Finding or
NO_FINDING, and raises ExtractionError only on a malformed transcript. API
failures degrade to NO_FINDING so a capture never blocks the session.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Sequence

import anthropic

from compoundkb.extraction.transcript import validate_transcript
from compoundkb.models import NO_FINDING, Excerpt, Finding, NoFinding

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds
MAX_TOKENS = 1024
TRANSCRIPT_CHAR_LIMIT = 15000

EXTRACTION_PROMPT = """\
You are a knowledge capture assistant. Analyze the following AI coding session \
transcript and extract the single most important problem that was solved or \
decision that was made.

Each event is prefixed with its index in square brackets.

## Transcript

{transcript}

## Instructions

Respond with a JSON object:
{{"finding": {{
  "symptom": "What was observed: the error, failure, slowness or open question",
  "root_cause": "Why it happened, or null if it was never established",
  "fix": "What resolved it, or what was decided",
  "category_hint": "build-error|test-failure|runtime-error|performance-issue|database-issue|security-issue|ui-bug|pattern|decision|null",
  "evidence": [0, 3]
}}}}

"evidence" lists the indices of the events that support the finding.

If nothing was solved or decided (e.g., just exploration or reading code), \
return {{"finding": null}}.

Respond ONLY with valid JSON, no other text.
"""


class ClaudeExtractor:
    """Extracts a Finding from a transcript by asking Claude."""

    def __init__(self, client: anthropic.Anthropic, model: str = DEFAULT_MODEL) -> None:
        self._client = client
        self._model = model

    def extract(
        self,
        transcript: Sequence[str],
        session_id: str = "",
        category_hint: str | None = None,
    ) -> Finding | NoFinding:
        validate_transcript(transcript)

        prompt = EXTRACTION_PROMPT.format(transcript=_render_transcript(transcript))

        for attempt in range(MAX_RETRIES):
            try:
                response = self._client.messages.create(
                    model=self._model,
                    max_tokens=MAX_TOKENS,
                    messages=[{"role": "user", "content": prompt}],
                )
                break
            except anthropic.RateLimitError:
                if attempt < MAX_RETRIES - 1:
                    delay = RETRY_BASE_DELAY * (2**attempt)
                    logger.warning(f"Rate limited, retrying in {delay}s...")
                    time.sleep(delay)
                else:
                    logger.error(f"Rate limited after {MAX_RETRIES} retries, skipping")
                    return NO_FINDING
            except anthropic.APIError as e:
                logger.error(f"API error during finding extraction: {e}")
                return NO_FINDING

        return _parse_response(response, transcript, session_id, category_hint)


def _render_transcript(transcript: Sequence[str]) -> str:
    parts: list[str] = []
    total = 0
    for index, event in enumerate(transcript):
        text = f"[{index}] {event.strip()}"
        if total + len(text) > TRANSCRIPT_CHAR_LIMIT:
            parts.append(f"... ({len(transcript) - index} more events, truncated)")
            break
        parts.append(text)
        total += len(text)
    return "\n\n".join(parts)


def _parse_response(
    response: anthropic.types.Message,
    transcript: Sequence[str],
    session_id: str,
    category_hint: str | None,
) -> Finding | NoFinding:
    """Parse Claude's JSON response into a Finding."""
    if not response.content:
        logger.warning(f"Empty response for session {session_id}")
        return NO_FINDING
    text = response.content[0].text.strip()

    # Handle markdown code fences
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse JSON for session {session_id}: {text[:200]}")
        return NO_FINDING

    item = data.get("finding") if isinstance(data, dict) else None
    if not item:
        return NO_FINDING
    if not isinstance(item, dict):
        logger.warning(f"Unexpected finding shape for session {session_id}: {item!r:.200}")
        return NO_FINDING
    for field in ("symptom", "fix", "root_cause", "category_hint"):
        if item.get(field) is not None and not isinstance(item[field], str):
            logger.warning(f"Non-text {field} in finding for session {session_id}")
            return NO_FINDING
    if not (item.get("symptom") or "").strip() or not (item.get("fix") or "").strip():
        return NO_FINDING
    if not isinstance(item.get("evidence", []), list):
        item["evidence"] = []

    evidence = [
        Excerpt(i, transcript[i].strip()[:280])
        for i in sorted({i for i in item.get("evidence", []) if isinstance(i, int)})
        if 0 <= i < len(transcript)
    ]
    hint = category_hint or item.get("category_hint") or None

    return Finding(
        symptom=item["symptom"].strip(),
        root_cause=((item.get("root_cause") or "").strip() or None),
        fix=item["fix"].strip(),
        evidence=evidence,
        category_hint=hint if hint != "null" else None,
        session_id=session_id,
    )
