"""Markdown projection of the knowledge base.

Writes one file per solution under a category-named directory, each with a
YAML frontmatter header, plus a single file listing the active critical
patterns. The SQLite store remains the source of truth; ``import_solutions``
reads such a tree back (e.g. docs written by hand or by another checkout).

Layout:
    <out_dir>/<category>/<id>.md
    <out_dir>/patterns/critical-patterns.md
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import frontmatter

from compoundkb.classify.taxonomy import default_taxonomy
from compoundkb.models import SolutionDocument, solution_id
from compoundkb.query.retriever import Retriever
from compoundkb.storage.repository import Repository

logger = logging.getLogger(__name__)

PATTERNS_DIR = "patterns"
PATTERNS_FILE = "critical-patterns.md"


def render_solution(doc: SolutionDocument) -> str:
    """Render a document as markdown with YAML frontmatter."""
    body = [f"# {doc.title}", "", "## Symptom", "", doc.symptom, ""]
    body += ["## Root Cause", "", doc.root_cause or "_Unknown._", ""]
    body += ["## Fix", "", doc.fix, ""]
    if doc.cross_refs:
        body += ["## Related", ""]
        body += [f"- [{ref}](../{ref.rsplit('-', 1)[0]}/{ref}.md)" for ref in sorted(doc.cross_refs)]
        body.append("")

    post = frontmatter.Post(
        "\n".join(body),
        id=doc.id,
        category=doc.category,
        title=doc.title,
        created_at=doc.created_at.isoformat(),
        updated_at=doc.updated_at.isoformat(),
        occurrence_count=doc.occurrence_count,
        source_refs=sorted(doc.source_refs),
        cross_refs=sorted(doc.cross_refs),
        tags=sorted(doc.tags),
    )
    return frontmatter.dumps(post, sort_keys=False) + "\n"


def export_solutions(repo: Repository, out_dir: Path) -> list[Path]:
    """Write every solution and the critical patterns file. Returns written paths."""
    out_dir = Path(out_dir)
    written: list[Path] = []

    for doc in repo.all():
        path = out_dir / doc.category / f"{doc.id}.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_solution(doc))
        written.append(path)

    patterns_path = out_dir / PATTERNS_DIR / PATTERNS_FILE
    patterns_path.parent.mkdir(parents=True, exist_ok=True)
    patterns_path.write_text(Retriever(repo).render_critical_patterns())
    written.append(patterns_path)

    logger.info(f"Exported {len(written) - 1} solution(s) to {out_dir}")
    return written


def import_solutions(repo: Repository, in_dir: Path) -> list[SolutionDocument]:
    """Load ``<category>/*.md`` files with solution frontmatter into the store.

    Files in unknown category directories or missing required sections are
    skipped with a warning. Ids are recomputed from (category, symptom) so
    imported documents dedupe against existing ones.
    """
    taxonomy = default_taxonomy()
    imported: list[SolutionDocument] = []

    for path in sorted(Path(in_dir).glob("*/*.md")):
        category = path.parent.name
        if category == PATTERNS_DIR:
            continue
        if category not in taxonomy:
            logger.warning(f"Skipping {path}: unknown category '{category}'")
            continue

        post = frontmatter.load(path)
        sections = _split_sections(post.content)
        symptom = sections.get("symptom", "").strip()
        fix = sections.get("fix", "").strip()
        if not symptom or not fix:
            logger.warning(f"Skipping {path}: missing Symptom or Fix section")
            continue
        root_cause = sections.get("root cause", "").strip()
        if root_cause == "_Unknown._":
            root_cause = ""

        meta = post.metadata
        now = datetime.now()
        doc = SolutionDocument(
            id=solution_id(category, symptom),
            category=category,
            title=str(meta.get("title") or symptom.split("\n")[0][:80]),
            symptom=symptom,
            root_cause=root_cause or None,
            fix=fix,
            created_at=_parse_time(meta.get("created_at"), now),
            updated_at=_parse_time(meta.get("updated_at"), now),
            occurrence_count=max(1, int(meta.get("occurrence_count", 1))),
            source_refs={str(r) for r in meta.get("source_refs", [])},
            tags={str(t) for t in meta.get("tags", [])},
        )
        existing = repo.get(doc.id) if repo.exists(doc.id) else None
        if existing is not None:
            doc = _merge_into(existing, doc)
            imported.append(repo.put(doc, expected_revision=existing.revision))
        else:
            imported.append(repo.put(doc))

    # Links go in once every document exists.
    for path in sorted(Path(in_dir).glob("*/*.md")):
        meta = frontmatter.load(path).metadata
        doc_id = meta.get("id")
        for ref in meta.get("cross_refs", []):
            if doc_id and repo.exists(doc_id) and repo.exists(ref):
                repo.link(doc_id, ref)

    return imported


def _split_sections(content: str) -> dict[str, str]:
    """Map lowercased ``## Heading`` names to their body text."""
    sections: dict[str, list[str]] = {}
    current: str | None = None
    for line in content.splitlines():
        if line.startswith("## "):
            current = line[3:].strip().lower()
            sections[current] = []
        elif current is not None:
            sections[current].append(line)
    return {name: "\n".join(lines) for name, lines in sections.items()}


def _merge_into(existing: SolutionDocument, incoming: SolutionDocument) -> SolutionDocument:
    """Fold an imported file into a stored document.

    The stored wording stays. Counts and timestamps never move backwards, and
    provenance and tags are unioned.
    """
    existing.occurrence_count = max(existing.occurrence_count, incoming.occurrence_count)
    existing.updated_at = max(existing.updated_at, incoming.updated_at)
    existing.source_refs |= incoming.source_refs
    existing.tags |= incoming.tags
    return existing


def _parse_time(value: object, default: datetime) -> datetime:
    # Stored times are naive local; aware values are converted.
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return default
    if not isinstance(value, datetime):
        return default
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value
