"""RIS export of citation lists (EndNote, Zotero, Mendeley, Rayyan import)."""

import logging
from pathlib import Path

from citechain.core.models import Citation

logger = logging.getLogger(__name__)


def _record_lines(citation: Citation) -> list[str]:
    # Every record is exported as a journal article
    lines = ["TY  - JOUR"]

    if citation.title:
        lines.append(f"TI  - {citation.title}")
    for author in citation.authors:
        lines.append(f"AU  - {author}")
    if citation.journal:
        lines.append(f"JO  - {citation.journal}")
    if citation.year:
        lines.append(f"PY  - {citation.year}")
    if citation.volume:
        lines.append(f"VL  - {citation.volume}")
    if citation.number:
        lines.append(f"IS  - {citation.number}")
    if citation.pages:
        start, _, end = citation.pages.partition("-")
        lines.append(f"SP  - {start.strip()}")
        if end.strip():
            lines.append(f"EP  - {end.strip()}")
    if citation.doi:
        lines.append(f"DO  - {citation.doi}")
    if citation.pmid:
        lines.append(f"AN  - {citation.pmid}")
    if citation.abstract:
        abstract = citation.abstract.strip().replace("\r\n", "\\n").replace("\n", "\\n")
        lines.append(f"AB  - {abstract}")

    lines.append("ER  - ")
    return lines


def generate_ris(citations: list[Citation]) -> str:
    """Render citations as RIS text, one blank line between records."""
    return "".join("\n".join(_record_lines(c)) + "\n\n" for c in citations)


def export_ris(citations: list[Citation], output_path: str) -> None:
    """Write citations to an RIS file."""
    Path(output_path).write_text(generate_ris(citations), encoding="utf-8")
    logger.info("RIS export: %d references → %s", len(citations), output_path)
