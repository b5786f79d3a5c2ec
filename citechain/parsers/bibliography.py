"""Bibliography file parsing: RIS, MEDLINE (.nbib) and EndNote XML."""

import io
import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Literal, Optional

import rispy
from Bio import Medline
from pydantic import BaseModel, Field

from citechain.core.models import SeedInput, new_id

logger = logging.getLogger(__name__)

BibFormat = Literal["ris", "endnote_xml", "medline"]

_YEAR = re.compile(r"\d{4}")


class BibRecord(BaseModel):
    """One reference read from a bibliography file."""

    title: Optional[str] = None
    authors: list[str] = Field(default_factory=list)
    journal: Optional[str] = None
    year: Optional[str] = None
    volume: Optional[str] = None
    number: Optional[str] = None
    pages: Optional[str] = None
    doi: Optional[str] = None
    pmid: Optional[str] = None
    pmcid: Optional[str] = None
    abstract: Optional[str] = None
    source: Optional[str] = None


# ── Public API ───────────────────────────────────────────────────────


def detect_format(content: str, filename: str = "") -> BibFormat:
    """Guess the format from the file extension, then from the content."""
    extension = Path(filename).suffix.lower().lstrip(".")
    if extension == "ris" or "TY  -" in content:
        return "ris"
    if extension == "xml" or "<?xml" in content or "<xml" in content:
        return "endnote_xml"
    if extension == "nbib" or "PMID-" in content:
        return "medline"
    raise ValueError("Only RIS, NBIB, or EndNote XML is supported.")


def parse_bibliography(path: str | Path) -> list[BibRecord]:
    """Read and parse a bibliography file in any supported format."""
    path = Path(path)
    content = path.read_text(encoding="utf-8-sig")
    records = parse_bibliography_text(content, path.name)
    for record in records:
        record.source = path.name
    logger.info("Parsed %d references from %s", len(records), path.name)
    return records


def parse_bibliography_text(content: str, filename: str = "") -> list[BibRecord]:
    fmt = detect_format(content, filename)
    if fmt == "ris":
        return parse_ris(content)
    if fmt == "endnote_xml":
        return parse_endnote_xml(content)
    return parse_medline(content)


def records_to_seed_inputs(records: list[BibRecord]) -> list[SeedInput]:
    """Seed references carrying each record's title, DOI, PMID and PMCID."""
    return [
        SeedInput(
            id=new_id(),
            title=r.title,
            doi=r.doi,
            pmid=r.pmid,
            pmcid=r.pmcid,
        )
        for r in records
    ]


# ── RIS ──────────────────────────────────────────────────────────────


def parse_ris(content: str) -> list[BibRecord]:
    """Parse RIS text with rispy."""
    return [_ris_record(entry) for entry in rispy.loads(content)]


def _first(entry: dict, *keys: str) -> Optional[str]:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if value:
            return " ".join(str(value).split())
    return None


def _values(entry: dict, key: str) -> list[str]:
    value = entry.get(key) or []
    return [value] if isinstance(value, str) else list(value)


def _ris_record(entry: dict) -> BibRecord:
    start, end = _first(entry, "start_page"), _first(entry, "end_page")
    pages = start
    if start and end and "-" not in start:
        pages = f"{start}-{end}"

    accession = _first(entry, "accession_number")
    abstract = entry.get("abstract") or entry.get("notes_abstract")
    return BibRecord(
        title=_first(entry, "title", "primary_title"),
        authors=_values(entry, "authors") + _values(entry, "first_authors"),
        journal=_first(entry, "journal_name", "alternate_title1", "secondary_title", "alternate_title3"),
        year=_year(_first(entry, "year", "publication_year", "date")),
        volume=_first(entry, "volume"),
        number=_first(entry, "number"),
        pages=pages,
        doi=_first(entry, "doi"),
        pmid=accession if accession and accession.isdigit() else None,
        abstract=_unescape_newlines(abstract.strip() if abstract else None),
    )


def _unescape_newlines(text: Optional[str]) -> Optional[str]:
    return text.replace("\\n", "\n") if text else text


# ── MEDLINE ──────────────────────────────────────────────────────────


def parse_medline(content: str) -> list[BibRecord]:
    """Parse PubMed's MEDLINE export with Biopython."""
    records = []
    for rec in Medline.parse(io.StringIO(content)):
        if not rec:
            continue
        records.append(_medline_record(rec))
    return records


def _medline_record(rec: dict) -> BibRecord:
    # DOI is in Article Identifier (AID) field, tagged with [doi]
    doi = None
    for aid in rec.get("AID", []):
        if aid.endswith("[doi]"):
            doi = aid.replace("[doi]", "").strip()
            break

    return BibRecord(
        title=rec.get("TI"),
        authors=rec.get("FAU") or rec.get("AU", []),
        journal=rec.get("JT") or rec.get("TA"),
        year=_year(rec.get("DP")),
        volume=rec.get("VI"),
        number=rec.get("IP"),
        pages=rec.get("PG"),
        doi=doi,
        pmid=rec.get("PMID"),
        pmcid=rec.get("PMC"),
        abstract=rec.get("AB"),
    )


# ── EndNote XML ──────────────────────────────────────────────────────


def parse_endnote_xml(content: str) -> list[BibRecord]:
    try:
        root = ET.fromstring(content.strip().encode("utf-8"))
    except ET.ParseError as exc:
        raise ValueError(f"Invalid EndNote XML: {exc}") from exc

    return [_endnote_record(rec) for rec in root.iter("record")]


def _text(element: ET.Element | None) -> Optional[str]:
    if element is None:
        return None
    text = " ".join("".join(element.itertext()).split())
    return text or None


def _endnote_record(rec: ET.Element) -> BibRecord:
    authors = [a for a in (_text(el) for el in rec.iterfind("contributors/authors/author")) if a]
    journal = _text(rec.find("titles/secondary-title")) or _text(rec.find("periodical/full-title"))
    accession = _text(rec.find("accession-num"))

    return BibRecord(
        title=_text(rec.find("titles/title")),
        authors=authors,
        journal=journal,
        year=_year(_text(rec.find("dates/year"))),
        volume=_text(rec.find("volume")),
        number=_text(rec.find("number")),
        pages=_text(rec.find("pages")),
        doi=_text(rec.find("electronic-resource-num")),
        pmid=accession if accession and accession.isdigit() else None,
        abstract=_text(rec.find("abstract")),
    )


def _year(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    match = _YEAR.search(value)
    return match.group(0) if match else None
