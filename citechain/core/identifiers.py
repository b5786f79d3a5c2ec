"""Identifier normalization and the identity key shared by both pipelines."""

import re
from typing import Iterable, Literal, TypeVar

IdentifierType = Literal["doi", "pmid", "pmcid", "openalex", "mag"]

# Lookup priority used when grouping seed references.
IDENTIFIER_TYPES: tuple[IdentifierType, ...] = ("doi", "pmid", "pmcid", "openalex", "mag")

T = TypeVar("T")

_DOI_URL_RE = re.compile(r"^(?:https?://)?(?:dx\.)?doi\.org/", re.IGNORECASE)
_DOI_LABEL_RE = re.compile(r"^doi:\s*", re.IGNORECASE)
_PMID_URL_RE = re.compile(r"^(?:https?://)?pubmed\.ncbi\.nlm\.nih\.gov/", re.IGNORECASE)
_PMID_LABEL_RE = re.compile(r"^pmid:?\s*", re.IGNORECASE)
_PMCID_URL_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?(?:pmc\.)?ncbi\.nlm\.nih\.gov/(?:pmc/)?articles/",
    re.IGNORECASE,
)
_PMCID_LABEL_RE = re.compile(r"^pmcid:?\s*", re.IGNORECASE)
_PMC_RE = re.compile(r"^pmc", re.IGNORECASE)
_OPENALEX_URL_RE = re.compile(r"^(?:https?://)?(?:api\.)?openalex\.org/(?:works/)?", re.IGNORECASE)
_OPENALEX_LABEL_RE = re.compile(r"^openalex:\s*", re.IGNORECASE)
_MAG_LABEL_RE = re.compile(r"^mag:?\s*", re.IGNORECASE)
_TRAILING_PATH_RE = re.compile(r"/.*$")
_NON_DIGIT_RE = re.compile(r"\D")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


# ── Helpers ──────────────────────────────────────────────────────────


def _unquote(value: str) -> str:
    return value.strip().strip("\"'").strip()


# ── Normalizers ──────────────────────────────────────────────────────


def normalize_doi(doi: str | None) -> str:
    """Lowercase a DOI and strip resolver URLs and ``doi:`` labels."""
    if not doi:
        return ""
    value = _unquote(doi).lower()
    # Labels and resolver URLs can be stacked, e.g. "doi:https://doi.org/..."
    previous = None
    while value != previous:
        previous = value
        value = _DOI_LABEL_RE.sub("", value)
        value = _DOI_URL_RE.sub("", value).strip()
    return value


def normalize_pmid(pmid: str | int | None) -> str:
    """Reduce a PMID (URL, ``PMID:`` label, bare number) to its digits."""
    if not pmid:
        return ""
    value = _unquote(str(pmid))
    value = _PMID_URL_RE.sub("", value)
    value = _PMID_LABEL_RE.sub("", value)
    value = _TRAILING_PATH_RE.sub("", value)
    return _NON_DIGIT_RE.sub("", value)


def normalize_pmcid(pmcid: str | int | None) -> str:
    """Reduce a PMCID to its digits, without the ``PMC`` prefix."""
    if not pmcid:
        return ""
    value = _unquote(str(pmcid))
    value = _PMCID_URL_RE.sub("", value)
    value = _PMCID_LABEL_RE.sub("", value)
    value = _PMC_RE.sub("", value)
    value = _TRAILING_PATH_RE.sub("", value)
    return _NON_DIGIT_RE.sub("", value)


def normalize_openalex_id(openalex_id: str | None) -> str:
    """Strip ``openalex:`` labels and openalex.org URLs; lowercase, e.g. ``w2741809807``."""
    if not openalex_id:
        return ""
    value = _unquote(openalex_id)
    value = _OPENALEX_LABEL_RE.sub("", value)
    value = _OPENALEX_URL_RE.sub("", value)
    return value.strip().lower()


def normalize_mag_id(mag_id: str | int | None) -> str:
    """Reduce a Microsoft Academic Graph id to its digits."""
    if not mag_id:
        return ""
    value = _unquote(str(mag_id))
    value = _MAG_LABEL_RE.sub("", value)
    return _NON_DIGIT_RE.sub("", value)


def normalize_title(title: str | None) -> str:
    """Lowercase and drop everything that is not a-z or 0-9.

    Title matching is exact on this form; there is no fuzzy scoring.
    """
    if not title:
        return ""
    return _NON_ALNUM_RE.sub("", title.lower()).strip()


NORMALIZERS = {
    "doi": normalize_doi,
    "pmid": normalize_pmid,
    "pmcid": normalize_pmcid,
    "openalex": normalize_openalex_id,
    "mag": normalize_mag_id,
}


def normalize_identifier(identifier_type: IdentifierType, value: str | None) -> str:
    """Dispatch to the normalizer for ``identifier_type``."""
    return NORMALIZERS[identifier_type](value)


# ── Identity Key ─────────────────────────────────────────────────────


def citation_key(record) -> str:
    """Hierarchical key used to join and deduplicate citation records.

    Tries DOI, OpenAlex id, Semantic Scholar id, PMID and finally the
    normalized title. The first present value wins and is prefixed with
    its kind.
    """
    doi = normalize_doi(getattr(record, "doi", None))
    if doi:
        return f"doi:{doi}"
    openalex_id = normalize_openalex_id(getattr(record, "openalex_id", None))
    if openalex_id:
        return f"openalex:{openalex_id}"
    s2_id = getattr(record, "s2_id", None)
    if s2_id:
        return f"s2:{s2_id.strip()}"
    pmid = normalize_pmid(getattr(record, "pmid", None))
    if pmid:
        return f"pmid:{pmid}"
    return f"title:{normalize_title(getattr(record, 'title', None))}"


# ── Misc ─────────────────────────────────────────────────────────────


def chunked(items: Iterable[T], size: int) -> list[list[T]]:
    """Split ``items`` into lists of at most ``size`` elements."""
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    items = list(items)
    return [items[i : i + size] for i in range(0, len(items), size)]


def parse_identifiers(value: str | None) -> list[str]:
    """Split a comma- or newline-separated identifier list.

    Surrounding quotes and whitespace are removed and empty entries dropped.
    """
    if not value or not value.strip():
        return []
    out = []
    for part in re.split(r"[\n,]", value):
        part = part.strip()
        if len(part) >= 2 and part[0] == part[-1] and part[0] in "\"'":
            part = part[1:-1]
        part = part.strip()
        if part:
            out.append(part)
    return out
