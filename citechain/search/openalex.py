"""OpenAlex client: identifier lookups, title search and citation expansion."""

import logging

import httpx
from pyalex import invert_abstract

from citechain.core.errors import CitechainError, ErrorCode
from citechain.core.identifiers import (
    IdentifierType,
    chunked,
    normalize_doi,
    normalize_identifier,
    normalize_mag_id,
    normalize_openalex_id,
    normalize_pmcid,
    normalize_pmid,
)
from citechain.core.models import Candidate, CandidateIds, Citation
from citechain.core.settings import OpenAlexSettings
from citechain.search.http import request_json
from citechain.search.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

PROVIDER = "OpenAlex"

_MAX_FILTER_VALUES = 100

CANDIDATE_FIELDS = ("id", "doi", "title", "ids", "publication_year", "primary_location")
CITATION_FIELDS = (
    "id",
    "doi",
    "ids",
    "title",
    "publication_year",
    "type",
    "authorships",
    "primary_location",
    "biblio",
    "abstract_inverted_index",
)


# ── Client ───────────────────────────────────────────────────────────


class OpenAlexClient:
    """Rate-limited access to the OpenAlex ``/works`` endpoint."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        limiter: RateLimiter,
        settings: OpenAlexSettings | None = None,
    ):
        self.http = http
        self.limiter = limiter
        self.settings = settings or OpenAlexSettings()

    @property
    def works_url(self) -> str:
        return f"{self.settings.base_url}/works"

    async def _get_works(self, params: dict, fields, per_page: int, operation: str) -> dict:
        query = {**params, "select": ",".join(fields), "per-page": str(per_page)}
        if self.settings.mailto:
            query["mailto"] = self.settings.mailto
        data = await request_json(
            self.http,
            self.limiter,
            "GET",
            self.works_url,
            params=query,
            provider=PROVIDER,
            operation=operation,
            timeout=self.settings.timeout,
        )
        if not isinstance(data, dict):
            raise CitechainError(
                ErrorCode.BAD_REQUEST,
                "Unexpected OpenAlex response shape",
                provider=PROVIDER,
                operation=operation,
            )
        return data

    # ── Resolution ───────────────────────────────────────────────

    async def lookup_by_identifiers(
        self, identifier_type: IdentifierType, values: list[str]
    ) -> list[Candidate]:
        """Fetch works matching any of ``values`` (at most 100 per call)."""
        values = [v for v in (normalize_identifier(identifier_type, v) for v in values) if v]
        if not values:
            return []
        if len(values) > _MAX_FILTER_VALUES:
            raise CitechainError(
                ErrorCode.BAD_REQUEST,
                f"At most {_MAX_FILTER_VALUES} identifiers per OpenAlex filter",
                provider=PROVIDER,
                operation=f"lookup by {identifier_type}",
            )
        if identifier_type == "openalex":
            values = [v.upper() for v in values]

        data = await self._get_works(
            {"filter": f"{identifier_type}:{'|'.join(values)}"},
            CANDIDATE_FIELDS,
            _MAX_FILTER_VALUES,
            f"lookup by {identifier_type}",
        )
        return _parse_candidates(data.get("results"))

    async def search_by_title(self, query: str, limit: int = 20) -> list[Candidate]:
        """Free-text search; the caller decides which candidate matches."""
        query = (query or "").strip()
        if not query:
            return []
        data = await self._get_works(
            {"search": query}, CANDIDATE_FIELDS, limit, "title search"
        )
        return _parse_candidates(data.get("results"))

    # ── Citation Expansion ───────────────────────────────────────

    async def fetch_referenced_work_ids(self, openalex_ids: list[str]) -> list[str]:
        """Union of ``referenced_works`` across the given works, deduplicated."""
        ids = [normalize_openalex_id(i).upper() for i in openalex_ids if normalize_openalex_id(i)]
        if not ids:
            return []

        seen: dict[str, None] = {}
        for chunk in chunked(ids, _MAX_FILTER_VALUES):
            data = await self._get_works(
                {"filter": f"openalex:{'|'.join(chunk)}"},
                ("id", "referenced_works"),
                _MAX_FILTER_VALUES,
                "fetch referenced works",
            )
            for work in data.get("results") or []:
                for ref in (work or {}).get("referenced_works") or []:
                    ref_id = normalize_openalex_id(ref)
                    if ref_id:
                        seen.setdefault(ref_id, None)
        return list(seen)

    async def fetch_works(self, openalex_ids: list[str], chunk_size: int = 100) -> list[Citation]:
        """Detail records for ``openalex_ids`` as Citations."""
        ids = [normalize_openalex_id(i).upper() for i in openalex_ids if normalize_openalex_id(i)]
        citations: list[Citation] = []
        for chunk in chunked(ids, min(chunk_size, _MAX_FILTER_VALUES)):
            data = await self._get_works(
                {"filter": f"openalex:{'|'.join(chunk)}"},
                CITATION_FIELDS,
                _MAX_FILTER_VALUES,
                "fetch work details",
            )
            citations.extend(_parse_citations(data.get("results")))
        return citations

    async def fetch_citing_works(
        self, openalex_id: str, page: int = 1, per_page: int = 100
    ) -> tuple[list[Citation], int, int]:
        """One page of works citing ``openalex_id``.

        Returns (citations, raw result count on the page, total count).
        """
        work_id = normalize_openalex_id(openalex_id).upper()
        data = await self._get_works(
            {"filter": f"cites:{work_id}", "page": str(page)},
            CITATION_FIELDS,
            per_page,
            "fetch citing works",
        )
        results = data.get("results") or []
        total = int((data.get("meta") or {}).get("count") or 0)
        return _parse_citations(results), len(results), total


# ── Abstract Reconstruction ──────────────────────────────────────────


def reconstruct_abstract(inverted_index: dict | None) -> str | None:
    """Reassemble full abstract text from an OpenAlex inverted index.

    OpenAlex stores abstracts as {word: [position, ...]} dicts.
    Returns None if the inverted index is empty or None.
    """
    if not inverted_index:
        return None
    return invert_abstract(inverted_index)


# ── Work → Candidate / Citation ──────────────────────────────────────


def _parse_ids(work: dict) -> CandidateIds:
    ids = work.get("ids") or {}
    return CandidateIds(
        doi=normalize_doi(ids.get("doi")) or None,
        pmid=normalize_pmid(ids.get("pmid")) or None,
        pmcid=normalize_pmcid(ids.get("pmcid")) or None,
        openalex=normalize_openalex_id(ids.get("openalex")) or None,
        mag=normalize_mag_id(ids.get("mag")) or None,
    )


def _journal(work: dict) -> str | None:
    primary = work.get("primary_location") or {}
    source = primary.get("source") or {}
    return source.get("display_name")


def parse_candidate(work: dict) -> Candidate | None:
    """Convert an OpenAlex Work dict into a Candidate."""
    title = (work or {}).get("title")
    if not title:
        return None

    ids = _parse_ids(work)
    return Candidate(
        title=title,
        year=work.get("publication_year") or None,
        journal=_journal(work),
        doi=normalize_doi(work.get("doi")) or ids.doi,
        openalex_id=normalize_openalex_id(work.get("id")) or ids.openalex,
        ids=ids,
    )


def parse_citation(work: dict) -> Citation | None:
    """Convert an OpenAlex Work dict into a Citation."""
    title = (work or {}).get("title")
    if not title:
        return None

    ids = _parse_ids(work)

    authors = []
    for authorship in work.get("authorships") or []:
        author = (authorship or {}).get("author") or {}
        name = author.get("display_name")
        if name:
            authors.append(name)

    biblio = work.get("biblio") or {}
    pages = f"{biblio.get('first_page') or ''}-{biblio.get('last_page') or ''}"
    if pages == "-":
        pages = None

    primary = work.get("primary_location") or {}

    return Citation(
        doi=normalize_doi(work.get("doi")) or ids.doi,
        pmid=ids.pmid,
        openalex_id=normalize_openalex_id(work.get("id")) or ids.openalex,
        title=title,
        abstract=reconstruct_abstract(work.get("abstract_inverted_index")),
        year=work.get("publication_year") or None,
        journal=_journal(work),
        pages=pages,
        volume=biblio.get("volume") or None,
        number=biblio.get("issue") or None,
        authors=authors,
        open_access=bool(primary.get("is_oa")),
        open_access_url=primary.get("pdf_url") or primary.get("landing_page_url"),
        type=work.get("type"),
    )


def _parse_candidates(results) -> list[Candidate]:
    candidates = []
    for work in results or []:
        candidate = parse_candidate(work)
        if candidate:
            candidates.append(candidate)
    return candidates


def _parse_citations(results) -> list[Citation]:
    citations = []
    for work in results or []:
        citation = parse_citation(work)
        if citation:
            citations.append(citation)
    return citations
