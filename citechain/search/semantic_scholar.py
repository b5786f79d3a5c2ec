"""Semantic Scholar Graph API client: batch lookups, title search, citation graph."""

import logging
from typing import Optional

import httpx
from pydantic import BaseModel, Field

from citechain.core.errors import CitechainError, ErrorCode
from citechain.core.identifiers import (
    IdentifierType,
    chunked,
    normalize_doi,
    normalize_identifier,
    normalize_mag_id,
    normalize_pmcid,
    normalize_pmid,
)
from citechain.core.models import Candidate, CandidateIds, Citation
from citechain.core.settings import SemanticScholarSettings
from citechain.search.http import request_json
from citechain.search.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

PROVIDER = "Semantic Scholar"

MAX_BATCH_IDS = 500

# Prefixes the /paper/batch endpoint accepts; OpenAlex ids have none.
_ID_PREFIXES = {"doi": "DOI", "pmid": "PMID", "pmcid": "PMCID", "mag": "MAG"}

CANDIDATE_FIELDS = ("externalIds", "paperId", "title", "year", "journal")
_CITATION_SUBFIELDS = (
    "externalIds",
    "abstract",
    "title",
    "year",
    "authors",
    "journal",
    "publicationTypes",
    "openAccessPdf",
)
ABSTRACT_FIELDS = ("externalIds", "abstract")


class PaperCitations(BaseModel):
    """References (backward) and citations (forward) of one seed paper."""

    s2_id: Optional[str] = None
    references: list[Citation] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)


def format_identifier(identifier_type: IdentifierType, value: str) -> str | None:
    """Prefixed id for the batch endpoint, e.g. ``DOI:10.1/x``; None if unsupported."""
    prefix = _ID_PREFIXES.get(identifier_type)
    if not prefix:
        return None
    normalized = normalize_identifier(identifier_type, value)
    if not normalized:
        return None
    return f"{prefix}:{normalized}"


def citation_graph_fields(references: bool, citations: bool) -> list[str]:
    fields = ["paperId", "externalIds"]
    if citations:
        fields += [f"citations.{f}" for f in _CITATION_SUBFIELDS]
    if references:
        fields += [f"references.{f}" for f in _CITATION_SUBFIELDS]
    return fields


# ── Client ───────────────────────────────────────────────────────────


class SemanticScholarClient:
    """Rate-limited access to the Semantic Scholar Graph API."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        limiter: RateLimiter,
        settings: SemanticScholarSettings | None = None,
    ):
        self.http = http
        self.limiter = limiter
        self.settings = settings or SemanticScholarSettings()

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["x-api-key"] = self.settings.api_key
        return headers

    async def fetch_papers(self, ids: list[str], fields, operation: str = "batch fetch") -> list[dict]:
        """POST ``ids`` to /paper/batch in chunks of 500; unknown ids are skipped."""
        papers: list[dict] = []
        for chunk in chunked([i for i in ids if i], MAX_BATCH_IDS):
            data = await request_json(
                self.http,
                self.limiter,
                "POST",
                f"{self.settings.base_url}/paper/batch",
                params={"fields": ",".join(fields)},
                json={"ids": chunk},
                headers=self._headers(),
                provider=PROVIDER,
                operation=operation,
                timeout=self.settings.timeout,
            )
            if not isinstance(data, list):
                raise CitechainError(
                    ErrorCode.BAD_REQUEST,
                    "Unexpected Semantic Scholar batch response shape",
                    provider=PROVIDER,
                    operation=operation,
                )
            papers.extend(p for p in data if p)
        return papers

    # ── Resolution ───────────────────────────────────────────────

    async def lookup_by_identifiers(
        self, identifier_type: IdentifierType, values: list[str]
    ) -> list[Candidate]:
        ids = [i for i in (format_identifier(identifier_type, v) for v in values) if i]
        if not ids:
            return []
        papers = await self.fetch_papers(ids, CANDIDATE_FIELDS, f"lookup by {identifier_type}")
        return [c for c in (parse_candidate(p) for p in papers) if c]

    async def search_by_title(self, query: str, limit: int = 20) -> list[Candidate]:
        query = (query or "").strip()
        if not query:
            return []
        data = await request_json(
            self.http,
            self.limiter,
            "GET",
            f"{self.settings.base_url}/paper/search",
            params={
                "query": query,
                "fields": ",".join(CANDIDATE_FIELDS),
                "limit": str(limit),
            },
            headers=self._headers(),
            provider=PROVIDER,
            operation="title search",
            timeout=self.settings.timeout,
        )
        papers = (data.get("data") if isinstance(data, dict) else None) or []
        return [c for c in (parse_candidate(p) for p in papers) if c]

    # ── Citation Expansion ───────────────────────────────────────

    async def fetch_citation_graph(
        self,
        s2_ids: list[str],
        references: bool = True,
        citations: bool = True,
    ) -> list[PaperCitations]:
        """References and citations of each paper, in one batch call per 500 ids."""
        fields = citation_graph_fields(references, citations)
        papers = await self.fetch_papers(s2_ids, fields, "fetch citation graph")
        graph = []
        for paper in papers:
            graph.append(
                PaperCitations(
                    s2_id=paper.get("paperId"),
                    references=_parse_citations(paper.get("references")) if references else [],
                    citations=_parse_citations(paper.get("citations")) if citations else [],
                )
            )
        return graph

    async def fetch_abstracts(self, ids: list[str], batch_size: int = 400) -> dict[str, str]:
        """Map s2 id and normalized DOI to abstract for ``ids``.

        ``ids`` are s2 paper ids or ``DOI:``-prefixed DOIs. A failed batch
        is logged and skipped.
        """
        abstracts: dict[str, str] = {}
        for batch in chunked(ids, min(batch_size, MAX_BATCH_IDS)):
            try:
                papers = await self.fetch_papers(batch, ABSTRACT_FIELDS, "fetch abstracts")
            except CitechainError as exc:
                logger.warning("Skipping abstract batch of %d ids: %s", len(batch), exc)
                continue
            for paper in papers:
                abstract = paper.get("abstract")
                if not abstract:
                    continue
                if paper.get("paperId"):
                    abstracts[paper["paperId"]] = abstract
                doi = normalize_doi((paper.get("externalIds") or {}).get("DOI"))
                if doi:
                    abstracts[doi] = abstract
        return abstracts


# ── Paper → Candidate / Citation ─────────────────────────────────────


def parse_candidate(paper: dict) -> Candidate | None:
    """Convert a Semantic Scholar paper dict into a Candidate."""
    title = (paper or {}).get("title")
    if not title:
        return None

    ext = paper.get("externalIds") or {}
    doi = normalize_doi(ext.get("DOI")) or None
    journal = paper.get("journal") or {}

    return Candidate(
        title=title,
        year=paper.get("year") or None,
        journal=journal.get("name") or None,
        doi=doi,
        s2_id=paper.get("paperId"),
        abstract=paper.get("abstract") or None,
        ids=CandidateIds(
            doi=doi,
            pmid=normalize_pmid(ext.get("PubMed")) or None,
            pmcid=normalize_pmcid(ext.get("PubMedCentral")) or None,
            mag=normalize_mag_id(ext.get("MAG")) or None,
        ),
    )


def parse_citation(paper: dict) -> Citation | None:
    """Convert a reference/citation entry into a Citation."""
    title = (paper or {}).get("title")
    if not title:
        return None

    ext = paper.get("externalIds") or {}
    journal = paper.get("journal") or {}
    pdf = paper.get("openAccessPdf") or {}
    types = paper.get("publicationTypes") or []

    return Citation(
        s2_id=paper.get("paperId"),
        doi=normalize_doi(ext.get("DOI")) or None,
        pmid=normalize_pmid(ext.get("PubMed")) or None,
        title=title,
        abstract=paper.get("abstract") or None,
        year=paper.get("year") or None,
        journal=journal.get("name") or None,
        pages=(journal.get("pages") or "").strip() or None,
        volume=(journal.get("volume") or "").strip() or None,
        authors=[a["name"] for a in paper.get("authors") or [] if a and a.get("name")],
        open_access=bool(pdf.get("url")),
        open_access_url=pdf.get("url") or None,
        type=", ".join(types) or None,
    )


def _parse_citations(entries) -> list[Citation]:
    citations = []
    for entry in entries or []:
        citation = parse_citation(entry)
        if citation:
            citations.append(citation)
    return citations
