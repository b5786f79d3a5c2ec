"""Aggregation context: keyed citation maps, cross-provider merge and result extraction."""

import logging
from dataclasses import dataclass, field
from typing import Literal

from citechain.core.identifiers import citation_key, normalize_doi
from citechain.core.models import (
    Citation,
    CitationDeduplication,
    CitationSearchOptions,
    CitationSearchResult,
    CitationStatistics,
    SourceCounts,
)

logger = logging.getLogger(__name__)

Provider = Literal["openalex", "semantic_scholar"]
Direction = Literal["backward", "forward"]

_FILLABLE_FIELDS = (
    "doi",
    "pmid",
    "openalex_id",
    "s2_id",
    "year",
    "journal",
    "pages",
    "volume",
    "number",
    "type",
    "open_access_url",
)


@dataclass
class AggregationContext:
    """State owned by one citation search call."""

    options: CitationSearchOptions
    backward: dict[str, Citation] = field(default_factory=dict)
    forward: dict[str, Citation] = field(default_factory=dict)
    # Normalized DOI → abstract, filled from Semantic Scholar responses only.
    abstracts: dict[str, str] = field(default_factory=dict)
    sources: SourceCounts = field(default_factory=SourceCounts)
    backward_provider_overlap: int = 0
    forward_provider_overlap: int = 0
    # (direction, key) → providers that reported it.
    contributors: dict[tuple[Direction, str], set[str]] = field(default_factory=dict)

    def citations(self, direction: Direction) -> dict[str, Citation]:
        return self.backward if direction == "backward" else self.forward

    def add(self, provider: Provider, direction: Direction, citations: list[Citation]) -> tuple[int, int]:
        """Merge one provider's citations for one direction.

        The first writer of a key is stored as-is. A later writer merges
        into the stored record. A key reached by both providers counts once
        towards that direction's provider overlap.

        Returns (new records, merged records).
        """
        store = self.citations(direction)
        counts = getattr(self.sources, provider)
        added = merged = 0

        for citation in citations:
            key = citation_key(citation)
            contributors = self.contributors.setdefault((direction, key), set())
            existing = store.get(key)

            if existing is None:
                store[key] = citation
                added += 1
            else:
                merge_citation(existing, citation, prefer_incoming_abstract=provider == "semantic_scholar")
                merged += 1
                if provider not in contributors:
                    if direction == "backward":
                        self.backward_provider_overlap += 1
                    else:
                        self.forward_provider_overlap += 1
            contributors.add(provider)

        setattr(counts, direction, getattr(counts, direction) + added)
        return added, merged

    def capture_abstracts(self, citations: list[Citation]) -> None:
        for citation in citations:
            doi = normalize_doi(citation.doi)
            if citation.abstract and doi:
                self.abstracts[doi] = citation.abstract

    def missing_abstracts(self) -> list[Citation]:
        seen: dict[int, Citation] = {}
        for store in (self.backward, self.forward):
            for citation in store.values():
                if not citation.abstract:
                    seen.setdefault(id(citation), citation)
        return list(seen.values())


# ── Merging ──────────────────────────────────────────────────────────


def merge_citation(existing: Citation, incoming: Citation, prefer_incoming_abstract: bool) -> Citation:
    """Fill gaps in ``existing`` from ``incoming``, in place.

    With ``prefer_incoming_abstract`` the incoming abstract replaces the
    stored one; otherwise it only fills a missing abstract.
    """
    for name in _FILLABLE_FIELDS:
        if not getattr(existing, name) and getattr(incoming, name):
            setattr(existing, name, getattr(incoming, name))
    if not existing.authors and incoming.authors:
        existing.authors = list(incoming.authors)
    if incoming.open_access:
        existing.open_access = True

    if incoming.abstract and (prefer_incoming_abstract or not existing.abstract):
        existing.abstract = incoming.abstract
    return existing


def fill_abstracts_by_doi(citations: list[Citation], abstracts: dict[str, str]) -> int:
    filled = 0
    for citation in citations:
        if citation.abstract:
            continue
        abstract = abstracts.get(normalize_doi(citation.doi))
        if abstract:
            citation.abstract = abstract
            filled += 1
    return filled


def fill_abstracts(citations: list[Citation], abstracts: dict[str, str]) -> int:
    """Backfill by Semantic Scholar id first, normalized DOI second."""
    filled = 0
    for citation in citations:
        if citation.abstract:
            continue
        abstract = None
        if citation.s2_id:
            abstract = abstracts.get(citation.s2_id)
        if not abstract and citation.doi:
            abstract = abstracts.get(normalize_doi(citation.doi))
        if abstract:
            citation.abstract = abstract
            filled += 1
    return filled


# ── Extraction ───────────────────────────────────────────────────────


def extract_results(context: AggregationContext) -> CitationSearchResult:
    """Backward, forward and their union by identity key, with statistics."""
    backward = list(context.backward.values())
    forward = list(context.forward.values())

    combined: dict[str, Citation] = {}
    for key, citation in context.backward.items():
        combined.setdefault(key, citation)
    for key, citation in context.forward.items():
        combined.setdefault(key, citation)

    direction_overlap = sum(1 for key in context.backward if key in context.forward)

    return CitationSearchResult(
        backward=backward,
        forward=forward,
        combined=list(combined.values()),
        deduplication=CitationDeduplication(
            backward_provider_overlap=context.backward_provider_overlap,
            forward_provider_overlap=context.forward_provider_overlap,
            direction_overlap=direction_overlap,
        ),
        statistics=CitationStatistics(
            total_backward=len(backward),
            total_forward=len(forward),
            total_combined=len(combined),
            sources=context.sources,
        ),
    )
