"""Shared data models for the resolution and citation pipelines."""

import uuid
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from citechain.core.identifiers import IdentifierType

CitationProvider = Literal["openalex", "semantic_scholar", "both"]
CitationDirection = Literal["backward", "forward", "both"]


def new_id() -> str:
    return uuid.uuid4().hex[:21]


def _number_as_text(value):
    # JSON clients often send PMIDs and MAG ids as numbers
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# ── Seed References ──────────────────────────────────────────────────


class SeedInput(BaseModel):
    """One caller-supplied reference to resolve."""

    id: str
    title: Optional[str] = None
    doi: Optional[str] = None
    pmid: Optional[str] = None
    pmcid: Optional[str] = None
    openalex: Optional[str] = None
    mag: Optional[str] = None

    @field_validator("id", "doi", "pmid", "pmcid", "openalex", "mag", mode="before")
    @classmethod
    def numbers_as_text(cls, value):
        return _number_as_text(value)


class ResolvedReference(BaseModel):
    """Canonical metadata attached to a found seed reference."""

    title: str
    doi: Optional[str] = None
    journal: Optional[str] = None
    openalex_id: Optional[str] = None
    s2_id: Optional[str] = None
    year: Optional[int] = None


class ResolutionOutcome(BaseModel):
    """Result for one SeedInput, keyed by the same id."""

    id: str
    found: bool = False
    searched_by_title: bool = False
    data: Optional[ResolvedReference] = None

    @model_validator(mode="after")
    def found_iff_data(self) -> "ResolutionOutcome":
        if self.found != (self.data is not None):
            raise ValueError("found must be True exactly when data is present")
        return self


class ResolutionStatistics(BaseModel):
    total_processed: int = 0
    found_by_identifier: int = 0
    found_by_title: int = 0
    not_found: int = 0
    success_rate: float = 0.0
    duplicates_removed: dict[IdentifierType, int] = Field(default_factory=dict)


class ResolutionResponse(BaseModel):
    results: list[ResolutionOutcome] = Field(default_factory=list)
    deduplication: dict[IdentifierType, int] = Field(default_factory=dict)
    statistics: Optional[ResolutionStatistics] = None


# ── Provider Candidates ──────────────────────────────────────────────


class CandidateIds(BaseModel):
    doi: Optional[str] = None
    pmid: Optional[str] = None
    pmcid: Optional[str] = None
    openalex: Optional[str] = None
    mag: Optional[str] = None


class Candidate(BaseModel):
    """A provider's metadata record for one work, already normalized."""

    title: str
    year: Optional[int] = None
    journal: Optional[str] = None
    doi: Optional[str] = None
    openalex_id: Optional[str] = None
    s2_id: Optional[str] = None
    abstract: Optional[str] = None
    ids: CandidateIds = Field(default_factory=CandidateIds)

    def identifier(self, identifier_type: IdentifierType) -> Optional[str]:
        """Normalized value of ``identifier_type`` carried by this record."""
        if identifier_type == "doi":
            return self.doi or self.ids.doi
        if identifier_type == "openalex":
            return self.ids.openalex or self.openalex_id
        return getattr(self.ids, identifier_type)

    def to_reference(self) -> ResolvedReference:
        return ResolvedReference(
            title=self.title,
            doi=self.doi,
            journal=self.journal,
            openalex_id=self.ids.openalex or self.openalex_id,
            s2_id=self.s2_id,
            year=self.year,
        )


# ── Citations ────────────────────────────────────────────────────────


class CitationInput(BaseModel):
    """A resolved reference used to drive citation search."""

    id: str
    openalex_id: Optional[str] = None
    s2_id: Optional[str] = None
    doi: Optional[str] = None
    pmid: Optional[str] = None
    title: Optional[str] = None

    @field_validator("id", "pmid", mode="before")
    @classmethod
    def numbers_as_text(cls, value):
        return _number_as_text(value)

    def has_identifier(self) -> bool:
        return any((self.openalex_id, self.s2_id, self.doi, self.pmid, self.title))


class Citation(BaseModel):
    """A single work found by backward or forward citation search."""

    id: str = Field(default_factory=new_id)
    openalex_id: Optional[str] = None
    s2_id: Optional[str] = None
    doi: Optional[str] = None
    pmid: Optional[str] = None
    title: str
    abstract: Optional[str] = None
    year: Optional[int] = None
    journal: Optional[str] = None
    pages: Optional[str] = None
    volume: Optional[str] = None
    number: Optional[str] = None
    authors: list[str] = Field(default_factory=list)
    type: Optional[str] = None
    open_access: bool = False
    open_access_url: Optional[str] = None


class CitationSearchOptions(BaseModel):
    provider: CitationProvider = "both"
    direction: CitationDirection = "both"

    def uses(self, provider: Literal["openalex", "semantic_scholar"]) -> bool:
        return self.provider in (provider, "both")

    def wants(self, direction: Literal["backward", "forward"]) -> bool:
        return self.direction in (direction, "both")


class DirectionCounts(BaseModel):
    backward: int = 0
    forward: int = 0


class SourceCounts(BaseModel):
    openalex: DirectionCounts = Field(default_factory=DirectionCounts)
    semantic_scholar: DirectionCounts = Field(default_factory=DirectionCounts)


class CitationDeduplication(BaseModel):
    backward_provider_overlap: int = 0
    forward_provider_overlap: int = 0
    direction_overlap: int = 0


class CitationStatistics(BaseModel):
    total_backward: int = 0
    total_forward: int = 0
    total_combined: int = 0
    sources: SourceCounts = Field(default_factory=SourceCounts)


class CitationSearchResult(BaseModel):
    backward: list[Citation] = Field(default_factory=list)
    forward: list[Citation] = Field(default_factory=list)
    combined: list[Citation] = Field(default_factory=list)
    deduplication: CitationDeduplication = Field(default_factory=CitationDeduplication)
    statistics: CitationStatistics = Field(default_factory=CitationStatistics)
