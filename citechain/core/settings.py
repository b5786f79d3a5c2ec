"""Settings: YAML loader and Pydantic models for provider limits and batch sizes."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

CONFIG_ENV_VAR = "CITECHAIN_CONFIG"
S2_API_KEY_ENV_VAR = "SEMANTIC_SCHOLAR_API_KEY"


# ── Providers ────────────────────────────────────────────────────────


class ProviderSettings(BaseModel):
    """Endpoint, rate limit and timeout for one metadata provider."""

    base_url: str
    max_concurrent: int = Field(ge=1, description="Requests allowed in flight at once")
    min_interval: float = Field(ge=0.0, description="Seconds between request starts")
    timeout: float = Field(gt=0.0, description="Per-request timeout in seconds")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class OpenAlexSettings(ProviderSettings):
    base_url: str = "https://api.openalex.org"
    max_concurrent: int = Field(default=9, ge=1)
    min_interval: float = Field(default=0.11, ge=0.0)
    timeout: float = Field(default=30.0, gt=0.0)
    mailto: Optional[str] = Field(
        default=None, description="Contact address for the OpenAlex polite pool"
    )


class SemanticScholarSettings(ProviderSettings):
    base_url: str = "https://api.semanticscholar.org/graph/v1"
    max_concurrent: int = Field(default=1, ge=1)
    min_interval: float = Field(default=1.0, ge=0.0)
    timeout: float = Field(default=30.0, gt=0.0)
    api_key: Optional[str] = None


# ── Pipelines ────────────────────────────────────────────────────────


class ResolutionSettings(BaseModel):
    """Batch sizes for seed reference resolution."""

    openalex_batch_size: int = Field(default=100, ge=1, le=100)
    semantic_scholar_batch_size: int = Field(default=500, ge=1, le=500)
    title_batch_size: int = Field(default=10, ge=1)
    title_search_limit: int = Field(default=20, ge=1)
    inherit_duplicate_outcomes: bool = Field(
        default=False,
        description="Copy the queued input's outcome to inputs that duplicate its identifier",
    )


class CitationSettings(BaseModel):
    """Batch sizes and pagination limits for citation search."""

    openalex_batch_size: int = Field(default=50, ge=1)
    openalex_detail_chunk_size: int = Field(default=100, ge=1, le=100)
    semantic_scholar_batch_size: int = Field(
        default=20, ge=1, description="Kept small: S2 caps citations per paper at 9999"
    )
    abstract_batch_size: int = Field(default=400, ge=1, le=500)
    forward_page_size: int = Field(default=100, ge=1, le=200)
    max_forward_pages: int = Field(default=50, ge=1)


# ── Settings (top-level) ─────────────────────────────────────────────


class Settings(BaseModel):
    openalex: OpenAlexSettings = Field(default_factory=OpenAlexSettings)
    semantic_scholar: SemanticScholarSettings = Field(default_factory=SemanticScholarSettings)
    resolution: ResolutionSettings = Field(default_factory=ResolutionSettings)
    citations: CitationSettings = Field(default_factory=CitationSettings)


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from YAML, falling back to defaults.

    ``path`` defaults to ``$CITECHAIN_CONFIG``. The Semantic Scholar key
    may also come from ``$SEMANTIC_SCHOLAR_API_KEY``.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)

    raw: dict = {}
    if path:
        with open(Path(path)) as f:
            raw = yaml.safe_load(f) or {}

    settings = Settings.model_validate(raw)

    env_key = os.environ.get(S2_API_KEY_ENV_VAR)
    if env_key and not settings.semantic_scholar.api_key:
        settings.semantic_scholar.api_key = env_key
    return settings
