"""Process-wide provider clients sharing one HTTP pool and one limiter per provider."""

import logging
from dataclasses import dataclass

import httpx

from citechain.core.settings import Settings
from citechain.search.openalex import OpenAlexClient
from citechain.search.ratelimit import RateLimiter
from citechain.search.semantic_scholar import SemanticScholarClient

logger = logging.getLogger(__name__)

USER_AGENT = "citechain/0.1"


@dataclass
class ProviderClients:
    """Both provider clients plus the resources they share.

    Use as ``async with ProviderClients.from_settings(settings) as clients``
    so the HTTP pool is closed on exit.
    """

    openalex: OpenAlexClient
    semantic_scholar: SemanticScholarClient
    http: httpx.AsyncClient
    settings: Settings

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> "ProviderClients":
        settings = settings or Settings()
        if http is None:
            http = httpx.AsyncClient(headers={"User-Agent": USER_AGENT})

        openalex_limiter = RateLimiter.from_settings("openalex", settings.openalex)
        s2_limiter = RateLimiter.from_settings("semantic_scholar", settings.semantic_scholar)
        logger.info(
            "Rate limits: OpenAlex %d concurrent / %.2fs, Semantic Scholar %d concurrent / %.2fs",
            openalex_limiter.max_concurrent,
            openalex_limiter.min_interval,
            s2_limiter.max_concurrent,
            s2_limiter.min_interval,
        )
        return cls(
            openalex=OpenAlexClient(http, openalex_limiter, settings.openalex),
            semantic_scholar=SemanticScholarClient(http, s2_limiter, settings.semantic_scholar),
            http=http,
            settings=settings,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "ProviderClients":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
