"""Seed reference resolution entry points."""

import logging

from citechain.core.errors import CitechainError, ErrorCode
from citechain.core.models import ResolutionResponse, SeedInput
from citechain.core.settings import ResolutionSettings
from citechain.resolution.context import build_context, copy_to_duplicates, extract_results
from citechain.resolution.resolver import ReferenceResolver

logger = logging.getLogger(__name__)

__all__ = [
    "ReferenceResolver",
    "resolve_seed_references",
    "resolve_seed_references_with_stats",
]


async def resolve_seed_references(
    references: list[SeedInput],
    openalex,
    semantic_scholar,
    settings: ResolutionSettings | None = None,
) -> ResolutionResponse:
    """Resolve seed references to canonical metadata.

    Every input gets exactly one outcome. Provider failures reduce coverage
    but do not fail the call; anything else is raised as
    INTERNAL_SERVER_ERROR.
    """
    response = await resolve_seed_references_with_stats(
        references, openalex, semantic_scholar, settings
    )
    response.statistics = None
    return response


async def resolve_seed_references_with_stats(
    references: list[SeedInput],
    openalex,
    semantic_scholar,
    settings: ResolutionSettings | None = None,
) -> ResolutionResponse:
    """Same as resolve_seed_references, with found/not-found statistics."""
    settings = settings or ResolutionSettings()
    if not references:
        return ResolutionResponse(results=[], deduplication={})

    try:
        context = build_context(references)
        resolver = ReferenceResolver(openalex, semantic_scholar, settings)
        await resolver.resolve_identifiers(context)
        await resolver.resolve_titles(context)
        if settings.inherit_duplicate_outcomes:
            copy_to_duplicates(context)
        results, deduplication, stats = extract_results(context)
    except CitechainError:
        raise
    except Exception as exc:
        logger.exception("Error validating seed references")
        raise CitechainError(
            ErrorCode.INTERNAL_SERVER_ERROR,
            "Error validating seed references",
            cause=exc,
        ) from exc

    logger.info(
        "Resolved %d/%d references (%d by identifier, %d by title, %d not found)",
        stats.found_by_identifier + stats.found_by_title,
        stats.total_processed,
        stats.found_by_identifier,
        stats.found_by_title,
        stats.not_found,
    )
    return ResolutionResponse(results=results, deduplication=deduplication, statistics=stats)
