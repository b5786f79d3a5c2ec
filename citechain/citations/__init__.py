"""Citation search: backward and forward expansion merged across providers."""

import asyncio
import logging

from citechain.citations.context import (
    AggregationContext,
    extract_results,
    fill_abstracts,
    fill_abstracts_by_doi,
)
from citechain.citations.sources import (
    ProviderCitations,
    fetch_openalex_citations,
    fetch_semantic_scholar_citations,
)
from citechain.core.errors import CitechainError, ErrorCode
from citechain.core.identifiers import normalize_doi
from citechain.core.models import (
    CitationInput,
    CitationSearchOptions,
    CitationSearchResult,
    ResolutionOutcome,
)
from citechain.core.settings import CitationSettings

logger = logging.getLogger(__name__)

__all__ = [
    "AggregationContext",
    "search_citations",
    "seed_outcomes_to_citation_inputs",
]


async def search_citations(
    inputs: list[CitationInput],
    options: CitationSearchOptions | None,
    openalex,
    semantic_scholar,
    settings: CitationSettings | None = None,
) -> CitationSearchResult:
    """Find works cited by (backward) and citing (forward) ``inputs``.

    Both providers are queried concurrently; their results are merged
    OpenAlex first, then Semantic Scholar. Provider failures only reduce
    coverage. Anything unexpected is raised as INTERNAL_SERVER_ERROR.
    """
    options = options or CitationSearchOptions()
    settings = settings or CitationSettings()
    if not inputs:
        return CitationSearchResult()

    try:
        context = AggregationContext(options=options)
        results = await asyncio.gather(
            _fetch(options.uses("openalex"), fetch_openalex_citations, openalex, inputs, options, settings),
            _fetch(
                options.uses("semantic_scholar"),
                fetch_semantic_scholar_citations,
                semantic_scholar,
                inputs,
                options,
                settings,
            ),
            return_exceptions=True,
        )
        # Both fetchers have finished here; surface the first failure
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome
        openalex_result, s2_result = results

        context.add("openalex", "backward", openalex_result.backward)
        context.add("openalex", "forward", openalex_result.forward)

        context.capture_abstracts(s2_result.backward)
        context.capture_abstracts(s2_result.forward)
        context.add("semantic_scholar", "backward", s2_result.backward)
        context.add("semantic_scholar", "forward", s2_result.forward)

        await enrich_abstracts(context, semantic_scholar, settings)
        result = extract_results(context)
    except CitechainError:
        raise
    except Exception as exc:
        logger.exception("Error searching citations")
        raise CitechainError(
            ErrorCode.INTERNAL_SERVER_ERROR,
            "Error searching citations",
            cause=exc,
        ) from exc

    stats = result.statistics
    logger.info(
        "Citation search: %d backward, %d forward, %d combined (overlap %d/%d, both directions %d)",
        stats.total_backward,
        stats.total_forward,
        stats.total_combined,
        result.deduplication.backward_provider_overlap,
        result.deduplication.forward_provider_overlap,
        result.deduplication.direction_overlap,
    )
    return result


async def _fetch(enabled: bool, fetcher, client, inputs, options, settings) -> ProviderCitations:
    if not enabled:
        return ProviderCitations()
    return await fetcher(client, inputs, options, settings)


# ── Abstract Enrichment ──────────────────────────────────────────────


async def enrich_abstracts(
    context: AggregationContext,
    semantic_scholar,
    settings: CitationSettings,
) -> int:
    """Backfill missing abstracts; returns how many were filled.

    Abstracts already seen in Semantic Scholar responses are applied by
    DOI. With no such abstracts and Semantic Scholar not queried, a
    dedicated batch lookup is made instead. Failures are logged and
    leave abstracts missing.
    """
    missing = context.missing_abstracts()
    if not missing:
        return 0

    if context.abstracts:
        filled = fill_abstracts_by_doi(missing, context.abstracts)
        logger.info("Filled %d/%d missing abstracts by DOI", filled, len(missing))
        return filled

    if context.options.uses("semantic_scholar"):
        return 0

    ids = list(dict.fromkeys(_abstract_lookup_id(c) for c in missing if _abstract_lookup_id(c)))
    if not ids:
        return 0
    try:
        abstracts = await semantic_scholar.fetch_abstracts(ids, settings.abstract_batch_size)
    except CitechainError as exc:
        logger.warning("Abstract enrichment failed: %s", exc)
        return 0

    filled = fill_abstracts(missing, abstracts)
    logger.info("Filled %d/%d missing abstracts from Semantic Scholar", filled, len(missing))
    return filled


def _abstract_lookup_id(citation) -> str | None:
    if citation.s2_id:
        return citation.s2_id
    doi = normalize_doi(citation.doi)
    return f"DOI:{doi}" if doi else None


# ── Seed Outcomes → Inputs ───────────────────────────────────────────


def seed_outcomes_to_citation_inputs(outcomes: list[ResolutionOutcome]) -> list[CitationInput]:
    """Citation inputs for the found outcomes, keeping the seed ids."""
    inputs = []
    for outcome in outcomes:
        if not outcome.found or outcome.data is None:
            continue
        data = outcome.data
        inputs.append(
            CitationInput(
                id=outcome.id,
                openalex_id=data.openalex_id,
                s2_id=data.s2_id,
                doi=data.doi,
                title=data.title,
            )
        )
    return inputs
