"""Backward and forward citation fetching for each provider.

Fetchers never touch the aggregation context; they return plain lists so
both providers can run concurrently and be merged afterwards in a fixed
order.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from citechain.core.errors import CitechainError
from citechain.core.identifiers import chunked, normalize_openalex_id
from citechain.core.models import Citation, CitationInput, CitationSearchOptions
from citechain.core.settings import CitationSettings

logger = logging.getLogger(__name__)


@dataclass
class ProviderCitations:
    backward: list[Citation] = field(default_factory=list)
    forward: list[Citation] = field(default_factory=list)


# ── OpenAlex ─────────────────────────────────────────────────────────


async def fetch_openalex_citations(
    openalex,
    inputs: list[CitationInput],
    options: CitationSearchOptions,
    settings: CitationSettings,
) -> ProviderCitations:
    """Referenced works (backward) and ``cites:`` search results (forward)."""
    result = ProviderCitations()
    work_ids = list(dict.fromkeys(
        normalize_openalex_id(i.openalex_id) for i in inputs if normalize_openalex_id(i.openalex_id)
    ))
    if not work_ids:
        return result

    if options.wants("backward"):
        result.backward = await _openalex_backward(openalex, work_ids, settings)
    if options.wants("forward"):
        result.forward = await _openalex_forward(openalex, work_ids, settings)

    logger.info(
        "OpenAlex: %d backward, %d forward citations for %d works",
        len(result.backward),
        len(result.forward),
        len(work_ids),
    )
    return result


async def _openalex_backward(openalex, work_ids: list[str], settings: CitationSettings) -> list[Citation]:
    referenced: dict[str, None] = {}
    for batch in chunked(work_ids, settings.openalex_batch_size):
        try:
            for ref_id in await openalex.fetch_referenced_work_ids(batch):
                referenced.setdefault(ref_id, None)
        except CitechainError as exc:
            logger.warning("Skipping referenced works for %d OpenAlex works: %s", len(batch), exc)

    citations: list[Citation] = []
    for chunk in chunked(list(referenced), settings.openalex_detail_chunk_size):
        try:
            citations.extend(await openalex.fetch_works(chunk))
        except CitechainError as exc:
            logger.warning("Skipping details for %d referenced works: %s", len(chunk), exc)
    return citations


async def _openalex_forward(openalex, work_ids: list[str], settings: CitationSettings) -> list[Citation]:
    pages = await asyncio.gather(
        *(_openalex_citing_pages(openalex, work_id, settings) for work_id in work_ids)
    )
    return [citation for page in pages for citation in page]


async def _openalex_citing_pages(openalex, work_id: str, settings: CitationSettings) -> list[Citation]:
    """Page through works citing ``work_id`` until a short page or the page ceiling."""
    per_page = settings.forward_page_size
    citations: list[Citation] = []
    page = 1
    while page <= settings.max_forward_pages:
        try:
            batch, returned, total = await openalex.fetch_citing_works(work_id, page, per_page)
        except CitechainError as exc:
            logger.warning(
                "Forward citations for %s stopped at page %d: %s", work_id, page, exc
            )
            break
        citations.extend(batch)
        if returned < per_page or page * per_page >= total:
            break
        page += 1
    else:
        logger.warning(
            "Forward citations for %s truncated at %d pages", work_id, settings.max_forward_pages
        )
    return citations


# ── Semantic Scholar ─────────────────────────────────────────────────


async def fetch_semantic_scholar_citations(
    semantic_scholar,
    inputs: list[CitationInput],
    options: CitationSearchOptions,
    settings: CitationSettings,
) -> ProviderCitations:
    """References (backward) and citations (forward) from batched paper fetches."""
    result = ProviderCitations()
    s2_ids = list(dict.fromkeys(i.s2_id.strip() for i in inputs if i.s2_id and i.s2_id.strip()))
    if not s2_ids:
        return result

    want_backward = options.wants("backward")
    want_forward = options.wants("forward")
    for batch in chunked(s2_ids, settings.semantic_scholar_batch_size):
        try:
            papers = await semantic_scholar.fetch_citation_graph(
                batch, references=want_backward, citations=want_forward
            )
        except CitechainError as exc:
            logger.warning("Skipping Semantic Scholar batch of %d papers: %s", len(batch), exc)
            continue
        for paper in papers:
            if want_backward:
                result.backward.extend(paper.references)
            if want_forward:
                result.forward.extend(paper.citations)

    logger.info(
        "Semantic Scholar: %d backward, %d forward citations for %d papers",
        len(result.backward),
        len(result.forward),
        len(s2_ids),
    )
    return result
