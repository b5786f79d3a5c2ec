"""Seed reference resolution: OpenAlex first, Semantic Scholar fallback, exact title match."""

import logging

from citechain.core.errors import CitechainError
from citechain.core.identifiers import IdentifierType, chunked, normalize_title
from citechain.core.models import Candidate, SeedInput
from citechain.core.settings import ResolutionSettings
from citechain.resolution.context import QueuedReference, ResolutionContext

logger = logging.getLogger(__name__)

# Identifier types tried, in order, when looking up Semantic Scholar ids for
# OpenAlex matches. Semantic Scholar cannot be queried by OpenAlex id.
S2_ENRICHMENT_PRIORITY: tuple[IdentifierType, ...] = ("doi", "pmid", "pmcid", "mag")


# ── Matching ─────────────────────────────────────────────────────────


def find_title_match(title: str | None, candidates: list[Candidate]) -> Candidate | None:
    """First candidate whose normalized title equals ``title``'s, else None."""
    target = normalize_title(title)
    if not target:
        return None
    for candidate in candidates:
        if normalize_title(candidate.title) == target:
            return candidate
    return None


def index_candidates(
    candidates: list[Candidate], identifier_type: IdentifierType
) -> dict[str, Candidate]:
    """Map each candidate's ``identifier_type`` value to the candidate."""
    index: dict[str, Candidate] = {}
    for candidate in candidates:
        key = candidate.identifier(identifier_type)
        if key:
            index.setdefault(key, candidate)
    return index


# ── Resolver ─────────────────────────────────────────────────────────


class ReferenceResolver:
    """Resolve grouped seed inputs against both providers.

    Each stage is an ordered list of strategies. A strategy receives the
    inputs of one batch that are still unresolved and records the ones it
    finds on the context. A provider failure inside a strategy is logged
    and the next strategy runs on the same unresolved inputs.
    """

    def __init__(self, openalex, semantic_scholar, settings: ResolutionSettings | None = None):
        self.openalex = openalex
        self.semantic_scholar = semantic_scholar
        self.settings = settings or ResolutionSettings()

    @property
    def identifier_strategies(self):
        return (
            self.lookup_openalex,
            self.lookup_semantic_scholar,
            self.search_semantic_scholar_titles,
        )

    @property
    def title_strategies(self):
        return (self.search_openalex_titles, self.search_semantic_scholar_titles)

    # ── Stages ───────────────────────────────────────────────────

    async def resolve_identifiers(self, context: ResolutionContext) -> None:
        for identifier_type, queued in context.identifier_refs.items():
            if not queued:
                continue
            batches = chunked(queued, self.settings.openalex_batch_size)
            for i, batch in enumerate(batches, 1):
                await self._run_strategies(
                    self.identifier_strategies,
                    context,
                    [q.ref for q in batch],
                    identifier_type=identifier_type,
                    queued=batch,
                )
                logger.info("Resolved %s batch %d/%d", identifier_type, i, len(batches))

    async def resolve_titles(self, context: ResolutionContext) -> None:
        if not context.title_refs:
            return
        batches = chunked(context.title_refs, self.settings.title_batch_size)
        for i, batch in enumerate(batches, 1):
            await self._run_strategies(self.title_strategies, context, batch)
            logger.info("Resolved title batch %d/%d", i, len(batches))

    async def _run_strategies(self, strategies, context, refs: list[SeedInput], **kwargs) -> None:
        for strategy in strategies:
            pending = [r for r in refs if not context.is_found(r.id)]
            if not pending:
                return
            try:
                await strategy(context, pending, **kwargs)
            except CitechainError as exc:
                logger.warning(
                    "%s failed for %d references, falling through: %s",
                    strategy.__name__,
                    len(pending),
                    exc,
                )

    # ── Identifier Strategies ────────────────────────────────────

    async def lookup_openalex(
        self,
        context: ResolutionContext,
        pending: list[SeedInput],
        *,
        identifier_type: IdentifierType,
        queued: list[QueuedReference],
    ) -> None:
        """Batch lookup by identifier, then attach Semantic Scholar ids."""
        items = _pending_items(queued, pending)
        candidates = await self.openalex.lookup_by_identifiers(
            identifier_type, [q.value for q in items]
        )
        if not candidates:
            return
        await self.enrich_with_s2_ids(candidates)

        index = index_candidates(candidates, identifier_type)
        for q in items:
            candidate = index.get(q.value)
            if candidate:
                context.record(q.ref.id, candidate, searched_by_title=False)

    async def lookup_semantic_scholar(
        self,
        context: ResolutionContext,
        pending: list[SeedInput],
        *,
        identifier_type: IdentifierType,
        queued: list[QueuedReference],
    ) -> None:
        items = _pending_items(queued, pending)
        candidates = await self._lookup_s2(identifier_type, [q.value for q in items])
        index = index_candidates(candidates, identifier_type)
        for q in items:
            candidate = index.get(q.value)
            if candidate:
                context.record(q.ref.id, candidate, searched_by_title=False)

    # ── Title Strategies ─────────────────────────────────────────

    async def search_openalex_titles(
        self, context: ResolutionContext, pending: list[SeedInput], **_
    ) -> None:
        """One composite OR query for the batch; each input matched exactly."""
        titles = [r.title.strip() for r in pending if r.title and r.title.strip()]
        if not titles:
            return
        candidates = await self.openalex.search_by_title(
            " OR ".join(titles), limit=self.settings.title_search_limit
        )
        if not candidates:
            return

        matches: dict[str, Candidate] = {}
        for ref in pending:
            match = find_title_match(ref.title, candidates)
            if match:
                matches[ref.id] = match

        unique = list({id(c): c for c in matches.values()}.values())
        if unique:
            await self.enrich_with_s2_ids(unique)

        for ref_id, candidate in matches.items():
            context.record(ref_id, candidate, searched_by_title=True)

    async def search_semantic_scholar_titles(
        self, context: ResolutionContext, pending: list[SeedInput], **_
    ) -> None:
        """Per-input title search; a failed search only affects its own input."""
        for ref in pending:
            title = (ref.title or "").strip()
            if not title:
                continue
            try:
                candidates = await self.semantic_scholar.search_by_title(
                    title, limit=self.settings.title_search_limit
                )
            except CitechainError as exc:
                logger.warning("Semantic Scholar title search failed for %s: %s", ref.id, exc)
                continue
            match = find_title_match(title, candidates)
            if match:
                context.record(ref.id, match, searched_by_title=True)

    # ── Enrichment ───────────────────────────────────────────────

    async def enrich_with_s2_ids(self, candidates: list[Candidate]) -> None:
        """Fill ``s2_id`` on candidates, trying one identifier type at a time.

        Stops once every candidate has an id. A failed lookup for one type
        moves on to the next type.
        """
        for identifier_type in S2_ENRICHMENT_PRIORITY:
            remaining = [
                c for c in candidates if not c.s2_id and c.identifier(identifier_type)
            ]
            if not remaining:
                if all(c.s2_id for c in candidates):
                    return
                continue
            try:
                found = await self._lookup_s2(
                    identifier_type, [c.identifier(identifier_type) for c in remaining]
                )
            except CitechainError as exc:
                logger.warning(
                    "Semantic Scholar id enrichment by %s failed: %s", identifier_type, exc
                )
                continue

            s2_ids = {
                c.identifier(identifier_type): c.s2_id
                for c in found
                if c.s2_id and c.identifier(identifier_type)
            }
            for candidate in remaining:
                s2_id = s2_ids.get(candidate.identifier(identifier_type))
                if s2_id:
                    candidate.s2_id = s2_id
            logger.debug(
                "Enriched %d/%d candidates with Semantic Scholar ids by %s",
                sum(1 for c in remaining if c.s2_id),
                len(remaining),
                identifier_type,
            )

    async def _lookup_s2(self, identifier_type: IdentifierType, values: list[str]) -> list[Candidate]:
        found: list[Candidate] = []
        for chunk in chunked(values, self.settings.semantic_scholar_batch_size):
            found.extend(await self.semantic_scholar.lookup_by_identifiers(identifier_type, chunk))
        return found


def _pending_items(queued: list[QueuedReference], pending: list[SeedInput]) -> list[QueuedReference]:
    pending_ids = {r.id for r in pending}
    return [q for q in queued if q.ref.id in pending_ids]
