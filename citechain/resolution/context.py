"""Resolution context: grouping of seed inputs, outcome bookkeeping and extraction."""

import logging
from dataclasses import dataclass, field

from citechain.core.identifiers import IDENTIFIER_TYPES, IdentifierType, normalize_identifier
from citechain.core.models import (
    Candidate,
    ResolutionOutcome,
    ResolutionStatistics,
    SeedInput,
)

logger = logging.getLogger(__name__)


@dataclass
class QueuedReference:
    """A seed input waiting for lookup, with its normalized identifier value."""

    ref: SeedInput
    value: str


@dataclass
class ResolutionContext:
    """State owned by one resolution call."""

    identifier_refs: dict[IdentifierType, list[QueuedReference]] = field(
        default_factory=lambda: {t: [] for t in IDENTIFIER_TYPES}
    )
    title_refs: list[SeedInput] = field(default_factory=list)
    results: dict[str, ResolutionOutcome] = field(default_factory=dict)
    deduplication: dict[IdentifierType, int] = field(
        default_factory=lambda: {t: 0 for t in IDENTIFIER_TYPES}
    )
    # Duplicate input id → id of the queued input holding the same identifier.
    duplicate_of: dict[str, str] = field(default_factory=dict)
    total_inputs: int = 0

    def is_found(self, ref_id: str) -> bool:
        outcome = self.results.get(ref_id)
        return bool(outcome and outcome.found)

    def record(self, ref_id: str, candidate: Candidate, searched_by_title: bool) -> None:
        self.results[ref_id] = ResolutionOutcome(
            id=ref_id,
            found=True,
            searched_by_title=searched_by_title,
            data=candidate.to_reference(),
        )

    def placeholder(self, ref_id: str, searched_by_title: bool) -> None:
        self.results[ref_id] = ResolutionOutcome(
            id=ref_id, found=False, searched_by_title=searched_by_title
        )


# ── Grouping ─────────────────────────────────────────────────────────


def build_context(references: list[SeedInput]) -> ResolutionContext:
    """Group inputs by their highest-priority identifier and count duplicates.

    Every input gets a placeholder outcome here. A duplicate of an
    already-queued identifier value is counted and never looked up.
    """
    context = ResolutionContext(total_inputs=len(references))
    queued_values: dict[IdentifierType, dict[str, str]] = {t: {} for t in IDENTIFIER_TYPES}

    for ref in references:
        if ref.id in context.results:
            logger.debug("Skipping repeated input id %s", ref.id)
            continue

        identifier_type, value = _first_identifier(ref)

        if identifier_type is not None:
            first_id = queued_values[identifier_type].get(value)
            if first_id is None:
                queued_values[identifier_type][value] = ref.id
                context.identifier_refs[identifier_type].append(QueuedReference(ref, value))
            else:
                context.deduplication[identifier_type] += 1
                context.duplicate_of[ref.id] = first_id
            context.placeholder(ref.id, searched_by_title=False)
        elif ref.title and ref.title.strip():
            context.title_refs.append(ref)
            context.placeholder(ref.id, searched_by_title=True)
        else:
            context.placeholder(ref.id, searched_by_title=False)

    logger.info(
        "Grouped %d references: %s by identifier, %d by title, %d duplicates",
        len(references),
        ", ".join(f"{len(v)} {t}" for t, v in context.identifier_refs.items() if v) or "none",
        len(context.title_refs),
        sum(context.deduplication.values()),
    )
    return context


def _first_identifier(ref: SeedInput) -> tuple[IdentifierType | None, str]:
    for identifier_type in IDENTIFIER_TYPES:
        raw = getattr(ref, identifier_type)
        if raw:
            value = normalize_identifier(identifier_type, raw)
            if value:
                return identifier_type, value
    return None, ""


# ── Extraction ───────────────────────────────────────────────────────


def copy_to_duplicates(context: ResolutionContext) -> None:
    """Give each duplicate input the outcome of the input it duplicates."""
    for dup_id, first_id in context.duplicate_of.items():
        first = context.results[first_id]
        context.results[dup_id] = first.model_copy(update={"id": dup_id})


def extract_results(
    context: ResolutionContext,
) -> tuple[list[ResolutionOutcome], dict[IdentifierType, int], ResolutionStatistics]:
    """Outcomes in input order, the non-zero dedup counts, and summary stats."""
    results = list(context.results.values())
    deduplication = {t: n for t, n in context.deduplication.items() if n > 0}

    found_by_identifier = sum(1 for r in results if r.found and not r.searched_by_title)
    found_by_title = sum(1 for r in results if r.found and r.searched_by_title)
    total = context.total_inputs
    stats = ResolutionStatistics(
        total_processed=total,
        found_by_identifier=found_by_identifier,
        found_by_title=found_by_title,
        not_found=sum(1 for r in results if not r.found),
        success_rate=(found_by_identifier + found_by_title) / total * 100 if total else 0.0,
        duplicates_removed=deduplication,
    )
    return results, deduplication, stats
