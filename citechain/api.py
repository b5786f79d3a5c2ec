"""Request handlers for seed reference resolution and citation search.

Handlers take a decoded JSON payload plus the process-wide
``ProviderClients`` and return ``(status_code, body)``; any web framework
can sit in front of them.
"""

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from citechain.citations import search_citations
from citechain.core.errors import CitechainError, status_code_for
from citechain.core.identifiers import IDENTIFIER_TYPES, parse_identifiers
from citechain.core.models import CitationInput, CitationSearchOptions, SeedInput, new_id
from citechain.parsers.bibliography import parse_bibliography, records_to_seed_inputs
from citechain.resolution import resolve_seed_references

logger = logging.getLogger(__name__)

MAX_SEED_REFERENCES = 100


class ResolutionRequest(BaseModel):
    references: list[SeedInput]


class CitationSearchRequest(BaseModel):
    inputs: list[CitationInput]
    options: CitationSearchOptions


# ── Handlers ─────────────────────────────────────────────────────────


async def validate_seed_references(payload, clients) -> tuple[int, dict]:
    """POST body ``{references: [...]}`` → ``{results, deduplication}``."""
    try:
        request = ResolutionRequest.model_validate(payload)
        response = await resolve_seed_references(
            request.references,
            clients.openalex,
            clients.semantic_scholar,
            clients.settings.resolution,
        )
        return 200, response.model_dump(exclude={"statistics"})
    except ValidationError as exc:
        logger.warning("Invalid seed reference request: %d errors", exc.error_count())
        return 400, {"error": "Invalid request body", "details": _details(exc)}
    except CitechainError as exc:
        logger.error("Seed reference validation failed: %s", exc)
        return status_code_for(exc.code), {"error": exc.message, "code": exc.code.value}
    except Exception:
        logger.exception("Error in validate-seed-references handler")
        return 500, {"error": "Internal server error"}


async def search_citations_request(payload, clients) -> tuple[int, dict]:
    """POST body ``{inputs, options}`` → CitationSearchResult.

    Inputs without any identifier are dropped; if none remain the request
    is rejected with 400.
    """
    try:
        request = CitationSearchRequest.model_validate(payload)
        valid_inputs = [i for i in request.inputs if i.has_identifier()]
        if not valid_inputs:
            return 400, {
                "error": (
                    "No valid inputs provided. Each input must have at least one identifier "
                    "(openalex_id, s2_id, doi, pmid, or title)."
                )
            }

        logger.info(
            "Starting citation search for %d papers (provider=%s, direction=%s)",
            len(valid_inputs),
            request.options.provider,
            request.options.direction,
        )
        result = await search_citations(
            valid_inputs,
            request.options,
            clients.openalex,
            clients.semantic_scholar,
            clients.settings.citations,
        )
        return 200, result.model_dump()
    except ValidationError as exc:
        logger.warning("Invalid citation search request: %d errors", exc.error_count())
        return 400, {"error": "Invalid request data", "details": _details(exc)}
    except CitechainError as exc:
        logger.error("Citation search failed: %s", exc)
        return status_code_for(exc.code), {"error": exc.message, "code": exc.code.value}
    except Exception:
        logger.exception("Error in search-citations handler")
        return 500, {"error": "Internal server error"}


def _details(exc: ValidationError) -> list[dict]:
    return [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]


# ── Seed Collection ──────────────────────────────────────────────────


def collect_seed_inputs(
    files: Optional[list[str | Path]] = None,
    identifiers: Optional[dict[str, str]] = None,
    limit: int = MAX_SEED_REFERENCES,
) -> list[SeedInput]:
    """Gather seed references from bibliography files and identifier lists.

    ``identifiers`` maps an identifier type (doi, pmid, pmcid, openalex,
    mag) to a comma- or newline-separated string. Files that fail to
    parse are logged and skipped. Only the first ``limit`` references are
    kept.
    """
    seeds: list[SeedInput] = []

    for path in files or []:
        try:
            records = parse_bibliography(path)
        except (OSError, ValueError) as exc:
            logger.error("Error processing %s: %s", path, exc)
            continue
        seeds.extend(records_to_seed_inputs(records))

    for identifier_type, value in (identifiers or {}).items():
        if identifier_type not in IDENTIFIER_TYPES:
            raise ValueError(f"Unknown identifier type: {identifier_type!r}")
        for identifier in parse_identifiers(value):
            seeds.append(SeedInput(id=new_id(), **{identifier_type: identifier}))

    if len(seeds) > limit:
        logger.warning(
            "Only the first %d references will be processed as seed references. "
            "%d references were found.",
            limit,
            len(seeds),
        )
    return seeds[:limit]
