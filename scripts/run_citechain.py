#!/usr/bin/env python3
"""CiteChain runner: resolve seed references, then search their citations."""

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from citechain.api import MAX_SEED_REFERENCES, collect_seed_inputs
from citechain.citations import search_citations, seed_outcomes_to_citation_inputs
from citechain.core.errors import CitechainError
from citechain.core.models import CitationSearchOptions, ResolutionResponse
from citechain.core.settings import load_settings
from citechain.exporters import export_all
from citechain.resolution import resolve_seed_references_with_stats
from citechain.search.clients import ProviderClients

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("citechain")


# ── Pipeline ─────────────────────────────────────────────────────────


async def run(args: argparse.Namespace) -> dict:
    t_start = time.time()
    settings = load_settings(args.config)

    identifiers = {
        name: value
        for name, value in (
            ("doi", args.doi),
            ("pmid", args.pmid),
            ("pmcid", args.pmcid),
            ("openalex", args.openalex),
            ("mag", args.mag),
        )
        if value
    }
    seeds = collect_seed_inputs(args.files, identifiers, limit=args.limit)
    if not seeds:
        logger.error("No seed references: pass bibliography files or identifiers")
        sys.exit(1)
    logger.info("Collected %d seed references", len(seeds))

    out = Path(args.output)
    out.mkdir(parents=True, exist_ok=True)

    async with ProviderClients.from_settings(settings) as clients:
        # ── Resolve ──────────────────────────────────────────
        logger.info("=" * 60)
        logger.info("STAGE: RESOLVE")
        resolution = await resolve_seed_references_with_stats(
            seeds, clients.openalex, clients.semantic_scholar, settings.resolution
        )
        _write_json(out / "seed_references.json", resolution)
        _log_not_found(resolution)

        inputs = seed_outcomes_to_citation_inputs(resolution.results)
        if not inputs:
            logger.error("None of the seed references could be resolved")
            sys.exit(1)

        # ── Search ───────────────────────────────────────────
        logger.info("=" * 60)
        logger.info("STAGE: SEARCH CITATIONS")
        options = CitationSearchOptions(provider=args.provider, direction=args.direction)
        result = await search_citations(
            inputs, options, clients.openalex, clients.semantic_scholar, settings.citations
        )

    # ── Export ───────────────────────────────────────────────
    paths = export_all(result, str(out))
    paths["seed_references_json"] = str(out / "seed_references.json")

    elapsed = time.time() - t_start
    logger.info("=" * 60)
    logger.info("CITECHAIN COMPLETE in %.1fs", elapsed)
    logger.info("Resolution: %s", resolution.statistics.model_dump_json(indent=2))
    logger.info("Citations: %s", result.statistics.model_dump_json(indent=2))
    logger.info("Outputs: %s", json.dumps(paths, indent=2))
    return paths


def _write_json(path: Path, model: ResolutionResponse) -> None:
    path.write_text(model.model_dump_json(indent=2), encoding="utf-8")


def _log_not_found(resolution: ResolutionResponse) -> None:
    missing = [r.id for r in resolution.results if not r.found]
    if missing:
        logger.warning("%d seed references not found: %s", len(missing), ", ".join(missing[:10]))


# ── CLI ──────────────────────────────────────────────────────────────


def main():
    parser = argparse.ArgumentParser(description="Run CiteChain citation search")
    parser.add_argument("files", nargs="*", help="RIS, NBIB or EndNote XML bibliography files")
    parser.add_argument("--doi", help="Comma- or newline-separated DOIs")
    parser.add_argument("--pmid", help="Comma- or newline-separated PubMed IDs")
    parser.add_argument("--pmcid", help="Comma- or newline-separated PubMed Central IDs")
    parser.add_argument("--openalex", help="Comma- or newline-separated OpenAlex work IDs")
    parser.add_argument("--mag", help="Comma- or newline-separated MAG IDs")
    parser.add_argument(
        "--provider",
        choices=("openalex", "semantic_scholar", "both"),
        default="both",
        help="Citation providers to query (default: both)",
    )
    parser.add_argument(
        "--direction",
        choices=("backward", "forward", "both"),
        default="both",
        help="Citation direction (default: both)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=MAX_SEED_REFERENCES,
        help=f"Maximum seed references to process (default: {MAX_SEED_REFERENCES})",
    )
    parser.add_argument("--config", default=None, help="Settings YAML (default: $CITECHAIN_CONFIG)")
    parser.add_argument("--output", default="citechain_output", help="Output directory")
    args = parser.parse_args()

    try:
        asyncio.run(run(args))
    except CitechainError as exc:
        logger.error("CiteChain failed: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
