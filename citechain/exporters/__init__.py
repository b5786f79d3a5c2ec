"""Export convenience function."""

import logging
from pathlib import Path

from citechain.core.models import CitationSearchResult
from citechain.exporters.ris import export_ris

logger = logging.getLogger(__name__)


def export_all(result: CitationSearchResult, output_dir: str) -> dict:
    """Write RIS files per direction plus the full result as JSON.

    Returns dict of file paths created.
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    paths = {}

    for direction in ("combined", "backward", "forward"):
        ris_path = str(out / f"{direction}_citations.ris")
        export_ris(getattr(result, direction), ris_path)
        paths[f"{direction}_ris"] = ris_path

    json_path = out / "citation_results.json"
    json_path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
    paths["results_json"] = str(json_path)

    logger.info("All exports written to %s", output_dir)
    return paths
