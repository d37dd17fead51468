"""
Run a full investigation from the CLI.

Loads the source, aggregates it, scans for findings, confirms all of them and
deep-dives each one. Prints the segmentation summary and the explained
findings as JSON.
"""

from __future__ import annotations

import argparse
import json
import logging
import os

from agent.orchestrator import DeepDiveProgress, InvestigationContext, InvestigationOrchestrator
from app.config import get_dataset_cache_settings
from app.services.ingestion_service import get_dashboard_store, get_investigation_store
from app.services.query_dispatcher import QueryDispatcher, brand_totals
from llm_synthesis.adapter import build_adapter
from segmentation.aggregator import aggregate

logger = logging.getLogger(__name__)


def _print_progress(progress: DeepDiveProgress) -> None:
    status = "failed" if progress.failed else "done"
    logger.info(
        "Finding %d/%d %s: %s",
        progress.index + 1,
        progress.total,
        status,
        progress.finding.title,
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Scan a market source for share gaps and explain them.")
    parser.add_argument("source", help="CSV or Excel path/URL with the market data.")
    parser.add_argument("--brand", required=True, help="Brand under investigation.")
    parser.add_argument("--x-key", default="dimension1", help="Dimension key for columns.")
    parser.add_argument("--y-key", default="dimension2", help="Dimension key for segments.")
    parser.add_argument(
        "--investigation-source",
        default=None,
        help="Source queried during the deep-dive (defaults to INVESTIGATION_SOURCE, then source).",
    )
    parser.add_argument("--max-findings", type=int, default=None, help="Upper bound on scan findings.")
    parser.add_argument("--feedback", default=None, help="Optional analyst feedback for the prompts.")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").strip().upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    snapshot = get_dashboard_store().load(args.source)
    segmentation = aggregate(snapshot.records, None, args.x_key, args.y_key)

    query_source = (
        args.investigation_source
        or get_dataset_cache_settings().investigation_source
        or args.source
    )
    query_store = get_investigation_store()
    dispatcher = QueryDispatcher(lambda: query_store.load(query_source), args.brand)
    orchestrator = InvestigationOrchestrator(build_adapter(), dispatcher)

    context = InvestigationContext(
        brand=args.brand,
        x_label=snapshot.label_for(args.x_key, args.x_key),
        y_label=snapshot.label_for(args.y_key, args.y_key),
        record_count=len(snapshot.records),
        brand_totals=tuple(brand_totals(snapshot)),
        user_feedback=args.feedback,
    )
    findings = orchestrator.scan(segmentation, context, max_findings=args.max_findings)

    results = []
    if findings:
        orchestrator.confirm(findings)
        results = orchestrator.deep_dive(user_feedback=args.feedback, on_progress=_print_progress)

    payload = {
        "source": args.source,
        "brand": args.brand,
        "stage": orchestrator.stage.value,
        "segmentation": segmentation.to_dict(),
        "findings": [finding.model_dump() for finding in results or findings],
    }
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
