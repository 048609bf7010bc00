# scripts/discover_jobs.py
import argparse
import json
from pathlib import Path
from typing import Any, Dict, List

import yaml

from career_match.config import load_config, validate_config
from career_match.engine import PipelineOrchestrator
from career_match.log import configure_logging


def load_pages(path: Path) -> List[str]:
    """
    Career pages YAML: either a list of URLs or {"pages": [...]}.
    """
    if not path.exists():
        raise FileNotFoundError(f"Pages file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("pages") or []
    if not isinstance(data, list):
        raise ValueError(f"Pages file must be a YAML list. Got: {type(data)}")
    return [str(u).strip() for u in data if str(u).strip()]


def atomic_write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    tmp.replace(path)


def main():
    parser = argparse.ArgumentParser(
        description="Extract job-posting URLs from company career pages."
    )
    parser.add_argument("--config", default=None, help="Pipeline config YAML (defaults if omitted)")
    parser.add_argument("--pages", default="config/career_pages.yaml")
    parser.add_argument("--out", default="data/results/discovered_links.json")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()

    configure_logging(args.log_level)

    cfg = load_config(args.config) if args.config else validate_config(None)
    pages = load_pages(Path(args.pages).expanduser().resolve())

    reports: List[Dict[str, Any]] = []

    def sink(report) -> None:
        reports.append(
            {
                "source_url": report.source_url,
                "reason": report.reason.value if report.reason else None,
                "rejected": report.rejected,
                "links": [
                    {
                        "url": link.candidate_url,
                        "pattern": link.matched_pattern,
                        "confidence": link.confidence.value,
                        "title": link.title,
                        "job_id": link.job_id,
                    }
                    for link in sorted(report.links, key=lambda x: x.candidate_url)
                ],
            }
        )

    orchestrator = PipelineOrchestrator(cfg, sink=sink)
    try:
        summary = orchestrator.discover(pages)
    except KeyboardInterrupt:
        orchestrator.cancel()
        raise

    payload = {
        "summary": {
            "succeeded": summary.succeeded,
            "ambiguous": summary.ambiguous,
            "failed": summary.failed,
            "cancelled": summary.cancelled,
        },
        "failures": [
            {
                "source_url": o.source_url,
                "reason": o.failure_reason,
                "attempts": o.attempts,
                "retryable": o.retryable,
                "error": o.error,
            }
            for o in summary.outcomes
            if o.failure_reason
        ],
        "pages": sorted(reports, key=lambda r: r["source_url"]),
    }

    out_path = Path(args.out).expanduser().resolve()
    atomic_write_json(out_path, payload)
    print(f"Discovered {len(summary.links)} job links from {len(pages)} pages → {out_path}")


if __name__ == "__main__":
    main()
