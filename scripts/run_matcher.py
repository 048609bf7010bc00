# scripts/run_matcher.py
import argparse
import csv
import json
from pathlib import Path
from typing import Any, Dict, List

from career_match.config import load_config, validate_config
from career_match.engine import PipelineOrchestrator
from career_match.log import configure_logging
from career_match.scoring import explain, skill_counts


def _load_json(path: Path) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"JSON file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def _write_results(results: List[Dict[str, Any]], out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)

    out_json = out_dir / "results.json"
    out_csv = out_dir / "results.csv"

    out_json.write_text(json.dumps(results, indent=2), encoding="utf-8")

    fieldnames = [
        "score_percent",
        "job_id",
        "flagged",
        "matched_skills",
        "unmatched_required",
    ]

    with out_csv.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for r in results:
            row = dict(r)
            row["matched_skills"] = ", ".join(r.get("matched_skills", []))
            row["unmatched_required"] = ", ".join(r.get("unmatched_required", []))
            writer.writerow({k: row.get(k, "") for k in fieldnames})

    print(f"Wrote {len(results)} matches → {out_json}")
    print(f"Wrote CSV → {out_csv}")


def main():
    parser = argparse.ArgumentParser(description="Rank jobs for a candidate by skill overlap.")
    parser.add_argument("--config", default=None)
    parser.add_argument("--candidate", required=True, help='JSON: {"user_id": ..., "skills": [...]}')
    parser.add_argument("--jobs", required=True, help='JSON list: [{"id": ..., "skills": [...]}, ...]')
    parser.add_argument("--out", default="data/results")
    parser.add_argument("--top-n", type=int, default=None)
    parser.add_argument("--min-score", type=float, default=0.0)
    parser.add_argument(
        "--weight-by-rarity",
        action="store_true",
        help="Weight skills by 1/count across the jobs file (ignored when the config sets skill_frequency_table)",
    )
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()

    configure_logging(args.log_level)

    cfg = load_config(args.config) if args.config else validate_config(None)
    candidate = _load_json(Path(args.candidate).expanduser())
    jobs = _load_json(Path(args.jobs).expanduser())
    if not isinstance(jobs, list):
        raise ValueError(f"Jobs file must be a JSON list. Got: {type(jobs)}")

    orchestrator = PipelineOrchestrator(cfg)
    if args.weight_by_rarity and orchestrator.frequency_table is None:
        norm = orchestrator.normalizer
        counts = skill_counts(norm.normalize(j.get("skills")) for j in jobs if isinstance(j, dict))
        orchestrator.swap_frequency_table(counts)

    batch = orchestrator.match(candidate, jobs, min_score=args.min_score, top_n=args.top_n)

    results = [
        {
            "job_id": r.job_id,
            "score_percent": round(r.score * 100.0, 2),
            "flagged": r.flag_reason or "",
            "matched_skills": sorted(r.matched_skills),
            "unmatched_required": sorted(r.unmatched_required),
            "reasons": explain(r, orchestrator.normalizer),
        }
        for r in batch.results
    ]
    _write_results(results, Path(args.out).expanduser().resolve())

    if batch.failures:
        print(f"Skipped {len(batch.failures)} job(s) that could not be scored")
    if batch.malformed_skills:
        print(f"Dropped {batch.malformed_skills} malformed skill entries")


if __name__ == "__main__":
    main()
