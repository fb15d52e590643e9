"""CLI entry point for rule-curation."""

import argparse
import csv
import io
import json
import logging
import sys
from pathlib import Path

import yaml

from .config import load_config
from .errors import CapacityError, ConfigError, ValidationError
from .logging_config import LOG_LEVELS, setup_logging
from .models import ClassificationCategory, ProgressEvent
from .service import RuleEvaluationService
from .store import ConfigStore

logger = logging.getLogger(__name__)

CSV_FIELDS = ["id", "category", "quality_score", "quality_level", "duplicate_type", "similarity", "target_path"]


def main(argv: list[str] | None = None) -> None:
    """Score, de-duplicate and classify candidate SQL analysis rules."""
    parser = argparse.ArgumentParser(
        prog="rule-curation",
        description="Score, de-duplicate and classify candidate SQL analysis rules.",
    )
    parser.add_argument("rules_file", nargs="?", default=None, help="YAML or JSON file with a list of candidate rules.")
    parser.add_argument("--corpus", dest="corpus_path", default=None, help="YAML or JSON file with the accepted rule corpus.")
    parser.add_argument("--config", dest="config_path", default=None, help="Path to a YAML evaluation config.")
    parser.add_argument("--format", dest="output_format", choices=["json", "csv"], default="json", help="Output format (default: json).")
    parser.add_argument("--output", dest="output_path", default=None, help="Write results to file instead of stdout.")
    parser.add_argument("--stats", dest="show_stats", action="store_true", default=False, help="Print summary statistics to stderr.")
    parser.add_argument("--concurrency", type=int, default=None, help="Number of rules evaluated in parallel.")
    parser.add_argument(
        "--category",
        choices=[c.value for c in ClassificationCategory],
        default=None,
        help="Only output rules classified into this category.",
    )
    parser.add_argument("--verbose", action="store_true", default=False, help="Include dimension scores, issues and matches in output.")
    parser.add_argument("--log-level", choices=LOG_LEVELS, default="WARNING", help="Log level for stderr (default: WARNING).")

    args = parser.parse_args(argv)

    if args.rules_file is None:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level, verbose=args.verbose)
    _cmd_evaluate(args)


def _cmd_evaluate(args: argparse.Namespace) -> None:
    """Execute evaluation."""
    if args.config_path:
        if not Path(args.config_path).is_file():
            print(f"Error: Config file not found: {args.config_path}", file=sys.stderr)
            sys.exit(2)
        try:
            store = ConfigStore(load_config(args.config_path))
        except (ConfigError, yaml.YAMLError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(3)
    else:
        store = ConfigStore()

    for path in (args.rules_file, args.corpus_path):
        if path is not None and not Path(path).is_file():
            print(f"Error: File not found: {path}", file=sys.stderr)
            sys.exit(2)

    rules = _load_rules(args.rules_file)
    if not rules:
        print(f"Error: No rules found in {args.rules_file}", file=sys.stderr)
        sys.exit(1)
    corpus = _load_rules(args.corpus_path) if args.corpus_path else []

    try:
        service = RuleEvaluationService(config_store=store, corpus=corpus)
    except ValidationError as exc:
        print(f"Error: Invalid corpus rule: {exc}", file=sys.stderr)
        sys.exit(1)

    try:
        batch = service.evaluate_batch(rules, concurrency=args.concurrency, on_progress=_log_progress)
    except (CapacityError, ConfigError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    results = list(batch.results)
    if args.category is not None:
        results = [r for r in results if r.classification.category.value == args.category]

    if args.output_format == "json":
        output_text = _format_json(results, args.verbose)
    else:
        output_text = _format_csv(results, args.verbose)

    if args.output_path:
        with open(args.output_path, "w", encoding="utf-8") as f:
            f.write(output_text)
    else:
        print(output_text)

    if args.show_stats:
        _print_stats(batch.summary)


def _load_rules(path: str) -> list:
    """Read a list of rule documents from YAML or JSON (JSON parses as YAML)."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        print(f"Error: Could not parse {path}: {exc}", file=sys.stderr)
        sys.exit(1)
    if data is None:
        return []
    if isinstance(data, dict) and "rules" in data:
        data = data["rules"]
    if not isinstance(data, list):
        print(f"Error: {path} must contain a list of rules", file=sys.stderr)
        sys.exit(1)
    return data


def _log_progress(event: ProgressEvent) -> None:
    logger.debug("[%d/%d] %s -> %s", event.processed, event.total, event.rule_id, event.category.value)


def _record(result, verbose: bool) -> dict:
    record = {
        "id": result.rule_id,
        "category": result.classification.category.value,
        "quality_score": result.quality.quality_score,
        "quality_level": result.quality.quality_level.value,
        "duplicate_type": result.duplicate.duplicate_type.value,
        "similarity": result.duplicate.similarity,
        "target_path": result.classification.target_path,
    }
    if verbose:
        record["reason"] = result.classification.reason
        record["decision_path"] = list(result.classification.decision_path)
        record["dimension_scores"] = result.quality.dimension_scores.as_dict()
        record["issues"] = list(result.quality.issues)
        record["suggestions"] = list(result.quality.suggestions)
        record["matched_rules"] = [
            {"id": m.id, "similarity": m.similarity, "signals": dict(m.signals)}
            for m in result.duplicate.matched_rules
        ]
        record["errors"] = [
            {"phase": e.phase, "type": e.error_type, "message": e.message}
            for e in result.errors
        ]
    return record


def _format_json(results, verbose: bool) -> str:
    """Format results as JSON."""
    return json.dumps([_record(r, verbose) for r in results], indent=2)


def _format_csv(results, verbose: bool) -> str:
    """Format results as CSV."""
    buf = io.StringIO()
    fieldnames = CSV_FIELDS + ["issues"] if verbose else CSV_FIELDS
    writer = csv.DictWriter(buf, fieldnames=fieldnames)
    writer.writeheader()
    for r in results:
        row = {k: v for k, v in _record(r, False).items() if k in fieldnames}
        if verbose:
            row["issues"] = json.dumps(list(r.quality.issues))
        writer.writerow(row)
    return buf.getvalue()


def _print_stats(summary) -> None:
    """Print summary statistics to stderr."""
    print("\n=== Evaluation Summary ===", file=sys.stderr)
    print(
        f"Rules evaluated: {summary.total_rules:,}  |  Processed: {summary.processed_rules:,}  "
        f"|  Failed: {summary.failed_rules:,}",
        file=sys.stderr,
    )
    print("", file=sys.stderr)
    print("Quality:", file=sys.stderr)
    print(
        f"  Mean: {summary.average_quality_score}  |  Min: {summary.min_quality_score}  "
        f"|  Max: {summary.max_quality_score}",
        file=sys.stderr,
    )
    levels = summary.quality_level_counts
    print(
        "  Levels:  " + "  |  ".join(f"{name}: {count}" for name, count in levels.items()),
        file=sys.stderr,
    )
    print("", file=sys.stderr)
    print("Classification:", file=sys.stderr)
    print(
        "  " + "  |  ".join(f"{name}: {count}" for name, count in summary.category_counts.items()),
        file=sys.stderr,
    )
    print(f"  Duplicates found: {summary.duplicates_found}", file=sys.stderr)
    print("", file=sys.stderr)
    print(
        f"Time: {summary.processing_time_ms:.0f} ms total  |  {summary.average_processing_time_ms:.1f} ms per rule"
        + ("  (timed out)" if summary.timed_out else ""),
        file=sys.stderr,
    )
