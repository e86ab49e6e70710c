import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence

from dotenv import load_dotenv

from civichub.evaluation.evaluator import load_items
from civichub.evaluation.schemas import GoldenSetRun
from civichub.services import build_services

logger = logging.getLogger(__name__)


def _echo(message: str) -> None:
    sys.stdout.write(f"{message}\n")


def _print_run(run: GoldenSetRun) -> None:
    _echo("=" * 80)
    _echo(f"Golden set run {run.run_id} ({run.total} items)")
    _echo(
        f"overall={run.overall_accuracy:.3f} (>= {run.thresholds.overall:.2f})  "
        f"intent={run.intent_accuracy:.3f} (>= {run.thresholds.intent:.2f})  "
        f"keyword={run.keyword_accuracy:.3f} (>= {run.thresholds.keyword:.2f})"
    )
    _echo("=" * 80)
    for result in run.results:
        flag = "ok" if result.score >= run.thresholds.overall else "!!"
        _echo(
            f"[{flag}] {result.id}  intent={result.predicted_intent}"
            f" (expected {result.expected_intent or '-'})  score={result.score:.2f}"
            f"  {result.latency_ms:.0f}ms"
        )
    _echo("-" * 80)
    if run.status.regression_detected:
        _echo(f"Regression detected (delta >= {run.thresholds.regression_delta:.2f})")
    _echo("PASSED" if run.status.passed else "FAILED")


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Replay the golden set through the pipeline")
    parser.add_argument("--items", type=str, default=None, help="Path to a golden-set JSON file")
    parser.add_argument("--village-id", default=None, help="Tenant used for items without one")
    parser.add_argument("--json", action="store_true", help="Print the run as JSON")
    args = parser.parse_args(argv)

    services = build_services()
    try:
        items = load_items(args.items) if args.items else None
        run = asyncio.run(services.golden_set.run(items, village_id=args.village_id))
    except FileNotFoundError as exc:
        parser.error(f"golden set not found: {exc.filename}")
    finally:
        services.shutdown()

    if args.json:
        _echo(json.dumps(run.model_dump(mode="json"), ensure_ascii=False, indent=2))
    else:
        _print_run(run)
    return 0 if run.status.passed and not run.status.regression_detected else 1


if __name__ == "__main__":
    sys.exit(main())
