"""
Scheduled trigger for the pattern analysis pipeline.

Run with: handoff-patterns-analyze [--init-db] [--patient-id ID] [--circle-id ID] [--range-days N]
"""

import argparse
import asyncio
import sys

from rich.console import Console
from rich.table import Table

from adapters.storage.sql_store import SQLAlchemyStore
from adapters.wiring import build_service
from handoff_patterns.config import AppConfig, get_config
from handoff_patterns.domain.models import AnalyzeResponse, Caller
from handoff_patterns.errors import PatternAnalysisError
from handoff_patterns.logging_setup import configure_logging

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="handoff-patterns-analyze",
        description="Surface recurring symptom patterns from published caregiver handoffs.",
    )
    parser.add_argument("--init-db", action="store_true", help="create tables before running")
    parser.add_argument("--patient-id", help="analyze a single patient")
    parser.add_argument("--circle-id", help="analyze the patients of a single circle")
    parser.add_argument(
        "--range-days", type=int, default=None, help="look-back window in days (1-365)"
    )
    return parser


def render_summary(response: AnalyzeResponse) -> Table:
    table = Table(title="Pattern Analysis")
    table.add_column("Patients analyzed", style="cyan")
    table.add_column("Patterns created", style="green")
    table.add_column("Patterns updated", style="yellow")
    table.add_column("Errors", style="red")
    table.add_row(
        str(response.patients_analyzed),
        str(response.patterns_created),
        str(response.patterns_updated),
        str(len(response.errors)),
    )
    return table


async def run_analysis(config: AppConfig, args: argparse.Namespace) -> AnalyzeResponse:
    store = SQLAlchemyStore.from_config(config.database)
    if args.init_db:
        store.init_db()

    service = build_service(config, store)

    request = {
        "patientId": args.patient_id,
        "circleId": args.circle_id,
        "rangeStartDays": (
            args.range_days if args.range_days is not None else config.detection.default_range_days
        ),
    }
    # Validation happens in the service so bad IDs surface as RequestValidationError
    return await service.run(request, Caller.scheduled())


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = get_config()
    except PatternAnalysisError as e:
        console.print(f"Configuration error: {e.message}", style="red")
        return 1

    configure_logging(config.logging)

    try:
        response = asyncio.run(run_analysis(config, args))
    except PatternAnalysisError as e:
        console.print(f"Analysis failed: {e.message}", style="red")
        return 1

    console.print(render_summary(response))
    for error in response.errors:
        console.print(f"  patient #{error.patient_index}: {error.error}", style="red")
    return 0 if not response.errors else 2


if __name__ == "__main__":
    sys.exit(main())
