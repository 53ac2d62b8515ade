"""
Run one trend batch over vital-sign records stored in a JSON file.

Usage: python -m vitaltrend.cli records.json --patient-id p-1 [--period-hours 24]

The file holds a list of records shaped like
{"record_id": "...", "created_at": "...", "content": {"heartRate": 72}}.
A record without patient_id belongs to --patient-id.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from vitaltrend.adapters.memory import (
    InMemoryPatientDirectory,
    InMemoryTrendStore,
    InMemoryVitalSignsRepository,
)
from vitaltrend.config import get_config
from vitaltrend.domain.errors import ValidationError
from vitaltrend.domain.models import BatchResult, PatientProfile, TrendRecord
from vitaltrend.logging_config import configure_logging
from vitaltrend.services.orchestrator import build_orchestrator
from vitaltrend.services.samples import VitalRecord

SIGNIFICANCE_STYLES = {
    "none": "green",
    "low": "cyan",
    "moderate": "yellow",
    "high": "red",
    "critical": "bold red",
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="vitaltrend", description="Analyze vital-sign trends for one patient"
    )
    parser.add_argument("records", type=Path, help="JSON file with vital-sign records")
    parser.add_argument("--patient-id", required=True)
    parser.add_argument("--workspace-id", default="default")
    parser.add_argument("--period-hours", type=float, default=None)
    parser.add_argument("--update-existing", action="store_true")
    return parser.parse_args(argv)


def load_records(path: Path, patient_id: str) -> list[VitalRecord]:
    raw = json.loads(path.read_text())
    if not isinstance(raw, list):
        raise ValueError(f"{path} must contain a list of records")

    records = []
    for index, item in enumerate(raw):
        item = {"patient_id": patient_id, **item}
        item.setdefault("record_id", item.pop("id", f"record-{index}"))
        records.append(VitalRecord.model_validate(item))
    return records


def render(console: Console, result: BatchResult, trends: list[TrendRecord]) -> None:
    table = Table(title=f"Trends for {result.patient_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Direction", style="magenta")
    table.add_column("Slope/h", justify="right")
    table.add_column("Mean", justify="right")
    table.add_column("N", justify="right")
    table.add_column("Level")
    table.add_column("Alert")

    for trend in trends:
        significance = trend.clinical_significance.value
        table.add_row(
            trend.metric_name,
            trend.trend_direction.value,
            f"{trend.trend_velocity:+.2f}",
            f"{trend.statistical_analysis.mean:.1f}",
            str(trend.data_point_count),
            f"[{SIGNIFICANCE_STYLES[significance]}]{significance}[/]",
            "yes" if trend.alert_triggered else "",
        )
    console.print(table)

    console.print(
        f"created={result.created} updated={result.updated} "
        f"failed={result.failed} skipped={len(result.skipped_metrics)} "
        f"alerts={result.alerts_emitted}"
    )
    for failure in result.failed_metrics:
        console.print(f"{failure.metric}: {failure.error}", style="red", markup=False)
    for trend in trends:
        if trend.alert_triggered:
            console.print(
                f"\n{trend.metric_name}: {trend.ai_interpretation}", style="yellow", markup=False
            )


async def run(args: argparse.Namespace, console: Console) -> int:
    config = get_config()
    configure_logging(config.logging)

    repository = InMemoryVitalSignsRepository(load_records(args.records, args.patient_id))
    patients = InMemoryPatientDirectory(
        [PatientProfile(patient_id=args.patient_id, workspace_id=args.workspace_id)]
    )
    store = InMemoryTrendStore()
    orchestrator = build_orchestrator(config, repository, patients, store)

    period_hours = args.period_hours
    if period_hours is None:
        period_hours = config.trends.default_period_hours
    try:
        result = await orchestrator.process(
            args.patient_id, period_hours=period_hours, update_existing=args.update_existing
        )
    except ValidationError as e:
        console.print(f"Invalid request: {e}", style="red", markup=False)
        return 2

    trends = await orchestrator.reconciler.list_trends(
        args.patient_id, limit=len(orchestrator.metrics)
    )
    render(console, result, trends)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    console = Console()
    try:
        return asyncio.run(run(args, console))
    except (OSError, ValueError) as e:
        console.print(f"Could not load records: {e}", style="red", markup=False)
        return 1


if __name__ == "__main__":
    sys.exit(main())
