"""CLI interface for the medication engine.

Operates on a JSON state snapshot as written by ``MedicationStore.snapshot()``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from .config import Config
from .engine import MedicationEngine
from .logging import setup_logging
from .migration import MigrationOptions
from .store import MedicationStore
from .templates import PROTOCOL_TEMPLATES

_STATE_OPTION = click.option(
    "--state",
    "state_path",
    envvar="MEDS_STATE_PATH",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON state snapshot (defaults to $MEDS_STATE_PATH).",
)
_CYCLE_OPTION = click.option("--cycle", "cycle_id", required=True, help="Treatment cycle id.")


def _load_engine(state_path: Path, config: Config) -> MedicationEngine:
    with state_path.open() as f:
        data = json.load(f)
    return MedicationEngine(MedicationStore.from_snapshot(data), config=config)


def _save_engine(engine: MedicationEngine, state_path: Path) -> None:
    with state_path.open("w") as f:
        json.dump(engine.store.snapshot(), f, indent=2, ensure_ascii=False)


@click.group()
@click.pass_context
def main(ctx: click.Context):
    """Medication schedule and daily adherence tools."""
    try:
        config = Config.from_env()
    except RuntimeError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    setup_logging(config.log_format, config.log_level)
    ctx.obj = config


@main.command()
@_STATE_OPTION
@_CYCLE_OPTION
@click.option("--day", type=click.IntRange(min=1), required=True, help="1-based cycle day.")
@click.pass_obj
def day(config: Config, state_path: Path, cycle_id: str, day: int):
    """Show the unified medication list for one cycle day."""
    engine = _load_engine(state_path, config)
    view = engine.get_medications_for_day(cycle_id, day)
    header = f"Day {view.day}" + (f" ({view.date.isoformat()})" if view.date else "")
    click.echo(f"{header}: {view.completed_count}/{view.total_count} done")
    for entry in view.entries:
        mark = "x" if entry.taken else ("-" if entry.skipped else " ")
        dosage = entry.actual_dosage or entry.dosage
        fridge = " [fridge]" if entry.refrigerated else ""
        click.echo(f"  [{mark}] {entry.time}  {entry.name} {dosage}{fridge} ({entry.origin})")


@main.command()
@_STATE_OPTION
@_CYCLE_OPTION
@click.pass_obj
def overview(config: Config, state_path: Path, cycle_id: str):
    """Summarize adherence across the cycle's logged days."""
    engine = _load_engine(state_path, config)
    result = engine.get_schedule_overview(cycle_id)
    if result is None:
        click.echo(f"No medication data for cycle {cycle_id}.")
        return
    click.echo(
        f"Cycle {cycle_id}: {result.completed_medications}/{result.total_medications} "
        f"({result.completion_rate * 100:.0f}%)"
    )
    for item in result.daily_breakdown:
        date = f" {item.date.isoformat()}" if item.date else ""
        click.echo(f"  Day {item.day}{date}: {item.completed}/{item.total}")


@main.command()
@_STATE_OPTION
@_CYCLE_OPTION
@click.option("--day", type=click.IntRange(min=1), help="Only reconcile this day.")
@click.pass_obj
def reconcile(config: Config, state_path: Path, cycle_id: str, day: int | None):
    """Merge duplicate daily adherence records and save the state."""
    engine = _load_engine(state_path, config)
    discarded = engine.reconcile(cycle_id, day)
    _save_engine(engine, state_path)
    click.echo(f"Merged away {discarded} duplicate record(s).")


@main.command()
@_STATE_OPTION
@_CYCLE_OPTION
@click.option("--skip-incomplete/--keep-incomplete", default=None, help="Drop entries missing name or dosage.")
@click.option("--dry-run", is_flag=True, help="Report what would be migrated without saving.")
@click.pass_obj
def migrate(config: Config, state_path: Path, cycle_id: str, skip_incomplete: bool | None, dry_run: bool):
    """Migrate a cycle's legacy medication data into the unified model."""
    engine = _load_engine(state_path, config)
    overrides: dict[str, bool] = {"dry_run": dry_run, "log_progress": True}
    if skip_incomplete is not None:
        overrides["skip_incomplete_data"] = skip_incomplete
    outcome = engine.migrate(cycle_id, MigrationOptions.from_config(config, **overrides))

    click.echo(outcome.message)
    if outcome.data is not None:
        click.echo(
            f"  migrated={outcome.data.summary.total_migrated} "
            f"skipped={outcome.data.skipped_count} errors={outcome.data.error_count}"
        )
    if outcome.validation is not None:
        for warning in outcome.validation.warnings:
            click.echo(f"  warning: {warning}")
        for error in outcome.validation.errors:
            click.echo(f"  error: {error}", err=True)

    if not outcome.success:
        sys.exit(1)
    if not dry_run and not outcome.already_migrated:
        _save_engine(engine, state_path)


@main.command()
@_STATE_OPTION
@_CYCLE_OPTION
@click.option("--day", type=click.IntRange(min=1), required=True, help="1-based cycle day.")
@click.pass_obj
def migrated(config: Config, state_path: Path, cycle_id: str, day: int):
    """Show the migrated medication rows for one cycle day."""
    engine = _load_engine(state_path, config)
    rows = engine.migrated_medications_for_day(cycle_id, day)
    if not rows:
        click.echo(f"No migrated medications for cycle {cycle_id} day {day}.")
        return
    rate = engine.migrated_completion_rate(cycle_id, day)
    click.echo(f"Day {day}: {len(rows)} medication(s), {rate * 100:.0f}% done")
    for med in rows:
        mark = "x" if med.taken else ("-" if med.skipped else " ")
        click.echo(f"  [{mark}] {med.time}  {med.name} {med.dosage} ({med.type})")


@main.command("list-templates")
def list_templates():
    """List the built-in protocol templates."""
    for name, entries in PROTOCOL_TEMPLATES.items():
        click.echo(f"{name}:")
        for entry in entries:
            click.echo(f"  {entry.name} {entry.dosage} at {entry.time}, days {entry.start_day}-{entry.end_day}")
        click.echo()
