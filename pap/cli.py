"""Operator commands for the analysis platform."""

import json
import os
from pathlib import Path

import click

from pap.core.config import settings
from pap.core.errors import LedgerBusy
from pap.core.logging import configure_logging
from pap.intake.hashing import is_valid_hash
from pap.intake.models import Malformed
from pap.pipeline import get_platform


@click.group()
def cli():
    """Program analysis platform management commands."""
    configure_logging(
        testing=os.getenv("TESTING") == "true",
        level=settings.LOG_LEVEL,
        json_logs=settings.JSON_LOGS,
    )


@cli.command()
@click.option(
    "--drain",
    is_flag=True,
    help="Process the queue in the foreground until it is empty, then exit",
)
def worker(drain):
    """Recover interrupted jobs and run the dispatcher."""
    platform = get_platform()
    stats = platform.ledger.recover()
    click.echo(
        f"Recovered: {stats['interrupted']} interrupted, "
        f"{stats['requeued']} requeued, {stats['dropped']} dropped"
    )

    if drain:
        processed = platform.dispatcher.drain()
        click.echo(f"Processed {processed} attempts")
        return

    click.echo(f"Dispatching with {platform.dispatcher.slots} slots (Ctrl+C to stop)")
    try:
        platform.dispatcher.run_forever()
    except KeyboardInterrupt:
        platform.dispatcher.stop()


@cli.command()
def stats():
    """Show record counts and queue depth."""
    platform = get_platform()
    statistics = platform.store.get_statistics()

    click.echo("Submission Store Status:")
    click.echo(f"  Total submissions: {statistics['total_submissions']}")
    for state, count in statistics["by_state"].items():
        click.echo(f"  {state}: {count}")
    click.echo(f"  Queue depth: {len(platform.queue)}")
    click.echo(f"  Package size: {statistics['package_bytes'] / 1024:.1f} KiB")


@cli.command()
@click.argument("content_hash")
def inspect(content_hash):
    """Inspect a submission by package hash."""
    if not is_valid_hash(content_hash):
        raise click.BadParameter(
            "expected 64 lowercase hex characters", param_hint="CONTENT_HASH"
        )

    platform = get_platform()
    record = platform.store.get(content_hash)
    if record is None:
        click.echo(f"Package hash {content_hash} not found")
        raise SystemExit(1)

    click.echo(f"Package Hash: {content_hash}")
    click.echo(f"  State: {record.state.value}")
    click.echo(f"  Attempts: {record.attempts}/{platform.store.max_attempts}")
    click.echo(f"  Created: {record.created_at.isoformat()}")
    if record.updated_at:
        click.echo(f"  Updated: {record.updated_at.isoformat()}")
    if record.error:
        click.echo(f"  Error: {record.error}")

    view = platform.resolver.status(content_hash)
    click.echo("\nStatus:")
    click.echo(json.dumps(view.to_response(), indent=2))


@cli.command()
def recover():
    """Repair records and queue entries left by a stopped process."""
    platform = get_platform()
    try:
        stats = platform.ledger.recover()
    except LedgerBusy as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Interrupted jobs requeued: {stats['interrupted']}")
    click.echo(f"Queue entries restored: {stats['requeued']}")
    click.echo(f"Stray queue entries dropped: {stats['dropped']}")


@cli.command()
@click.argument("archive", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def submit(archive):
    """Submit a package archive from disk."""
    platform = get_platform()
    outcome = platform.gate.admit(archive.read_bytes())

    if isinstance(outcome, Malformed):
        click.echo(f"Rejected: {outcome.reason}")
        raise SystemExit(2)

    click.echo(f"{outcome.status}: {outcome.hash}")


if __name__ == "__main__":
    cli()
