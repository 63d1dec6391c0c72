"""
Command implementations for the timeline archiver.

This module provides the main command execution logic.
"""

import logging

import click

from .config import ArchiverConfig
from .constants import EXIT_FAILURE
from .exceptions import ArchiverError
from .logger import setup_logging
from .orchestrator import SyncOrchestrator, SyncReport

logger = logging.getLogger(__name__)


def print_banner(config: ArchiverConfig) -> None:
    """
    Print a banner with configuration information.

    Args:
        config: Archiver configuration
    """
    kinds = ", ".join(sorted(kind.value for kind in config.enabled_kinds))

    click.echo()
    click.echo("=" * 70)
    click.echo("  Timeline Archiver")
    click.echo("=" * 70)
    click.echo(f"  Accounts:       {', '.join(config.accounts)}")
    click.echo(f"  Output:         {config.output_dir}")
    click.echo(f"  Media kinds:    {kinds}")
    click.echo(f"  Mode:           {'full rescan' if config.rescan else 'incremental'}")
    click.echo(f"  Retry failed:   {'yes' if config.retry_failed else 'no'}")
    click.echo(f"  Existing files: {config.file_exists_policy}")
    click.echo(f"  Max posts:      {config.ceiling}")
    click.echo(f"  Concurrency:    {config.concurrency} workers, "
               f"{config.account_concurrency} accounts")
    click.echo(f"  Rate limit:     {config.rate_limit} req/s")
    click.echo(f"  Max retries:    {config.max_retries}")
    click.echo("=" * 70)
    click.echo()


def print_report(report: SyncReport) -> None:
    """
    Print the per-account outcome of a sync run.

    Args:
        report: Sync report
    """
    click.echo()
    click.echo("=" * 70)
    click.echo("  Sync Summary")
    click.echo("=" * 70)
    for result in report.results:
        click.echo(f"  {result}")
    click.echo()
    click.echo(f"  Succeeded:      {len(report.succeeded)}")
    click.echo(f"  Partial:        {len(report.partial)}")
    click.echo(f"  Failed:         {len(report.failed)}")
    click.echo(f"  Duration:       {report.duration_seconds:.2f}s")
    click.echo("=" * 70)

    click.echo()
    if report.failed:
        click.echo(f"✗ {len(report.failed)} account(s) failed. Check the logs for details.")
    elif report.partial:
        media_failed = sum(r.media_failed for r in report.partial)
        click.echo(f"⚠ Sync completed with {media_failed} failed media download(s).")
        click.echo("  They are retried on the next run.")
    else:
        click.echo("✓ Sync completed successfully!")


async def run_sync(config: ArchiverConfig) -> int:
    """
    Run the sync operation.

    Sets up logging, runs the orchestrator over every configured account
    and prints the report.

    Args:
        config: Archiver configuration

    Returns:
        Exit code: 0 success, 2 partial, 3 some accounts failed,
        1 nothing archived or a fatal error
    """
    setup_logging(verbose=config.verbose, log_file=config.log_file)

    print_banner(config)

    orchestrator = SyncOrchestrator(config)

    try:
        report = await orchestrator.run()
    except ArchiverError as e:
        logger.error(f"Sync aborted: {e}", exc_info=config.verbose)
        click.echo()
        click.echo(f"Error: Sync aborted: {e}", err=True)
        click.echo("The previous manifest of the failing account was kept.", err=True)
        return EXIT_FAILURE

    print_report(report)
    return report.exit_code
