"""
Command-line interface for the timeline archiver.
"""

import asyncio
import os
import sys
from pathlib import Path

import click

from timeline_archiver import __version__
from timeline_archiver.commands import run_sync
from timeline_archiver.config import ArchiverConfig, ConfigLoader, load_config
from timeline_archiver.constants import EXIT_FAILURE, EXIT_INTERRUPTED
from timeline_archiver.exceptions import ConfigurationError


@click.group()
@click.version_option(version=__version__, prog_name="timeline-archiver")
@click.pass_context
def main(ctx):
    """
    Timeline Archiver - Incrementally archive media posted by accounts.

    Fetches each account's timeline newest first, downloads its photos,
    videos and animated GIFs, and keeps a per-account manifest so later
    runs only fetch what is new.
    """
    ctx.ensure_object(dict)


@main.command()
@click.option('--users', '-u',
              help='Comma-separated usernames to archive (e.g. alice,bob)')
@click.option('--list', 'list_file', type=click.Path(exists=True, dir_okay=False),
              help='File with one username per line')
@click.option('--auth', 'auth_file', type=click.Path(exists=True, dir_okay=False),
              help='JSON file holding {"bearer_token": "..."}')
@click.option('--token', 'bearer_token',
              help='API bearer token (or set TWITTER_BEARER_TOKEN)')
@click.option('--config', 'config_file', type=click.Path(exists=True, dir_okay=False),
              help='JSON configuration file')
@click.option('--out', '--output', 'output_dir', type=click.Path(file_okay=False),
              help='Archive root directory (default: ./archive)')
@click.option('--photos', is_flag=True, default=False,
              help='Archive photos')
@click.option('--videos', is_flag=True, default=False,
              help='Archive videos')
@click.option('--gifs', is_flag=True, default=False,
              help='Archive animated GIFs')
@click.option('--rescan', is_flag=True, default=False,
              help='Walk the whole timeline again instead of stopping at archived posts')
@click.option('--no-retry-failed', is_flag=True, default=False,
              help='Do not retry media that failed in earlier runs')
@click.option('--file-exists-policy', type=click.Choice(['adopt', 'overwrite']),
              help='Keep or re-download media files already on disk (default: adopt)')
@click.option('--max-posts', type=int,
              help='Maximum posts retrieved per account (at most 3200)')
@click.option('--concurrency', type=int,
              help='Concurrent downloads per account')
@click.option('--account-concurrency', type=int,
              help='Accounts synced at the same time')
@click.option('--rate', 'rate_limit', type=float,
              help='Maximum requests per second')
@click.option('--max-retries', type=int,
              help='Retry attempts for failed requests')
@click.option('--timeout', type=float,
              help='API request timeout, and media stall timeout, in seconds')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose logging output')
@click.option('--log-file', type=click.Path(dir_okay=False),
              help='Path to log file for persistent logging')
def sync(users, list_file, auth_file, bearer_token, config_file, output_dir,
         photos, videos, gifs, rescan, no_retry_failed, file_exists_policy,
         max_posts, concurrency, account_concurrency, rate_limit, max_retries,
         timeout, verbose, log_file):
    """
    Sync the archives of one or more accounts.

    Without any of --photos/--videos/--gifs every media kind is archived;
    with some of them, only those kinds are.
    """
    cli_args = {
        'bearer_token': bearer_token,
        'output_dir': output_dir,
        'rescan': rescan or None,
        'retry_failed': False if no_retry_failed else None,
        'file_exists_policy': file_exists_policy,
        'max_posts': max_posts,
        'concurrency': concurrency,
        'account_concurrency': account_concurrency,
        'rate_limit': rate_limit,
        'max_retries': max_retries,
        'timeout': timeout,
        'verbose': verbose or None,
        'log_file': log_file,
    }
    if photos or videos or gifs:
        cli_args.update({'photos': photos, 'videos': videos, 'animated_gifs': gifs})

    try:
        config = load_config(
            cli_args=cli_args,
            config_file=Path(config_file) if config_file else None,
            auth_file=Path(auth_file) if auth_file else None,
            users=users,
            list_file=Path(list_file) if list_file else None,
        )
    except ConfigurationError as e:
        click.echo(f"❌ Configuration Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)

    try:
        exit_code = asyncio.run(run_sync(config))
    except KeyboardInterrupt:
        click.echo("\n\n⚠️  Sync interrupted by user", err=True)
        sys.exit(EXIT_INTERRUPTED)

    sys.exit(exit_code)


@main.command()
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Show every environment variable checked')
def config(verbose):
    """
    Show current configuration.

    Displays configuration from environment variables and default values.
    The bearer token is masked.
    """
    click.echo(f"\n{'='*60}")
    click.echo("Timeline Archiver Configuration")
    click.echo(f"{'='*60}\n")

    try:
        env_config = ConfigLoader.load_from_env(load_dotenv_file=True)
    except ConfigurationError as e:
        click.echo(f"❌ Configuration Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)

    settings = ArchiverConfig(**env_config)

    click.echo("API Credentials:")
    if settings.bearer_token:
        click.echo(f"  Bearer token: ✅ Present (masked: {settings.masked_token()})")
    else:
        click.echo("  Bearer token: ❌ Not set")
        click.echo("    Set via: --auth file, --token flag or TWITTER_BEARER_TOKEN")

    click.echo("\nSettings:")
    for key in ConfigLoader.ENV_VAR_MAPPING.values():
        if key == 'bearer_token':
            continue
        source = "environment" if key in env_config else "default"
        click.echo(f"  {key}: {getattr(settings, key)} ({source})")

    if verbose:
        click.echo("\nEnvironment Variables Checked:")
        for env_var in sorted(ConfigLoader.ENV_VAR_MAPPING.keys()):
            value = os.getenv(env_var)
            if value and 'TOKEN' in env_var:
                value = f"{value[:4]}..." if len(value) > 8 else "***"
            click.echo(f"  {env_var}: {value or '(not set)'}")

    click.echo(f"\n{'='*60}\n")


if __name__ == '__main__':
    main()
