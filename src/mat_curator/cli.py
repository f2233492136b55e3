"""
Command-line interface for mat-curator.

This module provides the CLI used by operators and scheduled triggers: run one
curation pass, inspect knowledge-base and rotation status, show the active
configuration and maintain the instructor credibility registry.
"""

import sys
import logging
import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.logging import RichHandler

from .config import Configuration, init_config
from .models import CurationRunResult, EvaluationMode
from .knowledge_base import KnowledgeBase
from .rotation import RotationScheduler
from .workflow import run_curation


console = Console()


def setup_cli_logging(log_level: str, log_file: Optional[Path] = None, verbose: bool = False):
    """
    Set up logging for CLI with rich formatting and optional file output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        verbose: Enable verbose console output
    """
    logging.getLogger().handlers.clear()

    console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=verbose,
        markup=False,
        rich_tracebacks=True
    )
    console_handler.setLevel(logging.DEBUG if verbose else getattr(logging, log_level))

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[console_handler]
    )

    # Library chatter stays at WARNING unless debugging
    for noisy in ('googleapiclient', 'httpx', 'openai', 'httpcore'):
        logging.getLogger(noisy).setLevel(logging.DEBUG if verbose else logging.WARNING)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        logging.getLogger().addHandler(file_handler)


def display_config_table(config: Configuration):
    """Display configuration in a formatted table."""
    table = Table(title="Mat Curator Configuration")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")
    table.add_column("Description", style="green")

    descriptions = {
        'openai_model': 'Model used for candidate evaluation',
        'target_batch_size': 'Targets curated per run',
        'quality_threshold': 'Minimum score for approval (0-100)',
        'dimension_floor': 'Minimum per-dimension score in strict mode',
        'min_duration_seconds': 'Shortest acceptable video',
        'max_duration_seconds': 'Longest acceptable video',
        'evaluation_mode': 'simple or strict evaluation',
        'search_max_results': 'Results requested per search query',
        'daily_quota_limit': 'Daily YouTube API quota (units)',
        'database_path': 'SQLite knowledge base',
        'log_level': 'Logging level',
        'log_file': 'Log file path',
        'debug': 'Debug mode enabled',
    }

    for key, value in config.to_dict().items():
        if key in ['youtube_api_key', 'openai_api_key']:
            continue
        table.add_row(key, str(value), descriptions.get(key, ''))

    console.print(table)


def display_run_result(result: CurationRunResult):
    """Display a curation run summary."""
    if not result.success:
        console.print(Panel.fit(f"Curation run failed: {result.error}", style="bold red"))
    elif result.quota_exhausted:
        console.print(Panel.fit("Curation halted: YouTube API quota exhausted", style="bold yellow"))
    else:
        console.print(Panel.fit("Curation run complete", style="bold green"))

    if result.per_target_stats:
        table = Table(title=f"Rotation cycle {result.rotation_cycle}")
        table.add_column("Target", style="cyan")
        table.add_column("Searches", justify="right")
        table.add_column("Found", justify="right")
        table.add_column("Analyzed", justify="right")
        table.add_column("Added", justify="right", style="green")
        table.add_column("Dup", justify="right")
        table.add_column("Short", justify="right")
        table.add_column("Rejected", justify="right")
        table.add_column("Videos", justify="right")

        for stats in result.per_target_stats:
            table.add_row(
                stats.target,
                str(stats.searches_run),
                str(stats.videos_found),
                str(stats.videos_analyzed),
                str(stats.videos_added),
                str(stats.skipped_duplicate),
                str(stats.skipped_short),
                str(stats.skipped_non_instructional + stats.skipped_low_quality),
                f"{stats.before_count} -> {stats.after_count}",
            )
        console.print(table)

    console.print(
        f"Targets curated: {result.targets_curated} | Videos added: {result.total_videos_added} | "
        f"Duration: {result.duration_minutes} min"
    )


def init_config_if_needed(ctx) -> Configuration:
    """Initialize configuration once per invocation, exiting on failure."""
    if 'config' in ctx.obj:
        return ctx.obj['config']

    config_file = ctx.obj.get('config_file')
    debug = ctx.obj.get('debug', False)
    verbose = ctx.obj.get('verbose', False)
    log_file = ctx.obj.get('log_file')

    try:
        config = init_config(config_file)

        if debug:
            config.debug = True
            config.log_level = 'DEBUG'

        setup_cli_logging(config.log_level, log_file or config.log_file, verbose)

        ctx.obj['config'] = config

        if verbose:
            console.print("[green]✓[/green] Configuration loaded successfully")
            if config_file:
                console.print(f"[blue]ℹ[/blue] Using config file: {config_file}")

        return config

    except Exception as e:
        console.print(f"[red]✗[/red] Configuration error: {str(e)}")
        if debug:
            console.print_exception()
        console.print("\n[blue]ℹ[/blue] Set YOUTUBE_API_KEY and OPENAI_API_KEY in the environment or a .env file")
        sys.exit(1)


@click.group()
@click.option('--config-file', '-c', type=click.Path(exists=True, path_type=Path),
              help='Path to configuration file (.env format)')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.option('--log-file', type=click.Path(path_type=Path),
              help='Path to log file (overrides config)')
@click.pass_context
def main(ctx, config_file: Optional[Path], verbose: bool, debug: bool, log_file: Optional[Path]):
    """
    Mat Curator - rotating curation of BJJ instructional videos.

    Searches YouTube for each instructor in the rotation, filters and scores
    candidates with an AI evaluator, and adds approved videos to the
    knowledge base.
    """
    ctx.ensure_object(dict)

    ctx.obj['verbose'] = verbose
    ctx.obj['debug'] = debug
    ctx.obj['config_file'] = config_file
    ctx.obj['log_file'] = log_file


@main.command()
@click.option('--batch-size', type=click.IntRange(min=1), help='Number of targets to curate')
@click.option('--quality-threshold', type=click.FloatRange(0, 100), help='Approval threshold (0-100)')
@click.option('--min-duration', type=click.IntRange(min=0), help='Shortest acceptable video in seconds')
@click.option('--mode', type=click.Choice([m.value for m in EvaluationMode]), help='Evaluation mode')
@click.option('--dry-run', is_flag=True, help='Evaluate candidates without writing to the knowledge base')
@click.option('--json', 'as_json', is_flag=True, help='Print the run result as JSON')
@click.pass_context
def run(ctx, batch_size: Optional[int], quality_threshold: Optional[float], min_duration: Optional[int],
        mode: Optional[str], dry_run: bool, as_json: bool):
    """
    Run one curation pass over the next batch of rotation targets.

    Exits 0 when the run succeeds, including when it halts on quota
    exhaustion, and 1 otherwise.
    """
    config = init_config_if_needed(ctx)

    if not as_json:
        title = "Starting curation run" + (" (dry run)" if dry_run else "")
        console.print(Panel.fit(title, style="bold blue"))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
        disable=as_json,
    ) as progress:
        task = progress.add_task("Curating...", total=None)
        result = run_curation(
            config=config,
            target_batch_size=batch_size,
            quality_threshold=quality_threshold,
            min_duration_seconds=min_duration,
            evaluation_mode=EvaluationMode(mode) if mode else None,
            dry_run=dry_run,
        )
        progress.update(task, description="Done")

    if as_json:
        click.echo(json.dumps(result.model_dump(mode='json'), indent=2))
    else:
        display_run_result(result)

    if not result.success:
        sys.exit(1)


@main.command()
@click.pass_context
def status(ctx):
    """Show knowledge-base totals and rotation coverage."""
    config = init_config_if_needed(ctx)
    knowledge_base = KnowledgeBase(config.database_path)

    try:
        knowledge_base.initialize()
        summary = knowledge_base.curation_status()
        coverage = RotationScheduler(knowledge_base).coverage()
    except Exception as e:
        console.print(f"[red]✗[/red] Could not read knowledge base: {e}")
        if ctx.obj['debug']:
            console.print_exception()
        sys.exit(1)

    table = Table(title="Curation Status")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta", justify="right")

    last = summary['last_curation']
    table.add_row("Total videos", str(summary['total_videos']))
    table.add_row("Instructors with videos", str(summary['instructors_with_videos']))
    table.add_row("Added in last 24h", str(summary['recently_added']))
    table.add_row("Pending post-processing", str(summary['pending_post_processing']))
    table.add_row("Rotation cycle", str(coverage['rotation_cycle']))
    table.add_row("Cycle coverage", f"{coverage['curated_in_cycle']}/{coverage['total_targets']}")
    table.add_row("Last curation", last.strftime('%Y-%m-%d %H:%M UTC') if last else "never")

    console.print(table)


@main.command()
@click.pass_context
def config(ctx):
    """Display current configuration settings."""
    config = init_config_if_needed(ctx)

    console.print(Panel.fit("Current Configuration", style="bold cyan"))
    display_config_table(config)


@main.command('register-instructor')
@click.argument('name')
@click.option('--credibility', type=click.FloatRange(0, 100), default=50.0, show_default=True,
              help='Credibility score (0-100)')
@click.pass_context
def register_instructor(ctx, name: str, credibility: float):
    """Add or update an instructor in the credibility registry."""
    config = init_config_if_needed(ctx)
    knowledge_base = KnowledgeBase(config.database_path)

    try:
        knowledge_base.initialize()
        knowledge_base.register_instructor(name, credibility)
    except Exception as e:
        console.print(f"[red]✗[/red] Could not register instructor: {e}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Registered {name.strip()} (credibility {credibility:.0f})")


if __name__ == '__main__':
    main()
