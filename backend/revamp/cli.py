import asyncio
import logging
import sys

import click

from .config import get_settings
from .models import PipelineStage
from .services.pipeline import AccessibilityPipeline


def _print_progress(stage: PipelineStage, message: str) -> None:
    click.echo(f"[{stage.value}] {message}")


@click.command()
@click.argument("url")
@click.option("--log-level", default=None, help="Logging level (defaults to REVAMP_LOG_LEVEL or INFO)")
def main(url: str, log_level: str):
    """Capture URL, regenerate it accessibly, and print before/after axe scores."""
    settings = get_settings()
    logging.basicConfig(level=(log_level or settings.log_level).upper())

    pipeline = AccessibilityPipeline(settings=settings, on_progress=_print_progress)
    try:
        outcome = asyncio.run(pipeline.run(url))
    except Exception as e:
        click.echo(f"Pipeline failed: {type(e).__name__}: {e}", err=True)
        sys.exit(1)

    click.echo("")
    click.echo("ACCESSIBILITY ENHANCEMENT RESULTS")
    click.echo("=================================")
    click.echo(f"BEFORE WCAG: {outcome.before}%")
    click.echo(f"AFTER  WCAG: {outcome.after}%")
    click.echo(f"IMPROVEMENT: {outcome.improvement:+d}%")


if __name__ == "__main__":
    main()
