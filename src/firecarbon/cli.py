"""Command line interface for firecarbon."""

import sys
from pathlib import Path

import click

from firecarbon import __version__
from firecarbon.analysis.summary import (
    summarize_inclusion,
    write_variable_importance,
)
from firecarbon.config import load_config
from firecarbon.errors import FirecarbonError
from firecarbon.io.compressedpickle import CompressedPickle
from firecarbon.io.spreadsheet import load_digest_data
from firecarbon.logging import configure_logging
from firecarbon.tasks.fit import run_analysis

logger = configure_logging(__name__)


@click.group()
@click.version_option(version=__version__)
def main():
    """Bayesian variable selection for soil carbon after fire."""


@main.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--recompute/--use-cached",
    default=None,
    help="Run the sampler, or load the saved samples. Overrides the config.",
)
@click.option(
    "--set",
    "overrides",
    multiple=True,
    metavar="KEY=VALUE",
    help="Override a config value, e.g. --set sampler.seed=3.",
)
def fit(config_path, recompute, overrides):
    """Fit every model variant listed in CONFIG_PATH."""
    try:
        config = load_config(config_path, overrides=tuple(overrides))
        if recompute is not None:
            config.recompute = recompute
        results = run_analysis(config)
    except FirecarbonError as e:
        logger.error(str(e))
        sys.exit(1)

    for variant, result in results.items():
        click.echo(f"{variant} ({result.version})")
        click.echo(result.summary.to_string(index=False))


@main.command()
@click.argument("artifact", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--out",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the summary as CSV instead of printing it.",
)
def summarize(artifact, out):
    """Summarize variable inclusion of a saved posterior sample ARTIFACT."""
    try:
        summary = summarize_inclusion(CompressedPickle.load(artifact))
    except FirecarbonError as e:
        logger.error(str(e))
        sys.exit(1)

    if out is None:
        click.echo(summary.to_string(index=False))
    else:
        write_variable_importance(summary, Path(out))


@main.command("load-digest")
@click.argument("workbook", type=click.Path(exists=True, dir_okay=False))
@click.option("--sheets", "-s", multiple=True, type=int, required=True)
@click.option("--label-col", default="B", show_default=True)
@click.option("--position-col", default="C", show_default=True)
@click.option("--data-col", default="D", show_default=True)
@click.option("--out", type=click.Path(dir_okay=False), required=True)
def load_digest(workbook, sheets, label_col, position_col, data_col, out):
    """Extract digest measurements from WORKBOOK into a CSV file."""
    try:
        digest = load_digest_data(
            workbook,
            sheets=list(sheets),
            label_col=label_col,
            position_col=position_col,
            data_col=data_col,
        )
    except FirecarbonError as e:
        logger.error(str(e))
        sys.exit(1)

    Path(out).parent.mkdir(parents=True, exist_ok=True)
    digest.to_csv(out, index=False)
    click.echo(f"wrote {len(digest)} rows to {out}")
