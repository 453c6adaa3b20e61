"""
deseq-engine CLI

Command-line interface for the differential expression engine: reads a count
table and a sample sheet, runs the pipeline and writes the result table, and
optionally the transformed matrix and PCA coordinates.
"""

import dataclasses
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import DEConfig, TransformKind
from .deseq import run_deseq
from .deseq_dataset import CountModel
from .exceptions import DESeqError
from .io import read_config, read_counts, read_design, write_results

app = typer.Typer(
    name="deseq-engine",
    help="Count-based differential expression (median-of-ratios, NB GLM, Wald test)",
    add_completion=False,
)

console = Console()


def setup_logging(level: int = logging.INFO) -> None:
    """Set up logging with Rich handler for colored output."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
        force=True,
    )


def version_callback(value: bool):
    if value:
        console.print(f"deseq-engine v{__version__}")
        raise typer.Exit()


def verbose_callback(value: bool):
    setup_logging(level=logging.DEBUG if value else logging.INFO)


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        callback=verbose_callback,
        help="Enable debug logging"
    ),
):
    """deseq-engine CLI"""


@app.command()
def run(
    counts: Path = typer.Argument(..., exists=True, dir_okay=False, help="Count table (genes x samples)"),
    samplesheet: Path = typer.Argument(..., exists=True, dir_okay=False, help="Sample sheet, one row per sample"),
    reference: str = typer.Option(..., "--reference", "-r", help="Reference (baseline) condition level"),
    condition_column: str = typer.Option("condition", help="Sample sheet column with condition labels"),
    level: Optional[str] = typer.Option(None, help="Level tested against the reference (default: last level)"),
    output: Path = typer.Option(Path("deseq_results.csv"), "--output", "-o", help="Result table path"),
    config_file: Optional[Path] = typer.Option(None, "--config", exists=True, dir_okay=False,
                                               help="YAML file of DEConfig options"),
    alpha: Optional[float] = typer.Option(None, help="FDR threshold (overrides config)"),
    n_jobs: Optional[int] = typer.Option(None, help="Worker processes (overrides config)"),
    no_filtering: bool = typer.Option(False, "--no-filtering", help="Disable independent filtering"),
    transformed: Optional[Path] = typer.Option(None, help="Also write the transformed matrix here"),
    transform_kind: Optional[TransformKind] = typer.Option(None, "--transform", help="Transformation to write"),
    pca: Optional[Path] = typer.Option(None, help="Also write PCA coordinates here"),
):
    """Run differential expression analysis on a count table."""
    try:
        config = read_config(config_file) if config_file else DEConfig()
        overrides = {}
        if alpha is not None:
            overrides["significance_threshold"] = alpha
        if n_jobs is not None:
            overrides["n_jobs"] = n_jobs
        if no_filtering:
            overrides["independent_filtering"] = False
        if transform_kind is not None:
            overrides["transform"] = transform_kind
        config = dataclasses.replace(config, **overrides)

        design = read_design(samplesheet, condition_column=condition_column, reference=reference)
        model = CountModel.from_dataframe(read_counts(counts), design)
        console.print(f"[bold blue]Running DE analysis on {model.shape[0]} genes, "
                      f"{model.shape[1]} samples[/bold blue]")

        analysis = run_deseq(model, config=config, level=level)
        write_results(analysis.results, output)

        if transformed is not None:
            write_results(analysis.transform(), transformed)
        if pca is not None:
            pca_result = analysis.pca()
            write_results(pca_result.coordinates, pca)
            write_results(pca_result.explained_variance.to_frame(),
                          pca.with_name(pca.stem + "_variance" + pca.suffix))
    except DESeqError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    stats = analysis.summary()
    console.print(f"[bold green]{stats['significant']} of {stats['genes_tested']} tested genes "
                  f"significant at padj < {config.significance_threshold} "
                  f"({stats['upregulated']} up, {stats['downregulated']} down)[/bold green]")
    console.print(f"Results saved to: {output}")


if __name__ == "__main__":
    app()
