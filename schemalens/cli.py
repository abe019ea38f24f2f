"""Command line interface for schemalens."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Sequence

import rich.traceback
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .analyze import AnalysisResult, analyze_tables
from .config import AnalysisConfig, load_config
from .enrich import Enricher
from .errors import EnrichmentError, LimitExceededError, SchemaLensError
from .io import Table, load_input
from .llm import LLMClient, LLMConfig
from .patterns import collapse_paths

rich.traceback.install(show_locals=False)

app = typer.Typer(help="Infer compact, role-annotated schemas from JSON data.")
console = Console()


def _resolve_path(path: Path | str) -> Path:
    """Resolve a string or path to an absolute Path."""
    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise typer.BadParameter(f"Path does not exist: {resolved}")
    return resolved


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log detector decisions."),
) -> None:
    _configure_logging(verbose)


@app.command()
def analyze(
    source: Path = typer.Argument(..., help="JSON or JSONL file to analyze."),
    output: Path = typer.Option(
        "analysis.json", "--output", "-o", help="Path to write the analysis JSON."
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="YAML file with analysis thresholds."
    ),
    max_rows: Optional[int] = typer.Option(None, "--max-rows", help="Rows sampled per table."),
    seed: Optional[int] = typer.Option(None, help="Seed for row sampling and LLM requests."),
    use_llm: bool = typer.Option(
        False,
        "--use-llm/--no-llm",
        help="Add LLM-written descriptions after the structural pass.",
    ),
    cache_dir: Optional[Path] = typer.Option(
        None, help="Optional cache directory for LLM responses."
    ),
) -> None:
    """Infer structure, roles and reusable types for a dataset."""

    source_path = _resolve_path(source)
    output_path = Path(output).expanduser().resolve()

    try:
        config = load_config(_resolve_path(config_path)) if config_path is not None else AnalysisConfig()
        config = config.with_overrides(max_rows=max_rows, seed=seed)
        tables = load_input(source_path)
    except SchemaLensError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    llm_client: Optional[LLMClient] = None
    enricher: Optional[Enricher] = None
    if use_llm:
        llm_config = LLMConfig()
        if seed is not None:
            llm_config.global_seed = seed
        llm_client = LLMClient(config=llm_config, cache_dir=cache_dir)
        enricher = Enricher(llm_client)

    try:
        with Progress(SpinnerColumn(), TextColumn("{task.description}"), TimeElapsedColumn(), console=console) as progress:
            progress.add_task("Analyzing", total=None)
            result = _run(tables, config, enricher)
    except SchemaLensError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        if llm_client is not None:
            llm_client.close()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(result.to_dict(), indent=2, default=str))
    for name, table in result.tables.items():
        stats = table.structure.stats
        console.print(
            f"[bold]{name}[/bold]: {stats.total_fields} fields, {stats.map_count} maps, "
            f"{stats.def_count} defs ({stats.reduction_percent}% reduction)"
        )
    console.print(f"Analysis written to [green]{output_path}[/green]")


def _run(tables: Sequence[Table], config: AnalysisConfig, enricher: Optional[Enricher]) -> AnalysisResult:
    try:
        return analyze_tables(tables, config, enricher=enricher)
    except LimitExceededError as exc:
        console.print(f"[yellow]Skipping enrichment: {exc}[/yellow]")
        return exc.result
    except EnrichmentError as exc:
        console.print(f"[yellow]Enrichment failed, writing structural result: {exc}[/yellow]")
        return exc.partial_result


@app.command()
def patterns(
    paths_file: Path = typer.Argument(..., help="File with one field path per line."),
    threshold: int = typer.Option(3, "--threshold", help="Collapse groups larger than this."),
) -> None:
    """Collapse a list of field paths into wildcard patterns."""

    lines = _resolve_path(paths_file).read_text(encoding="utf-8").splitlines()
    result = collapse_paths([line.strip() for line in lines if line.strip()], threshold=threshold)
    typer.echo(json.dumps(result.to_dict(), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
