"""Main CLI entry point for curlspec.

Thin front end over the extraction core: reads a markdown file, runs the
requested operation and prints a summary. Status output goes to stderr so
JSON written to stdout stays machine-readable.

Usage:
    curlspec extract api.md --output apis.json
    curlspec extract api.md --offline --threshold 0.5
    curlspec preprocess api.md --for-model
    curlspec validate api.md
    curlspec health
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from curlspec.config import CurlspecConfig, load_config
from curlspec.errors import DocumentValidationError
from curlspec.intelligence.client import HealthReport, HealthStatus, ResilientModelClient
from curlspec.intelligence.service import ChatCompletionModelService
from curlspec.logging import setup_logging
from curlspec.models import ExtractionOptions, ExtractionResult, ValidationReport
from curlspec.orchestrator.extractor import ExtractionOrchestrator
from curlspec.parser.commands import CurlCommandFinder
from curlspec.parser.preprocessor import ContentPreprocessor, PreprocessingOptions
from curlspec.validation.validator import SpecValidator

app = typer.Typer(
    name="curlspec",
    help="curlspec: extract API specifications from curl documentation",
    no_args_is_help=True,
)

console = Console(stderr=True)


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded curlspec configuration
    """

    def __init__(self, config: CurlspecConfig):
        self.config = config


_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: CurlspecConfig) -> AppContext:
    """Initialize the global application context."""
    global _app_context
    _app_context = AppContext(config)
    return _app_context


def _read_markdown(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Error reading {path}:[/red] {e}")
        raise typer.Exit(code=1)


def _write_json(payload: Any, output: Path | None) -> None:
    text = json.dumps(payload, indent=2)
    if output is None:
        typer.echo(text)
    else:
        output.write_text(text + "\n", encoding="utf-8")
        console.print(f"[green]Wrote[/green] {output}")


def _print_report(title: str, report: ValidationReport) -> None:
    colour = "green" if report.is_valid else "red"
    lines = [f"[{colour}]{'valid' if report.is_valid else 'invalid'}[/{colour}]"]
    lines.extend(f"[red]error:[/red] {message}" for message in report.errors)
    lines.extend(f"[yellow]warning:[/yellow] {message}" for message in report.warnings)
    lines.extend(f"[dim]suggestion:[/dim] {message}" for message in report.suggestions)
    console.print(Panel("\n".join(lines), title=title))


def _print_result(result: ExtractionResult) -> None:
    table = Table(title=f"{result.metadata.name} ({result.strategy.value} strategy)")
    table.add_column("Method", style="cyan")
    table.add_column("Name")
    table.add_column("URL", style="dim")
    table.add_column("Confidence", justify="right")
    for api in result.apis:
        confidence = api.provenance.confidence if api.provenance else result.confidence
        table.add_row(api.method, api.name, api.url, f"{confidence:.2f}")
    console.print(table)

    stats = result.processing_stats
    console.print(
        f"[bold]Commands:[/bold] {stats.total_curl_commands} found, "
        f"{stats.successfully_parsed} parsed, {stats.failed_to_parse} failed; "
        f"confidence {result.confidence:.2f} in {result.processing_time_seconds:.2f}s"
    )
    for error in result.errors:
        console.print(f"[red]error:[/red] {error}")
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


async def _run_extract(
    config: CurlspecConfig,
    markdown: str,
    options: ExtractionOptions,
    offline: bool,
    document_name: str,
) -> ExtractionResult:
    if offline:
        orchestrator = ExtractionOrchestrator(config=config.extraction)
        return await orchestrator.extract(
            markdown, options=options, document_name=document_name
        )

    async with ChatCompletionModelService(config.model) as service:
        client = ResilientModelClient.from_config(service, config)
        orchestrator = ExtractionOrchestrator(client=client, config=config.extraction)
        return await orchestrator.extract(
            markdown, options=options, document_name=document_name
        )


@app.command()
def extract(
    file: Annotated[
        Path,
        typer.Argument(help="Markdown file with curl commands", exists=True, dir_okay=False),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the JSON result to this file"),
    ] = None,
    threshold: Annotated[
        Optional[float],
        typer.Option("--threshold", "-t", min=0.0, max=1.0, help="Confidence threshold"),
    ] = None,
    no_optimization: Annotated[
        bool,
        typer.Option("--no-optimization", help="Skip model optimization of each API"),
    ] = False,
    no_fallback: Annotated[
        bool,
        typer.Option("--no-fallback", help="Disable the per-command fallback strategy"),
    ] = False,
    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", min=1, max=32, help="Fallback worker pool size"),
    ] = None,
    offline: Annotated[
        bool,
        typer.Option("--offline", help="Use the tokenizer only, without the model service"),
    ] = False,
) -> None:
    """Extract API specifications from a markdown file.

    Args:
        file: Markdown file to read
        output: Optional JSON output path (stdout when omitted)
        threshold: Confidence threshold override
        no_optimization: Disable spec optimization
        no_fallback: Disable the fallback strategy
        concurrency: Fallback worker pool size override
        offline: Skip the model service entirely
    """
    ctx = get_app_context()
    markdown = _read_markdown(file)
    options = ExtractionOptions(
        confidence_threshold=threshold,
        use_optimization=False if no_optimization else None,
        fallback_to_basic_parsing=False if no_fallback else None,
        max_concurrency=concurrency,
    )

    try:
        result = asyncio.run(
            _run_extract(ctx.config, markdown, options, offline, str(file))
        )
    except DocumentValidationError as e:
        console.print(f"[red]Invalid document:[/red] {e}")
        raise typer.Exit(code=1)
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1)

    _print_result(result)
    _write_json(result.to_wire(), output)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def preprocess(
    file: Annotated[
        Path,
        typer.Argument(help="Markdown file with curl commands", exists=True, dir_okay=False),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write processed markdown to this file"),
    ] = None,
    for_model: Annotated[
        bool,
        typer.Option("--for-model", help="Add the instruction preamble and metadata trailer"),
    ] = False,
    no_markers: Annotated[
        bool,
        typer.Option("--no-markers", help="Do not wrap curl blocks in context markers"),
    ] = False,
) -> None:
    """Preprocess a markdown file the way the document strategy does.

    Args:
        file: Markdown file to read
        output: Optional output path (stdout when omitted)
        for_model: Frame the text for the model service
        no_markers: Disable the context marker transform
    """
    markdown = _read_markdown(file)
    preprocessor = ContentPreprocessor()
    options = PreprocessingOptions(add_context_markers=not no_markers)

    if for_model:
        text = preprocessor.prepare_for_model(markdown, options)
    else:
        preprocessed = preprocessor.preprocess(markdown, options)
        text = preprocessed.processed_text
        _print_report("Preprocessing", preprocessor.validate_preprocessed(preprocessed))

    if output is None:
        typer.echo(text)
    else:
        output.write_text(text + "\n", encoding="utf-8")
        console.print(f"[green]Wrote[/green] {output}")


@app.command()
def validate(
    file: Annotated[
        Path,
        typer.Argument(help="Markdown file with curl commands", exists=True, dir_okay=False),
    ],
) -> None:
    """Validate a markdown file and the curl commands it contains.

    Args:
        file: Markdown file to read
    """
    markdown = _read_markdown(file)
    validator = SpecValidator()
    finder = CurlCommandFinder()

    document_report = validator.validate_markdown(markdown)
    invocation_report = validator.validate_invocations(finder.extract_invocations(markdown))
    _print_report("Document", document_report)
    _print_report("Curl commands", invocation_report)

    if not (document_report.is_valid and invocation_report.is_valid):
        raise typer.Exit(code=1)


@app.command()
def health() -> None:
    """Check that the model service is reachable and answering."""
    ctx = get_app_context()

    async def _check() -> HealthReport:
        async with ChatCompletionModelService(ctx.config.model) as service:
            client = ResilientModelClient.from_config(service, ctx.config)
            return await client.health_check()

    try:
        report = asyncio.run(_check())
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1)

    colours = {
        HealthStatus.HEALTHY: "green",
        HealthStatus.DEGRADED: "yellow",
        HealthStatus.UNHEALTHY: "red",
    }
    colour = colours[report.status]
    console.print(
        f"[{colour}]{report.status.value}[/{colour}] "
        f"(circuit {report.breaker.status.value}, {report.latency_seconds:.2f}s)"
    )
    if report.last_error:
        console.print(f"[dim]{report.last_error}[/dim]")
    if report.status is HealthStatus.UNHEALTHY:
        raise typer.Exit(code=1)


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Load configuration and configure logging.

    Args:
        config_path: Optional path to TOML configuration file
        verbose: Enable debug-level logging
    """
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_config)
    initialize_context(config)


def main() -> None:
    """Entry point for the curlspec CLI."""
    app()


if __name__ == "__main__":
    main()
