#!/usr/bin/env python3
"""
Main CLI entry point for review-stream.
"""
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import AsyncIterator

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.box import ROUNDED

from review_stream.api.client import ReviewClient
from review_stream.config import load_config
from review_stream.core.form_models import FormDocument, SessionPhase
from review_stream.core.session_controller import ReviewSession
from review_stream.errors import ReviewStreamError, UploadError

console = Console()


def _setup_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)]
    )


@click.group()
@click.version_option(version="0.1.0")
@click.option('--config', '-c', 'config_path', default="config.yaml", help="Path to config file")
@click.option('--verbose', '-v', is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """review-stream - live reconciliation of streamed paper reviews."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path


# ============================================================================
# RENDERING
# ============================================================================

def render_document(document: FormDocument):
    """Print the review form as tables."""
    info = Table(title=document.title or "Review Form", box=ROUNDED, show_header=False)
    info.add_column("Field", style="cyan")
    info.add_column("Value")
    for key, value in document.project_info.items():
        info.add_row(key, value or "[dim]-[/dim]")
    console.print(info)

    if document.evaluation_sections:
        sections = Table(title="Evaluation Sections", box=ROUNDED)
        sections.add_column("ID", style="cyan")
        sections.add_column("Title")
        sections.add_column("AI Recommendation", style="green")
        sections.add_column("Reason", style="dim")
        for section in document.evaluation_sections:
            sections.add_row(
                section.id or "-",
                section.title,
                section.ai_recommendation or "",
                section.ai_reason or ""
            )
        console.print(sections)

    for evaluation in document.textual_evaluations:
        if evaluation.ai_recommendation:
            console.print(Panel(
                evaluation.ai_recommendation,
                title=f"[cyan]{evaluation.id}[/cyan] {evaluation.title[:60]}",
                box=ROUNDED
            ))


def render_session(session: ReviewSession, show_logs: bool):
    if session.phase is SessionPhase.COMPLETE:
        console.print(f"[green]✅ Analysis complete[/green] ({session.progress:.0f}%)")
    else:
        console.print(f"[red]❌ Analysis failed: {session.error}[/red]")

    if show_logs:
        logs = Table(title="Analysis Log", box=ROUNDED)
        logs.add_column("Kind", style="cyan")
        logs.add_column("Text")
        for entry in session.logs:
            text = entry.text if len(entry.text) <= 300 else entry.text[:300] + "..."
            logs.add_row(entry.kind, text)
        console.print(logs)

    render_document(session.document)


async def _run_with_status(session: ReviewSession, runner) -> bool:
    with console.status("[bold green]Waiting for analysis...") as status:
        def on_update(document):
            status.update(f"[bold green]{session.status_message} ({session.progress:.0f}%)")

        unsubscribe = session.subscribe(on_update)
        try:
            return await runner()
        finally:
            unsubscribe()


# ============================================================================
# COMMANDS
# ============================================================================

@cli.command()
@click.argument('file_path')
@click.option('--logs/--no-logs', default=False, help="Show the analysis log")
@click.option('--json', 'as_json', is_flag=True, help="Print the final form as JSON")
@click.pass_context
def analyze(ctx, file_path, logs, as_json):
    """Analyze a file that is already on the server."""
    ok = asyncio.run(_analyze_async(ctx.obj['config_path'], file_path, logs, as_json))
    sys.exit(0 if ok else 1)


async def _analyze_async(config_path: str, file_path: str, show_logs: bool, as_json: bool) -> bool:
    try:
        async with ReviewClient(config_path=config_path) as client:
            session = ReviewSession(client)
            ok = await _run_with_status(session, lambda: session.start_analysis(file_path))
    except ReviewStreamError as e:
        console.print(f"[red]❌ Error: {e}[/red]")
        return False

    _print_result(session, show_logs, as_json)
    return ok


@cli.command()
@click.argument('pdf', type=click.Path(exists=True, dir_okay=False))
@click.option('--analyze/--no-analyze', 'run_analysis', default=True, help="Start the analysis after upload")
@click.option('--logs/--no-logs', default=False, help="Show the analysis log")
@click.pass_context
def upload(ctx, pdf, run_analysis, logs):
    """Upload a PDF and (by default) analyze it."""
    ok = asyncio.run(_upload_async(ctx.obj['config_path'], pdf, run_analysis, logs))
    sys.exit(0 if ok else 1)


async def _upload_async(config_path: str, pdf: str, run_analysis: bool, show_logs: bool) -> bool:
    try:
        async with ReviewClient(config_path=config_path) as client:
            with console.status(f"[bold green]Uploading {Path(pdf).name}..."):
                try:
                    file_path = await client.upload(pdf)
                except UploadError as e:
                    console.print(f"[red]❌ Upload failed ({e.kind.value}): {e}[/red]")
                    return False
            console.print(f"[green]✅ Uploaded:[/green] {file_path}")

            if not run_analysis:
                return True

            session = ReviewSession(client)
            ok = await _run_with_status(session, lambda: session.start_analysis(file_path))
    except ReviewStreamError as e:
        console.print(f"[red]❌ Error: {e}[/red]")
        return False

    _print_result(session, show_logs, False)
    return ok


@cli.command()
@click.argument('sse_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--chunk-size', default=64, show_default=True, help="Bytes per simulated network chunk")
@click.option('--logs/--no-logs', default=True, help="Show the analysis log")
@click.option('--json', 'as_json', is_flag=True, help="Print the final form as JSON")
@click.pass_context
def replay(ctx, sse_file, chunk_size, logs, as_json):
    """Feed a recorded SSE capture through the engine offline."""
    config = load_config(ctx.obj['config_path'])
    data = Path(sse_file).read_bytes()

    async def chunks() -> AsyncIterator[bytes]:
        for start in range(0, len(data), max(1, chunk_size)):
            yield data[start:start + chunk_size]
            await asyncio.sleep(0)

    session = ReviewSession(config=config)
    ok = asyncio.run(session.consume_stream(chunks(), file_path=sse_file))
    _print_result(session, logs, as_json)
    sys.exit(0 if ok else 1)


@cli.command()
@click.pass_context
def config(ctx):
    """Show the effective configuration."""
    try:
        config_data = load_config(ctx.obj['config_path'])
    except ReviewStreamError as e:
        console.print(f"[red]❌ Error: {e}[/red]")
        sys.exit(1)

    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    for section, settings in config_data.items():
        if isinstance(settings, dict):
            for key, value in settings.items():
                table.add_row(f"{section}.{key}", str(value))
        else:
            table.add_row(section, str(settings))
    console.print(table)


def _print_result(session: ReviewSession, show_logs: bool, as_json: bool):
    if as_json:
        click.echo(json.dumps(session.document.to_dict(), indent=2, ensure_ascii=False))
    else:
        render_session(session, show_logs)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
