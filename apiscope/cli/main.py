"""APIScope CLI - Main entry point for command-line interface."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..core.config import get_settings
from ..core.logging import LogContext, setup_logging
from ..errors.classifier import format_error_for_display
from ..models.capture import ApiRecord, CaptureOutcome, CaptureRequest

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="APIScope")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging, including captured requests")
def cli(verbose: bool):
    """
    APIScope - see which APIs a web page calls.

    Loads a page in headless Chromium and records its API traffic.
    """
    setup_logging("DEBUG" if verbose else None)


@cli.command()
@click.argument("url")
@click.option("--timeout", "-t", type=float, default=None, help="Overall capture timeout in seconds")
@click.option("--user-agent", "-A", help="Custom user agent")
@click.option("--header", "-H", "headers", multiple=True, help="Extra header, 'Name: value' (repeatable)")
@click.option("--cookies", "-b", help="Cookies, 'name=value; other=value'")
@click.option("--output", "-o", type=click.Choice(["table", "json"]), default="table", help="Output format")
@click.option("--save", "-s", type=click.Path(dir_okay=False, path_type=Path), help="Write the records to a JSON file")
def capture(
    url: str,
    timeout: Optional[float],
    user_agent: Optional[str],
    headers: tuple[str, ...],
    cookies: Optional[str],
    output: str,
    save: Optional[Path],
):
    """
    Capture the API calls a page makes.

    URL: The page to load

    Examples:

        # Table of detected API calls
        apiscope capture https://example.com

        # Authenticated capture, saved as JSON
        apiscope capture https://app.example.com -H "Authorization: Bearer abc" --save apis.json
    """
    from ..browser.capture import PlaywrightCaptureRunner

    request = CaptureRequest(
        url=url,
        custom_headers=_parse_headers(headers),
        cookies=cookies,
        user_agent=user_agent,
        timeout_seconds=timeout,
    )
    runner = PlaywrightCaptureRunner(get_settings())

    with console.status(f"[cyan]Capturing {url}...", spinner="dots") as status:

        def on_progress(event: dict) -> None:
            status.update(f"[cyan]{event.get('message', event.get('status', ''))}")

        try:
            with LogContext(url=url):
                outcome = asyncio.run(runner.run(request, on_progress=on_progress))
        except Exception as e:
            _display_error(e)
            raise click.Abort()

    if save is not None:
        save.write_text(json.dumps(_records_as_json(outcome), indent=2))
        console.print(f"[green]✓[/green] Saved {len(outcome.api_records)} API calls to {save}")

    _display_outcome(outcome, output_format=output)


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", "-p", default=8000, help="Bind port")
@click.option("--reload", is_flag=True, help="Reload on code changes (development)")
def serve(host: str, port: int, reload: bool):
    """
    Run the HTTP API.

    Examples:

        apiscope serve --port 3001
    """
    import uvicorn

    uvicorn.run(
        "apiscope.api.main:get_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@cli.command()
def config():
    """
    Show current APIScope configuration.

    Displays session store limits, retry tuning and capture settings.
    """
    settings = get_settings()

    table = Table(
        title="APIScope Configuration",
        box=box.DOUBLE,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Setting", style="cyan", width=32)
    table.add_column("Value", style="green")

    table.add_row("Environment", settings.ENVIRONMENT.value)
    table.add_row("Debug Mode", str(settings.DEBUG))
    table.add_row("Log Level", settings.LOG_LEVEL)
    table.add_row("Session TTL", f"{settings.SESSION_TTL_MS / 3_600_000:g} h")
    table.add_row("Max Sessions", str(settings.MAX_SESSIONS))
    table.add_row("Cleanup Interval", f"{settings.CLEANUP_INTERVAL_MS / 60_000:g} min")
    table.add_row(
        "Navigation Retries",
        f"{settings.NAVIGATION_MAX_RETRIES} "
        f"({settings.NAVIGATION_INITIAL_DELAY_MS}-{settings.NAVIGATION_MAX_DELAY_MS} ms, "
        f"x{settings.NAVIGATION_BACKOFF_MULTIPLIER:g})",
    )
    table.add_row("Navigation Timeout", f"{settings.NAVIGATION_TIMEOUT_MS} ms")
    table.add_row("Capture Timeout", f"{settings.CAPTURE_TIMEOUT_SECONDS:g} s")
    table.add_row("Headless", str(settings.BROWSER_HEADLESS))

    console.print(table)


def _parse_headers(values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated 'Name: value' options."""
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected 'Name: value', got {value!r}", param_hint="--header")
        headers[name.strip()] = content.strip()
    return headers


def _records_as_json(outcome: CaptureOutcome) -> dict:
    return {
        "url": outcome.url,
        "total_apis": len(outcome.api_records),
        "partial": outcome.partial,
        "apis": [record.model_dump(mode="json") for record in outcome.api_records],
        "total_web_sockets": len(outcome.web_sockets),
        "web_sockets": [ws.model_dump(mode="json") for ws in outcome.web_sockets],
    }


def _display_outcome(outcome: CaptureOutcome, output_format: str = "table"):
    """Display captured API calls."""

    if output_format == "json":
        console.print_json(data=_records_as_json(outcome))
        return

    if outcome.partial:
        reason = "cancelled" if outcome.cancelled else "timed out"
        console.print(f"[yellow]⚠ Capture {reason}; showing partial results[/yellow]")

    for ws in outcome.web_sockets:
        console.print(f"[cyan]WebSocket[/cyan] {ws.url} [dim]({len(ws.frames)} frames, {ws.status})[/dim]")

    if not outcome.api_records:
        console.print(Panel("[yellow]No API calls detected[/yellow]", border_style="yellow"))
        return

    table = Table(
        title=f"API calls on {outcome.url}",
        box=box.ROUNDED,
        border_style="green",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("#", style="dim", width=4)
    table.add_column("Method", width=7)
    table.add_column("Status", width=7)
    table.add_column("URL", overflow="fold")
    table.add_column("Time", justify="right", width=8)
    table.add_column("Rate Limit", width=12)

    for record in outcome.api_records:
        table.add_row(*_record_row(record))

    console.print(table)
    console.print(f"[dim]{len(outcome.api_records)} API calls detected[/dim]")


def _record_row(record: ApiRecord) -> tuple[str, ...]:
    response = record.response
    if response is None:
        return (str(record.id), record.method, "[dim]pending[/dim]", record.url, "-", "-")

    color = "green" if response.status < 400 else "red"
    rate_limit = "-"
    if response.rate_limit is not None and response.rate_limit.remaining is not None:
        rate_limit = f"{response.rate_limit.remaining}/{response.rate_limit.limit}"
        if response.rate_limit.is_approaching_limit:
            rate_limit = f"[yellow]{rate_limit}[/yellow]"

    return (
        str(record.id),
        record.method,
        f"[{color}]{response.status}[/{color}]",
        record.url,
        f"{response.response_time_ms} ms",
        rate_limit,
    )


def _display_error(error: Exception):
    """Show a classified capture failure with suggestions."""
    payload = format_error_for_display(error)
    body = f"[bold]{payload.message}[/bold]\n"
    if payload.suggestions:
        body += "\n" + "\n".join(f"• {suggestion}" for suggestion in payload.suggestions)
    body += f"\n\n[dim]{payload.original_error.message}[/dim]"

    console.print(Panel(
        body,
        title=f"[bold red]{payload.title}[/bold red]",
        border_style="red",
    ))


if __name__ == "__main__":
    cli()
