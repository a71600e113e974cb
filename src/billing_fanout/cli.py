# src/billing_fanout/cli.py
"""billing-fanout command line interface.

Entry point for the billing-fanout CLI tool.
"""

from __future__ import annotations

import json
from concurrent.futures import wait
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from billing_fanout import __version__
from billing_fanout.core.config import load_settings, resolve_config

if TYPE_CHECKING:
    from billing_fanout.core.config import FanoutSettings

__all__ = ["app"]

app = typer.Typer(
    name="billing-fanout",
    help="Transaction fan-out: batch archive and per-transaction workflow.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"billing-fanout version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
    env_file: Path | None = typer.Option(None, "--env-file", help="Path to .env file (skips automatic search)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose/debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs (for machine processing)."),
) -> None:
    """Transaction fan-out: batch archive and per-transaction workflow."""
    from billing_fanout.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted validation error with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")

    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    console.print(Panel(content, title=f"[red bold]{title}[/]", border_style="red"))


def _load_or_exit(settings: str) -> FanoutSettings:
    """Load settings, turning every configuration failure into exit code 1."""
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {settings_path.name}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        # Must be before ValueError: ValidationError inherits from it
        details = [f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()]
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {settings_path.name}",
            details=details,
            hint="Check field names, types, and required values.",
        )
        raise typer.Exit(1) from None
    except ValueError as e:
        _format_validation_error(title="Configuration Error", message=str(e))
        raise typer.Exit(1) from None


@app.command()
def validate(
    settings: str = typer.Option(..., "--settings", "-s", help="Path to settings YAML file."),
    show: bool = typer.Option(False, "--show", help="Print the resolved configuration as JSON."),
) -> None:
    """Validate configuration without running."""
    config = _load_or_exit(settings)

    if show:
        typer.echo(json.dumps(resolve_config(config), indent=2))
        return

    typer.echo("Configuration valid.")
    typer.echo(f"  Event bus: {config.event_bus.name} ({config.event_bus.source})")
    typer.echo(f"  Catalog table: {config.catalog.database}.{config.catalog.table}")
    typer.echo(f"  State machine: {config.workflow.state_machine_name}")
    typer.echo(
        f"  Flush: every {config.archiver.flush_interval_seconds:g}s or {config.archiver.flush_size_bytes} bytes "
        f"(backup {config.archiver.backup_flush_size_bytes} bytes)"
    )


@app.command()
def run(
    settings: str = typer.Option(..., "--settings", "-s", help="Path to settings YAML file."),
    events: Path = typer.Option(..., "--events", "-e", help="JSON-lines file of inbound transaction-initiated events."),
    replay_pending: bool = typer.Option(
        True,
        "--replay-pending/--no-replay-pending",
        help="Replay failed publishes once after all events are processed.",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Replay a file of inbound events through the pipeline.

    The archiver is flushed on shutdown. Exits 1 if any archive batch failed
    fatally.
    """
    from billing_fanout.engine.orchestrator import build_pipeline

    config = _load_or_exit(settings)

    if not events.exists():
        _format_validation_error(title="File Not Found", message=f"Events file does not exist: {events}")
        raise typer.Exit(1)

    try:
        pipeline = build_pipeline(config)
        with pipeline:
            futures = []
            with events.open("r", encoding="utf-8") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    outcome = pipeline.dispatch(line)
                    if outcome.workflow is not None:
                        futures.append(outcome.workflow)
            wait(futures)
            if replay_pending:
                pipeline.executor.replay_pending()
    except Exception as e:
        if output_format == "json":
            typer.echo(json.dumps({"event": "error", "error": str(e), "error_type": type(e).__name__}), err=True)
        else:
            typer.echo(f"Error during pipeline execution: {e}", err=True)
        raise typer.Exit(1) from None

    summary: dict[str, Any] = {
        "counters": pipeline.counters.snapshot(),
        "pending_publish": len(pipeline.executor.pending_publish()),
        "fatal_batches": len(pipeline.archiver.fatal_batches),
    }

    if output_format == "json":
        typer.echo(json.dumps(summary))
    else:
        typer.echo("Run complete.")
        for name, value in summary["counters"].items():
            typer.echo(f"  {name}: {value}")
        typer.echo(f"  pending_publish: {summary['pending_publish']}")
        typer.echo(f"  fatal_batches: {summary['fatal_batches']}")

    if summary["fatal_batches"]:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
