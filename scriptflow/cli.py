"""Command line interface for scriptflow."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Optional

import typer

from scriptflow.config import load_config
from scriptflow.persistence import get_resolver
from scriptflow.webhook import signature_header

app = typer.Typer(help="CLI for scriptflow pipelines")

# Command groups
pipeline_app = typer.Typer(help="Commands for inspecting stored pipelines")
webhook_app = typer.Typer(help="Helpers for webhook integrators")

app.add_typer(pipeline_app, name="pipeline")
app.add_typer(webhook_app, name="webhook")


@app.callback()
def main() -> None:
    """scriptflow CLI entry point."""
    pass


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
) -> None:
    """
    Run the pipeline HTTP API.

    Example:
        scriptflow serve --port 8080 --config ./scriptflow.yaml
    """
    import uvicorn

    from scriptflow.api import create_app

    config = load_config(str(config_path) if config_path else None)
    uvicorn.run(create_app(config), host=host, port=port)


@pipeline_app.command("list")
def pipeline_list() -> None:
    """
    List all pipelines with their last run time.

    Example:
        scriptflow pipeline list
        # Output: 6f1c...    Morning digest    2024-01-01T10:00:00+00:00
    """
    resolver = get_resolver()
    items = asyncio.run(resolver.call("list", lambda repo: repo.list()))
    if not items:
        typer.echo("No pipelines found")
        return
    for item in items:
        typer.echo(f"{item.id}\t{item.name}\t{item.last_run_at or 'never'}")


@pipeline_app.command("show")
def pipeline_show(pipeline_id: str) -> None:
    """
    Show the steps and trigger settings of one pipeline.

    The webhook secret is never printed.
    """
    resolver = get_resolver()
    pipeline = asyncio.run(resolver.call("get", lambda repo: repo.get(pipeline_id)))
    if pipeline is None:
        typer.echo("Pipeline not found")
        raise typer.Exit(code=1)
    typer.echo(f"Pipeline {pipeline.id}: {pipeline.name}")
    if pipeline.description:
        typer.echo(f"Description: {pipeline.description}")
    if pipeline.schedule:
        typer.echo(f"Schedule: {pipeline.schedule.cron}")
    if pipeline.default_source:
        typer.echo(f"Default source: {pipeline.default_source.value}")
    for index, step in enumerate(pipeline.steps, start=1):
        label = f" ({step.label})" if step.label else ""
        typer.echo(f"{index}. {step.kind}{label}")
    typer.echo(f"Last run: {pipeline.last_run_at or 'never'}")


@pipeline_app.command("delete")
def pipeline_delete(pipeline_id: str) -> None:
    """Delete a pipeline. Deleting an unknown id succeeds silently."""
    resolver = get_resolver()
    asyncio.run(resolver.call("delete", lambda repo: repo.delete(pipeline_id)))
    typer.echo(f"Deleted {pipeline_id}")


@webhook_app.command("sign")
def webhook_sign(
    secret: str,
    body_file: Path,
    timestamp: bool = typer.Option(
        True, help="Include an X-Webhook-Timestamp for the current time"
    ),
) -> None:
    """
    Print the signature headers for a webhook body.

    Example:
        scriptflow webhook sign $SECRET payload.json
        # Output: X-Webhook-Timestamp: 1718000000000
        #         X-Webhook-Signature: sha256=9f86d0...
    """
    if not body_file.exists():
        typer.secho("Body file does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    body = body_file.read_bytes()
    stamp = str(int(time.time() * 1000)) if timestamp else None
    if stamp:
        typer.echo(f"X-Webhook-Timestamp: {stamp}")
    typer.echo(f"X-Webhook-Signature: {signature_header(secret, body, stamp)}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
