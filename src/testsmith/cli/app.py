"""testsmith command-line entry points."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from loguru import logger

from testsmith.cli.controller import ChatController
from testsmith.cli.render import Renderer
from testsmith.client.supervisor import WorkerSupervisor
from testsmith.config import load_settings
from testsmith.errors import SpawnError, StreamError
from testsmith.logging_utils import configure_logging

CLIENT_LOG_FILE = "testsmith.log"

app = typer.Typer(name="testsmith", help="Generate and verify Go unit tests with an AI agent", add_completion=False)


@app.callback(invoke_without_command=True)
def main_callback(ctx: typer.Context) -> None:
    if ctx.invoked_subcommand is None:
        chat(work_dir=None, worker_dir=None, api_key=None)


@app.command("chat")
def chat(
    work_dir: Path | None = typer.Option(None, "--work-dir", "-w", help="Root that tool paths resolve against"),  # noqa: B008
    worker_dir: Path | None = typer.Option(None, "--worker-dir", help="Working directory of the worker process"),  # noqa: B008
    api_key: str | None = typer.Option(None, "--api-key", help="Model credential; prompted when omitted"),
) -> None:
    """Start an interactive session."""

    settings = load_settings(work_dir=work_dir, worker_dir=worker_dir)
    configure_logging(profile="client", level=settings.log_level, log_file=settings.resolve_home() / CLIENT_LOG_FILE)
    renderer = Renderer()
    renderer.welcome(str(settings.resolved_work_dir), settings.model)

    credential = api_key or settings.api_key
    if not credential:
        try:
            credential = asyncio.run(renderer.read_api_key()).strip()
        except (KeyboardInterrupt, EOFError):
            raise typer.Exit(0) from None
    if not credential:
        renderer.error("An API key is required.")
        raise typer.Exit(1)

    controller = ChatController(WorkerSupervisor(settings), renderer)
    try:
        code = asyncio.run(controller.run(credential))
    except SpawnError as exc:
        logger.error("cli.spawn.failed error={}", exc)
        renderer.error(str(exc))
        raise typer.Exit(1) from exc
    except StreamError as exc:
        logger.error("cli.stream.failed error={}", exc)
        renderer.error(str(exc))
        raise typer.Exit(1) from exc
    except KeyboardInterrupt:
        code = 0
    raise typer.Exit(code)


@app.command("worker")
def worker() -> None:
    """Run the worker loop on stdin/stdout."""

    from testsmith.worker.server import main

    main()
