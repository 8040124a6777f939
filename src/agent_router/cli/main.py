"""Agent Router CLI entry point."""

import asyncio
import json
import os
from enum import Enum
from pathlib import Path
from typing import List, Optional

import typer
from rich.progress import BarColumn, Progress, TextColumn

from agent_router import __version__
from agent_router.config import load_config
from agent_router.errors import ConfigError, LifecycleError, RouterError
from agent_router.formatter import format_instructions
from agent_router.health_check import get_health_status
from agent_router.lifecycle import ReadinessReport
from agent_router.models import ClassificationRequest, RoutingInstruction
from agent_router.service import AgentRouter

from .console import (
    console,
    create_table,
    print_error,
    print_info,
    print_success,
    print_table,
    print_warning,
)

app = typer.Typer(
    name="agent-router",
    help="Agent Router - route tasks to the right agent, rules first, local LLM second",
    no_args_is_help=True,
)

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to agent-router.yaml (default: AGENT_ROUTER_CONFIG_PATH or ./agent-router.yaml)",
)


class OutputFormat(str, Enum):
    text = "text"
    json = "json"


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"agent-router version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Agent Router - route tasks to the right agent."""
    pass


def _build_router(config_path: Optional[Path]) -> AgentRouter:
    """Create a router from the config file, exiting 1 if the file is invalid."""
    try:
        return AgentRouter(load_config(str(config_path) if config_path else None))
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1)


async def _initialize(router: AgentRouter, on_progress) -> ReadinessReport:
    try:
        return await router.initialize_backend(on_progress=on_progress)
    finally:
        await router.aclose()


async def _classify(router: AgentRouter, request: ClassificationRequest) -> List[RoutingInstruction]:
    try:
        return await router.classify(request)
    finally:
        await router.aclose()


async def _health(router: AgentRouter) -> dict:
    try:
        return await get_health_status(router)
    finally:
        await router.aclose()


def serve_command(config: Optional[Path] = CONFIG_OPTION) -> None:
    """Run the MCP server over stdio."""
    from agent_router.server import main as server_main

    if config:
        os.environ["AGENT_ROUTER_CONFIG_PATH"] = str(config)
    server_main()


def init_command(config: Optional[Path] = CONFIG_OPTION) -> None:
    """Start Ollama, download the model if needed, and load it into memory."""
    router = _build_router(config)
    model = router.settings.effective_model_name
    print_info(f"Preparing {model} at {router.settings.url}")

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task(f"Downloading {model}", total=100, visible=False)

        def on_progress(percent: int) -> None:
            progress.update(task_id, completed=percent, visible=True)

        try:
            report = asyncio.run(_initialize(router, on_progress))
        except LifecycleError as e:
            progress.stop()
            for step in e.steps_performed:
                print_success(step)
            print_error(f"{e} (step: {e.step})")
            if e.remediation:
                print_warning(e.remediation)
            raise typer.Exit(code=1)

    for step in report.steps_performed:
        print_success(step)
    console.print(f"\n[bold green]{report.message}[/bold green]")


def route_command(
    task: str = typer.Argument(..., help="What the agent is doing"),
    intent: str = typer.Option(..., "--intent", "-i", help="Why the agent is doing it"),
    prompt: Optional[str] = typer.Option(None, "--prompt", "-p", help="Original user request"),
    files: Optional[List[str]] = typer.Option(
        None, "--file", "-f", help="Associated file path (repeatable)"
    ),
    branch: Optional[str] = typer.Option(
        None, "--branch", "-b", help="Branch name (default: detected from git)"
    ),
    output_format: OutputFormat = typer.Option(
        OutputFormat.text, "--format", help="Output format"
    ),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Route a task to agents and print the routing instructions."""
    router = _build_router(config)
    request = ClassificationRequest(
        task=task,
        intent=intent,
        original_prompt=prompt,
        associated_files=files or None,
        branch=branch,
    )

    try:
        instructions = asyncio.run(_classify(router, request))
    except RouterError as e:
        print_error(str(e))
        if getattr(e, "remediation", None):
            print_warning(e.remediation)
        raise typer.Exit(code=1)

    if output_format is OutputFormat.json:
        payload = {"instructions": [i.to_dict() for i in instructions], "count": len(instructions)}
        typer.echo(json.dumps(payload, indent=2))
        return

    if not instructions:
        print_warning("No agent matched this task")
        return
    typer.echo(format_instructions(instructions, task=task))


def validate_command(config: Optional[Path] = CONFIG_OPTION) -> None:
    """Load and validate the agents, rules and tags config files."""
    router = _build_router(config)
    paths = router.paths
    try:
        routing_config = router.load_routing_config()
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1)

    print_success(f"{len(routing_config.agents)} agents ({paths.agents})")
    print_success(f"{len(routing_config.rules)} rules ({paths.rules})")
    print_success(f"{len(routing_config.tags)} tags ({paths.tags})")
    if not routing_config.rules:
        print_warning("No rules defined; every request will go to the LLM")


def status_command(
    config: Optional[Path] = CONFIG_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the raw health report"),
) -> None:
    """Show configuration validity and backend readiness."""
    router = _build_router(config)
    health = asyncio.run(_health(router))

    if as_json:
        typer.echo(json.dumps(health, indent=2))
    else:
        table = create_table(f"Agent Router {health['version']}")
        table.add_column("Check")
        table.add_column("Status")
        table.add_column("Detail")
        config_status = health["config"]
        backend_status = health["backend"]
        table.add_row("config", config_status["status"], config_status["reason"])
        backend_detail = backend_status.get("state", backend_status.get("reason", ""))
        if backend_status.get("missing_step"):
            backend_detail = f"{backend_detail} (next: {backend_status['missing_step']})"
        table.add_row(f"backend ({backend_status['model']})", backend_status["status"], backend_detail)
        print_table(table)
        console.print(f"Overall: [bold]{health['overall']}[/bold]")

    if health["overall"] == "unhealthy":
        raise typer.Exit(code=1)


app.command(name="serve")(serve_command)
app.command(name="init")(init_command)
app.command(name="route")(route_command)
app.command(name="validate")(validate_command)
app.command(name="status")(status_command)


if __name__ == "__main__":
    app()
