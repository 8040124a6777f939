#!/usr/bin/env python3
"""
Agent Router MCP Server

FastMCP server exposing task-to-agent routing over the Model Context Protocol.

Tools:
- init_llm: start Ollama, download the model if needed, load it into memory
- get_instructions: route a task to agents (rules first, LLM when inconclusive)
- get_health: config and backend readiness report

Configuration is loaded once at startup (agent-router.yaml + env); agents,
rules and tags are re-read on every get_instructions call.
"""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

from mcp.server.fastmcp import Context, FastMCP

from agent_router import __version__
from agent_router.config import load_config
from agent_router.errors import ConfigError, RouterError
from agent_router.health_check import get_health_status
from agent_router.models import ClassificationRequest
from agent_router.service import AgentRouter

logger = logging.getLogger(__name__)

# Progress notifications are sent at most every PROGRESS_STEP percent
PROGRESS_STEP = 5

# Initialize FastMCP server
mcp = FastMCP("agent-router")

_router: Optional[AgentRouter] = None


def get_router() -> AgentRouter:
    """Return the process-wide router, creating it from config on first use."""
    global _router
    if _router is None:
        _router = AgentRouter(load_config())
    return _router


def set_router(router: Optional[AgentRouter]) -> None:
    """Replace the process-wide router (used at startup and in tests)."""
    global _router
    _router = router


@mcp.tool()
async def init_llm(ctx: Context) -> dict:
    """
    Initialize the LLM: starts Ollama, downloads the model if needed, and loads it into memory.

    Returns:
        Dictionary with:
        - success: Whether the backend is ready
        - message: Human-readable outcome or remediation
        - steps_performed: Lifecycle steps taken, in order
    """
    router = get_router()
    pending: set = set()
    last_notified = 0

    def on_progress(percent: int) -> None:
        nonlocal last_notified
        if percent >= last_notified + PROGRESS_STEP or percent == 100:
            last_notified = percent
            task = asyncio.ensure_future(ctx.report_progress(percent, 100))
            pending.add(task)
            task.add_done_callback(pending.discard)

    try:
        logger.info("init_llm called")
        report = await router.initialize_backend(on_progress=on_progress)
        result = report.to_dict()
    except RouterError as e:
        logger.warning(f"init_llm failed: {e}")
        result = {"success": False, "message": str(e), **e.to_dict()}
    except Exception as e:
        logger.error(f"Error in init_llm: {e}", exc_info=True)
        result = {"success": False, "message": str(e), "steps_performed": []}

    for outcome in await asyncio.gather(*pending, return_exceptions=True):
        if isinstance(outcome, Exception):
            logger.warning(f"Failed to send progress notification: {outcome}")

    return result


@mcp.tool()
async def get_instructions(
    task: str,
    intent: str,
    original_prompt: Optional[str] = None,
    associated_files: Optional[List[str]] = None,
) -> dict:
    """
    Get routing instructions for which agents should handle a user request.

    Args:
        task: What the agent is doing (the current task or action being performed)
        intent: The agent's intent for this call (e.g., "review code before commit")
        original_prompt: Optional original user request, for better LLM semantic tagging
        associated_files: Optional file paths relevant to this task, used by file rules.
            Git auto-detection only provides the branch.

    Returns:
        Dictionary with:
        - instructions: List of {trigger, context, route_to_agent}
        - count: Number of instructions
        Or, on failure, error/error_type plus step context.

    Examples:
        get_instructions(
            task="Refactor login handler",
            intent="review code before commit",
            associated_files=["src/auth.ts"],
        )
    """
    try:
        logger.info(
            f"get_instructions called: task={task!r}, intent={intent!r}, "
            f"files={len(associated_files or [])}"
        )
        request = ClassificationRequest(
            task=task,
            intent=intent,
            original_prompt=original_prompt,
            associated_files=associated_files,
        )
        instructions = await get_router().classify(request)
        return {
            "instructions": [i.to_dict() for i in instructions],
            "count": len(instructions),
        }

    except RouterError as e:
        logger.warning(f"get_instructions failed: {e}")
        return {"instructions": [], "count": 0, **e.to_dict()}
    except Exception as e:
        logger.error(f"Error in get_instructions: {e}", exc_info=True)
        return {"instructions": [], "count": 0, "error": str(e), "error_type": "InternalError"}


@mcp.tool()
async def get_health() -> dict:
    """
    Report configuration validity and inference backend readiness.

    Returns:
        Dictionary with overall ("healthy" | "degraded" | "unhealthy"),
        config and backend check results.
    """
    try:
        return await get_health_status(get_router())
    except Exception as e:
        logger.error(f"Error in get_health: {e}", exc_info=True)
        return {"overall": "unknown", "error": str(e)}


def _signal_handler(signum, frame) -> None:
    """Handle SIGTERM/SIGINT by exiting cleanly."""
    logger.info(f"Received {signal.Signals(signum).name}, shutting down")
    sys.exit(0)


def main():
    """Main entry point for the agent-router-server command.

    Starts the MCP server after:
    - Loading server configuration
    - Validating agents, rules and tags (refuses to start if invalid)
    """
    config = load_config()
    logging.basicConfig(
        level=str(config["server"]["log_level"]).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    logger.info(f"=== Starting Agent Router MCP Server v{__version__} ===")
    router = AgentRouter(config)
    set_router(router)
    logger.info(f"Model: {router.settings.effective_model_name} at {router.settings.url}")

    try:
        routing_config = router.load_routing_config()
    except ConfigError as e:
        logger.critical(f"FATAL: Invalid routing configuration: {e}")
        sys.exit(1)
    logger.info(
        f"Configs loaded: {len(routing_config.agents)} agents, "
        f"{len(routing_config.tags)} tags, {len(routing_config.rules)} rules"
    )

    logger.info("MCP server ready - listening for tool calls")
    mcp.run()


if __name__ == "__main__":
    main()
