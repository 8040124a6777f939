"""
Health check module for the agent router.

Provides status checks for diagnostics: whether the routing config loads
and validates, and where the inference backend sits in its readiness state
machine. Backend checks only probe; they never start, pull or load anything.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from agent_router import __version__
from agent_router.errors import ConfigError, RouterError
from agent_router.lifecycle import MISSING_STEP, BackendState
from agent_router.service import AgentRouter

logger = logging.getLogger(__name__)


def check_routing_config(router: AgentRouter) -> dict[str, Any]:
    """
    Check that agents, rules and tags load and validate.

    Returns:
        Dictionary with:
        - status: "healthy" | "invalid"
        - reason: Summary or the validation error
        - agents/rules/tags: Counts when healthy
    """
    try:
        config = router.load_routing_config()
    except ConfigError as e:
        logger.error(f"Routing config invalid: {e}")
        result = {"status": "invalid", "reason": str(e)}
        if e.rule:
            result["rule"] = e.rule
        return result

    return {
        "status": "healthy",
        "reason": "Configuration valid",
        "agents": len(config.agents),
        "rules": len(config.rules),
        "tags": len(config.tags),
    }


async def check_backend(router: AgentRouter) -> dict[str, Any]:
    """
    Probe the inference backend state.

    Returns:
        Dictionary with:
        - status: "healthy" | "not_ready" | "error"
        - state: BackendState value
        - missing_step: Lifecycle step to run when not ready
        - model: Effective model name
    """
    model = router.settings.effective_model_name
    try:
        state = await router.lifecycle.probe()
    except RouterError as e:
        logger.error(f"Error probing backend: {e}")
        return {"status": "error", "reason": str(e), "model": model}

    if state is BackendState.READY:
        return {"status": "healthy", "state": state.value, "reason": "Model loaded and ready", "model": model}

    return {
        "status": "not_ready",
        "state": state.value,
        "missing_step": MISSING_STEP[state],
        "reason": "Run init_llm to prepare the backend",
        "model": model,
    }


async def get_health_status(router: AgentRouter) -> dict[str, Any]:
    """
    Aggregate health checks.

    Overall status:
    - healthy: config valid and backend ready
    - degraded: config valid, backend not ready (rule matches still work)
    - unhealthy: config invalid (the router refuses to classify)
    """
    config_status = check_routing_config(router)
    backend_status = await check_backend(router)

    if config_status["status"] != "healthy":
        overall = "unhealthy"
    elif backend_status["status"] != "healthy":
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "overall": overall,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "config": config_status,
        "backend": backend_status,
    }
