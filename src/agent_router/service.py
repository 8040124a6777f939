"""
Agent Router service.

Wires the process-wide pieces (PatternCache, OllamaBackend, lifecycle
manager) into the two exposed operations:

    initialize_backend() -> ReadinessReport          (raises LifecycleError)
    classify(request)    -> list[RoutingInstruction] (raises ClassificationError)

Routing configs are re-read on every classify() call; the pattern cache and
backend readiness persist for the life of the AgentRouter.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from agent_router.conditions import ConditionEvaluator
from agent_router.config import (
    get_backend_settings,
    get_config_paths,
    get_routing_options,
    load_config,
)
from agent_router.git_context import detect_branch
from agent_router.lifecycle import BackendLifecycleManager, ReadinessReport
from agent_router.loader import load_routing_config
from agent_router.models import ClassificationRequest, RoutingConfig, RoutingInstruction
from agent_router.ollama import OllamaBackend
from agent_router.orchestrator import ClassificationOrchestrator
from agent_router.pattern_cache import PatternCache
from agent_router.semantic import SemanticClassifier

logger = logging.getLogger(__name__)


class AgentRouter:
    """
    Process-scoped router.

    Args:
        config: Configuration dictionary from load_config() (loaded if omitted)
        backend: Backend override (tests inject fakes)
        pattern_cache: Shared cache override
        branch_detector: Callable returning the current branch or None
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        backend: Optional[OllamaBackend] = None,
        pattern_cache: Optional[PatternCache] = None,
        branch_detector: Callable[[], Optional[str]] = detect_branch,
    ):
        self.config = config if config is not None else load_config()
        self.settings = get_backend_settings(self.config)
        self.options = get_routing_options(self.config)
        self.paths = get_config_paths(self.config)

        self.pattern_cache = pattern_cache or PatternCache()
        self.backend = backend or OllamaBackend(self.settings)
        self.lifecycle = BackendLifecycleManager(
            self.backend,
            start_timeout=self.settings.start_timeout,
            pull_timeout=self.settings.pull_timeout,
            poll_interval=self.settings.poll_interval,
        )
        self.semantic = SemanticClassifier(
            self.backend,
            retry_attempts=self.settings.retry_attempts,
            retry_backoff=self.settings.retry_backoff,
            temperature=self.settings.temperature,
        )
        self.evaluator = ConditionEvaluator(self.pattern_cache, max_depth=self.options.max_depth)
        self.orchestrator = ClassificationOrchestrator(
            self.evaluator, self.lifecycle, self.semantic, options=self.options
        )
        self.branch_detector = branch_detector

    def load_routing_config(self) -> RoutingConfig:
        """Load and validate agents, rules and tags from the configured paths."""
        return load_routing_config(self.paths, self.pattern_cache, max_depth=self.options.max_depth)

    async def initialize_backend(
        self,
        recheck: bool = False,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> ReadinessReport:
        """Bring the inference backend to Ready (install check, start, pull, load)."""
        return await self.lifecycle.initialize(recheck=recheck, on_progress=on_progress)

    async def classify(self, request: ClassificationRequest) -> List[RoutingInstruction]:
        """
        Route a request using a freshly loaded config.

        The branch is auto-detected when the request does not carry one.
        """
        config = self.load_routing_config()
        if request.branch is None:
            request.branch = await asyncio.to_thread(self.branch_detector)
        return await self.orchestrator.classify(request, config)

    async def aclose(self) -> None:
        await self.backend.aclose()
