"""
Classification Orchestrator

Multi-stage routing pipeline for one request:

1. Deterministic match - evaluate every rule against files, branch and
   prompt text (no tags yet). Matches carry confidence 100.
2. Confidence gate - any deterministic match returns immediately; the
   inference backend is never consulted.
3. Semantic tagging - require a Ready backend (PrerequisiteError otherwise)
   and ask it which declared tags apply. Undeclared names are discarded, or
   rejected when strict_tags is enabled.
4. Tag-rule match - re-evaluate every rule with the tags added. Matches
   carry confidence 85 and are attributed to the tag that fired.
5. Fallback - ask the backend to pick agents directly. Matches carry
   confidence 60 and trigger kind "llm_direct".

Instructions are emitted in rule order, one per (rule, target agent) pair.
An agent reached through two rules appears twice, once per trigger.

Backend failures always propagate as ClassificationError subclasses so
callers can tell "nothing relevant" from "inference unavailable".
"""

import logging
from typing import List, Optional, Sequence

from agent_router.conditions import ConditionEvaluator, MatchContext
from agent_router.config import RoutingOptions
from agent_router.errors import BackendMalformedResponse, ConfigError
from agent_router.lifecycle import BackendLifecycleManager
from agent_router.models import ClassificationRequest, RoutingConfig, RoutingInstruction, Trigger
from agent_router.semantic import SemanticClassifier

logger = logging.getLogger(__name__)

# Confidence tiers
DETERMINISTIC_CONFIDENCE = 100
TAG_CONFIDENCE = 85
FALLBACK_CONFIDENCE = 60

LLM_DIRECT_TRIGGER = "llm_direct"


class ClassificationOrchestrator:
    """
    Runs the routing pipeline against a loaded RoutingConfig.

    The evaluator (and its PatternCache) and the lifecycle manager are
    process-wide and shared; the orchestrator itself holds no per-request
    state.
    """

    def __init__(
        self,
        evaluator: ConditionEvaluator,
        lifecycle: BackendLifecycleManager,
        semantic: SemanticClassifier,
        options: Optional[RoutingOptions] = None,
    ):
        self.evaluator = evaluator
        self.lifecycle = lifecycle
        self.semantic = semantic
        self.options = options or RoutingOptions()

    def match_rules(
        self,
        config: RoutingConfig,
        context: MatchContext,
        confidence: int,
        prefer_kind: Optional[str] = None,
    ) -> List[RoutingInstruction]:
        """
        Evaluate every rule and build one instruction per matched target.

        Args:
            config: Validated routing config
            context: Facts to evaluate against
            confidence: Confidence assigned to every produced instruction
            prefer_kind: Leaf kind to report as the trigger when several fired

        Returns:
            Instructions in rule order
        """
        instructions: List[RoutingInstruction] = []
        for rule in config.rules:
            trace = self.evaluator.match(rule.condition, context, rule=rule.description)
            if trace is None:
                continue

            kind, value = trace.primary(prefer_kind) or ("rule", rule.description)
            trigger = Trigger(kind=kind, value=value, rule=rule.description)
            for target in rule.targets:
                agent = config.get_agent(target)
                if agent is None:
                    raise ConfigError(f"Rule '{rule.description}' routes to unknown agent '{target}'", rule=rule.description)
                instructions.append(
                    RoutingInstruction(trigger=trigger, agent=agent, confidence=confidence, files=tuple(trace.files))
                )
        return instructions

    def _declared(self, names: Sequence[str], declared: Sequence[str], what: str) -> List[str]:
        declared_set = set(declared)
        unknown = [n for n in names if n not in declared_set]
        if unknown:
            if self.options.strict_tags:
                raise BackendMalformedResponse(f"Backend returned undeclared {what}: {', '.join(unknown)}")
            logger.warning(f"Discarding undeclared {what} from backend: {unknown}")
        return [n for n in dict.fromkeys(names) if n in declared_set]

    async def classify(self, request: ClassificationRequest, config: RoutingConfig) -> List[RoutingInstruction]:
        """
        Route a request to agents.

        Args:
            request: Task, intent, optional prompt/files/branch
            config: Validated routing config

        Returns:
            Routing instructions (empty if nothing is relevant)

        Raises:
            InvalidRequest: If the request exceeds an input limit
            PrerequisiteError: If rules were inconclusive and the backend is not ready
            BackendUnavailable: If the backend cannot be reached
            BackendMalformedResponse: If a backend reply cannot be interpreted
        """
        request.validate()
        context = request.to_context()

        # Stage 1-2: deterministic rules, gate on any match
        instructions = self.match_rules(config, context, DETERMINISTIC_CONFIDENCE)
        if instructions:
            logger.info(f"Rule-based classification: {len(instructions)} instructions")
            return instructions

        # Stage 3: semantic tagging
        await self.lifecycle.ensure_ready()
        tags = self._declared(await self.semantic.select_tags(request, config.tags), config.tag_names, "tags")
        logger.info(f"LLM identified tags: {tags}")

        # Stage 4: tag rules
        if tags:
            instructions = self.match_rules(config, context.with_tags(tags), TAG_CONFIDENCE, prefer_kind="tag")
            if instructions:
                logger.info(f"Tag-based classification: {len(instructions)} instructions")
                return instructions

        # Stage 5: direct agent selection
        if not self.options.fallback_enabled:
            logger.info("No rules matched and fallback is disabled")
            return []

        agent_names = [agent.name for agent in config.agents]
        selected = self._declared(await self.semantic.select_agents(request, config.agents), agent_names, "agents")
        trigger = Trigger(kind=LLM_DIRECT_TRIGGER, value="direct agent selection")
        instructions = [
            RoutingInstruction(trigger=trigger, agent=config.get_agent(name), confidence=FALLBACK_CONFIDENCE, files=context.files)
            for name in selected
        ]
        logger.info(f"Direct classification: {len(instructions)} instructions")
        return instructions
