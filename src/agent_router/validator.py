"""
Rule & Config Validator

Structural integrity checks for a loaded RoutingConfig. Runs once per config
load, before any request is served; every violation is fatal.

Checks:
1. Agent names are non-empty and unique
2. Tag names are non-empty and unique
3. Every rule routes to at least one agent, and every target is a known agent
4. Every rule's condition tree contains at least one leaf
5. Every condition tree is within the nesting limit
6. Every glob/regex pattern compiles (via the shared PatternCache)
7. Every tag a rule references is declared
"""

import logging
from typing import Optional

from agent_router.conditions import (
    DEFAULT_MAX_DEPTH,
    PATTERN_LEAF_KINDS,
    Tag,
    condition_depth,
    iter_leaves,
)
from agent_router.errors import ConfigError, RuleTooComplex
from agent_router.models import RoutingConfig, Rule
from agent_router.pattern_cache import PatternCache

logger = logging.getLogger(__name__)


def _check_unique_names(names: list, record: str) -> None:
    seen = set()
    for name in names:
        if not name or not name.strip():
            raise ConfigError(f"{record} name cannot be empty")
        if name in seen:
            raise ConfigError(f"Duplicate {record.lower()} name: {name}")
        seen.add(name)


def validate_rule(
    rule: Rule,
    agent_names: set,
    tag_names: set,
    pattern_cache: PatternCache,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> None:
    """
    Validate a single rule against the declared agents and tags.

    Raises:
        ConfigError: On unknown agents/tags, missing targets, or a leafless tree
        RuleTooComplex: If the condition tree is nested too deeply
        PatternError: If a pattern fails to compile
    """
    name = rule.description

    if not rule.targets:
        raise ConfigError(f"Rule '{name}' must route to at least one agent", rule=name)
    for target in rule.targets:
        if not target.strip():
            raise ConfigError(f"Rule '{name}' has an empty agent name", rule=name)
        if target not in agent_names:
            raise ConfigError(f"Rule '{name}' routes to unknown agent '{target}'", rule=name)

    if condition_depth(rule.condition) > max_depth:
        raise RuleTooComplex(max_depth, rule=name)

    leaves = list(iter_leaves(rule.condition))
    if not leaves:
        raise ConfigError(f"Rule '{name}' has no conditions (needs at least one leaf condition)", rule=name)

    for leaf in leaves:
        if isinstance(leaf, Tag):
            if leaf.name not in tag_names:
                raise ConfigError(f"Rule '{name}' references undeclared tag '{leaf.name}'", rule=name)
        else:
            pattern_cache.compile(leaf.pattern, PATTERN_LEAF_KINDS[type(leaf)], rule=name)


def validate_config(
    config: RoutingConfig,
    pattern_cache: PatternCache,
    max_depth: Optional[int] = None,
) -> RoutingConfig:
    """
    Validate a complete routing configuration.

    Args:
        config: Loaded agents, rules and tags
        pattern_cache: Shared cache used to compile (and pre-warm) every pattern
        max_depth: Maximum condition nesting depth (default: DEFAULT_MAX_DEPTH)

    Returns:
        The same config, for chaining

    Raises:
        ConfigError: On any structural violation (PatternError and
            RuleTooComplex are ConfigError subclasses)

    Examples:
        config = validate_config(load_routing_config(paths), cache)
    """
    if max_depth is None:
        max_depth = DEFAULT_MAX_DEPTH

    if not config.agents:
        raise ConfigError("Agent configuration must contain at least one agent")

    agent_names = [agent.name for agent in config.agents]
    _check_unique_names(agent_names, "Agent")
    tag_names = config.tag_names
    _check_unique_names(tag_names, "Tag")

    if not config.rules:
        logger.warning("Rule configuration is empty; only backend classification can route")

    for rule in config.rules:
        validate_rule(rule, set(agent_names), set(tag_names), pattern_cache, max_depth)

    logger.debug(
        f"Configuration valid: {len(config.agents)} agents, "
        f"{len(config.rules)} rules, {len(config.tags)} tags"
    )
    return config
