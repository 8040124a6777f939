"""
Routing config loader.

Reads agents.json, rules.json and llm-tags.json, builds the typed records and
runs the validator. Configs are loaded fresh for every classification request,
so edits take effect without a restart.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from agent_router.conditions import DEFAULT_MAX_DEPTH
from agent_router.config import ConfigPaths
from agent_router.errors import ConfigError
from agent_router.models import Agent, Rule, RoutingConfig, TagDefinition
from agent_router.pattern_cache import PatternCache
from agent_router.validator import validate_config

logger = logging.getLogger(__name__)

# Maximum config file size (1 MiB)
MAX_CONFIG_FILE_SIZE = 1_048_576


def read_json_config(path: Path, key: str) -> list:
    """
    Read one JSON config file and return the list stored under key.

    Args:
        path: Path to a .json file
        key: Top-level key holding the records ("agents", "rules", "tags")

    Raises:
        ConfigError: If the file is missing, not .json, too large, not valid
            JSON, or lacks the expected list
    """
    path = Path(path)
    if path.suffix != ".json":
        raise ConfigError(f"Config files must have .json extension: {path}")

    try:
        size = path.stat().st_size
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e
    if size > MAX_CONFIG_FILE_SIZE:
        raise ConfigError(f"Config file too large: {size} bytes (max: {MAX_CONFIG_FILE_SIZE} bytes): {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data: Any = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse {key} config from {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read {key} config from {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get(key), list):
        raise ConfigError(f"Invalid {key} config in {path}: expected an object with a '{key}' list")
    return data[key]


def load_routing_config(
    paths: ConfigPaths,
    pattern_cache: PatternCache,
    max_depth: Optional[int] = None,
) -> RoutingConfig:
    """
    Load and validate agents, rules and tags.

    Args:
        paths: Locations of the three JSON files
        pattern_cache: Shared cache; validation pre-compiles every pattern into it
        max_depth: Maximum condition nesting depth

    Returns:
        Validated RoutingConfig

    Raises:
        ConfigError: On any file, shape, or consistency problem
    """
    if max_depth is None:
        max_depth = DEFAULT_MAX_DEPTH

    agents = tuple(Agent.from_dict(a) for a in read_json_config(paths.agents, "agents"))
    tags = tuple(TagDefinition.from_dict(t) for t in read_json_config(paths.tags, "tags"))
    rules = tuple(
        Rule.from_dict(r, index=i, max_depth=max_depth)
        for i, r in enumerate(read_json_config(paths.rules, "rules"), start=1)
    )

    config = RoutingConfig(agents=agents, rules=rules, tags=tags)
    validate_config(config, pattern_cache, max_depth=max_depth)
    logger.debug(f"Configs loaded: {len(agents)} agents, {len(tags)} tags, {len(rules)} rules")
    return config
