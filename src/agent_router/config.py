"""Agent Router Configuration

Configuration loading with environment variable support and sensible defaults.

Environment Variables:
    AGENT_ROUTER_CONFIG_PATH: Path to config file (default: agent-router.yaml in working dir)
    AGENT_ROUTER_LOG_LEVEL: Override server log level
    OLLAMA_URL: Inference backend URL (default: http://localhost:11434)
    MODEL_NAME: Model to route with (default: ggml-org/SmolLM3-3B-GGUF)
    MODEL_SOURCE: "huggingface" to force HuggingFace model naming
    THINKING_MODE: "false" or "0" disables thinking for capable models
    TEMPERATURE: Sampling temperature override, clamped to [0.0, 1.0]
    AGENTS_CONFIG_PATH: Agents file (default: ./config/agents.json)
    RULES_CONFIG_PATH: Rules file (default: ./config/rules.json)
    LLM_TAGS_CONFIG_PATH: Tags file (default: ./config/llm-tags.json)

Configuration Schema:
    backend:
        url: str - Ollama base URL
        model: str - Model name (hf.co/ prefix selects HuggingFace)
        model_source: str | None - "ollama" | "huggingface" | None (auto-detect)
        thinking_mode: bool - Use thinking for models that support it
        temperature: float | None - None uses per-call defaults (0.1 tags, 0.3 agents)
        request_timeout: float - Seconds per inference/probe HTTP call
        start_timeout: float - Seconds to wait for `ollama serve`
        pull_timeout: float - Seconds to wait for `ollama pull`
        load_timeout: float - Seconds to wait for the warm-up load
        poll_interval: float - Seconds between liveness polls while starting
        retry_attempts: int - Attempts for transient inference network errors
        retry_backoff: float - Linear backoff step between attempts
    routing:
        max_depth: int - Maximum condition nesting depth
        strict_tags: bool - Fail on undeclared tag names instead of discarding them
        fallback_enabled: bool - Run direct agent selection when no rule matches
    paths:
        agents / rules / tags: str - JSON config files
    server:
        log_level: str - Logging level (default: "INFO")
"""

import copy
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from agent_router.conditions import DEFAULT_MAX_DEPTH
from agent_router.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "agent-router.yaml"
HF_PREFIX = "hf.co/"

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "backend": {
        "url": "http://localhost:11434",
        "model": "ggml-org/SmolLM3-3B-GGUF",
        "model_source": None,  # Auto-detect from model name
        "thinking_mode": True,
        "temperature": None,
        "request_timeout": 60.0,
        "start_timeout": 30.0,
        "pull_timeout": 1800.0,
        "load_timeout": 300.0,
        "poll_interval": 0.5,
        "retry_attempts": 3,
        "retry_backoff": 0.5,
    },
    "routing": {
        "max_depth": DEFAULT_MAX_DEPTH,
        "strict_tags": False,
        "fallback_enabled": True,
    },
    "paths": {
        "agents": "./config/agents.json",
        "rules": "./config/rules.json",
        "tags": "./config/llm-tags.json",
    },
    "server": {
        "log_level": "INFO",
    },
}

# (env var, section, key)
ENV_OVERRIDES = [
    ("OLLAMA_URL", "backend", "url"),
    ("MODEL_NAME", "backend", "model"),
    ("MODEL_SOURCE", "backend", "model_source"),
    ("AGENTS_CONFIG_PATH", "paths", "agents"),
    ("RULES_CONFIG_PATH", "paths", "rules"),
    ("LLM_TAGS_CONFIG_PATH", "paths", "tags"),
    ("AGENT_ROUTER_LOG_LEVEL", "server", "log_level"),
]

# Models known to accept the `think` parameter
THINKING_CAPABLE_MODELS = [
    "deepseek-r1",
    "qwen3",
    "qwen2.5",
    "cogito",
    "exaone-deep",
    "qwq",
    "marco-o1",
    "aya-expanse",
]


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge override dict into base dict.

    Args:
        base: Base dictionary (defaults)
        override: Override dictionary (user config)

    Returns:
        Merged dictionary with override values taking precedence
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _resolve_path(path: Optional[str], base_dir: Path) -> Optional[Path]:
    """
    Resolve a path, making relative paths absolute from base_dir.

    Args:
        path: Path string (absolute or relative) or None
        base_dir: Base directory for relative path resolution

    Returns:
        Resolved absolute Path or None if path was None
    """
    if path is None:
        return None

    path_obj = Path(path)
    if path_obj.is_absolute():
        return path_obj
    return (base_dir / path_obj).resolve()


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"top-level value must be a mapping, got {type(data).__name__}")
    return data


def _parse_bool(value: str) -> bool:
    return value.strip().lower() not in ("false", "0")


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    for env_var, section, key in ENV_OVERRIDES:
        value = os.environ.get(env_var)
        if value:
            config.setdefault(section, {})[key] = value
            logger.debug(f"{section}.{key} override from env {env_var}")

    thinking = os.environ.get("THINKING_MODE")
    if thinking is not None:
        config["backend"]["thinking_mode"] = _parse_bool(thinking)

    temperature = os.environ.get("TEMPERATURE")
    if temperature:
        try:
            config["backend"]["temperature"] = float(temperature)
        except ValueError:
            logger.warning(f"Ignoring invalid TEMPERATURE value: {temperature!r}")

    return config


def load_config(
    config_path: Optional[str] = None,
    base_dir: Optional[Path] = None
) -> Dict[str, Any]:
    """
    Load configuration from YAML file with environment variable overrides.

    Configuration Loading Order (later overrides earlier):
    1. Default values (DEFAULT_CONFIG)
    2. Config file (from config_path parameter or AGENT_ROUTER_CONFIG_PATH)
    3. Environment variable overrides (OLLAMA_URL, MODEL_NAME, ...)

    Args:
        config_path: Explicit config file path (overrides AGENT_ROUTER_CONFIG_PATH)
        base_dir: Directory for relative path resolution (default: cwd)

    Returns:
        Merged configuration dictionary with resolved file paths

    Raises:
        ConfigError: If an explicit config file is invalid YAML or unreadable

    Examples:
        # Load with defaults (no config file required)
        config = load_config()

        # Load from specific file
        config = load_config("/path/to/agent-router.yaml")
    """
    if base_dir is None:
        base_dir = Path.cwd()

    config = copy.deepcopy(DEFAULT_CONFIG)

    file_path = config_path or os.environ.get("AGENT_ROUTER_CONFIG_PATH")

    if file_path:
        # Explicit config path - must be valid if it exists
        resolved_path = _resolve_path(file_path, base_dir)
        if resolved_path and resolved_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(resolved_path))
                logger.info(f"Loaded configuration from: {resolved_path}")
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in config file: {e}") from e
            except IOError as e:
                raise ConfigError(f"Cannot read config file: {e}") from e
        else:
            logger.warning(f"Config file not found (using defaults): {file_path}")
    else:
        default_config_path = base_dir / DEFAULT_CONFIG_FILENAME
        if default_config_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(default_config_path))
                logger.info(f"Loaded configuration from: {default_config_path}")
            except yaml.YAMLError as e:
                logger.warning(f"Invalid YAML in default config (ignoring): {e}")
            except IOError as e:
                logger.warning(f"Cannot read default config (ignoring): {e}")
        else:
            logger.debug("No config file found, using defaults")

    config = _apply_env_overrides(config)

    for key, value in list(config.get("paths", {}).items()):
        resolved = _resolve_path(value, base_dir)
        config["paths"][key] = str(resolved) if resolved else None

    return config


# =============================================================================
# Typed views over the config dictionary
# =============================================================================


class ModelSource(str, Enum):
    """Where the model is published; affects the name sent to Ollama."""

    OLLAMA = "ollama"
    HUGGINGFACE = "huggingface"


@dataclass(frozen=True)
class BackendSettings:
    """Inference backend settings."""

    url: str
    model_name: str  # Stored without the hf.co/ prefix
    model_source: ModelSource
    thinking_mode: bool = True
    temperature: Optional[float] = None
    request_timeout: float = 60.0
    start_timeout: float = 30.0
    pull_timeout: float = 1800.0
    load_timeout: float = 300.0
    poll_interval: float = 0.5
    retry_attempts: int = 3
    retry_backoff: float = 0.5

    @property
    def effective_model_name(self) -> str:
        """Model name as Ollama knows it (hf.co/ prefix for HuggingFace models)."""
        if self.model_source == ModelSource.HUGGINGFACE:
            return f"{HF_PREFIX}{self.model_name}"
        return self.model_name

    @property
    def supports_thinking(self) -> bool:
        model_lower = self.model_name.lower()
        return any(m in model_lower for m in THINKING_CAPABLE_MODELS)

    @property
    def should_use_thinking(self) -> bool:
        return self.thinking_mode and self.supports_thinking

    @property
    def browse_url(self) -> str:
        if self.model_source == ModelSource.HUGGINGFACE:
            return "https://huggingface.co/models?library=gguf"
        return "https://ollama.com/library"

    @property
    def is_local(self) -> bool:
        return self.url.startswith("http://localhost") or self.url.startswith("http://127.0.0.1")


def detect_model_source(model_name: str, model_source: Optional[str] = None) -> tuple:
    """
    Determine the model source and the stored model name.

    Rules (first match wins):
    1. Name starts with "hf.co/" => HuggingFace (prefix stripped)
    2. model_source is "huggingface" => HuggingFace
    3. Name is "org/repo" without a ":" tag => HuggingFace
    4. Otherwise => Ollama

    Returns:
        (ModelSource, model_name)
    """
    if model_name.startswith(HF_PREFIX):
        return ModelSource.HUGGINGFACE, model_name[len(HF_PREFIX):]
    if model_source and model_source.lower() == ModelSource.HUGGINGFACE.value:
        return ModelSource.HUGGINGFACE, model_name
    if "/" in model_name and ":" not in model_name:
        return ModelSource.HUGGINGFACE, model_name
    return ModelSource.OLLAMA, model_name


def get_backend_settings(config: Dict[str, Any]) -> BackendSettings:
    """
    Extract backend settings from a config dictionary.

    Args:
        config: Configuration dictionary from load_config()

    Returns:
        BackendSettings with model source detected and temperature clamped
    """
    backend = config.get("backend", {})
    source, model_name = detect_model_source(str(backend["model"]), backend.get("model_source"))

    temperature = backend.get("temperature")
    if temperature is not None:
        temperature = min(max(float(temperature), 0.0), 1.0)

    settings = BackendSettings(
        url=str(backend["url"]).rstrip("/"),
        model_name=model_name,
        model_source=source,
        thinking_mode=bool(backend.get("thinking_mode", True)),
        temperature=temperature,
        request_timeout=float(backend.get("request_timeout", 60.0)),
        start_timeout=float(backend.get("start_timeout", 30.0)),
        pull_timeout=float(backend.get("pull_timeout", 1800.0)),
        load_timeout=float(backend.get("load_timeout", 300.0)),
        poll_interval=float(backend.get("poll_interval", 0.5)),
        retry_attempts=max(1, int(backend.get("retry_attempts", 3))),
        retry_backoff=float(backend.get("retry_backoff", 0.5)),
    )

    if not settings.is_local:
        logger.warning(
            f"OLLAMA_URL is not localhost: {settings.url}. "
            "Only use remote Ollama instances you trust."
        )
    return settings


@dataclass(frozen=True)
class RoutingOptions:
    """Classification pipeline options."""

    max_depth: int = DEFAULT_MAX_DEPTH
    strict_tags: bool = False
    fallback_enabled: bool = True


def get_routing_options(config: Dict[str, Any]) -> RoutingOptions:
    """Extract routing pipeline options from a config dictionary."""
    routing = config.get("routing", {})
    return RoutingOptions(
        max_depth=int(routing.get("max_depth", DEFAULT_MAX_DEPTH)),
        strict_tags=bool(routing.get("strict_tags", False)),
        fallback_enabled=bool(routing.get("fallback_enabled", True)),
    )


@dataclass(frozen=True)
class ConfigPaths:
    """Locations of the agents, rules and tags JSON files."""

    agents: Path
    rules: Path
    tags: Path


def get_config_paths(config: Dict[str, Any]) -> ConfigPaths:
    """Extract routing config file paths from a config dictionary."""
    paths = config.get("paths", {})
    defaults = DEFAULT_CONFIG["paths"]
    return ConfigPaths(
        agents=Path(paths.get("agents") or defaults["agents"]),
        rules=Path(paths.get("rules") or defaults["rules"]),
        tags=Path(paths.get("tags") or defaults["tags"]),
    )
