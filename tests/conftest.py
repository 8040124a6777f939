"""Shared pytest fixtures for agent-router tests.

Unit tests never talk to a real Ollama: backend HTTP goes through
httpx.MockTransport and lifecycle tests use FakeBackend.
"""

import asyncio
import json
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from agent_router.config import BackendSettings, ConfigPaths, ModelSource
from agent_router.pattern_cache import PatternCache

# =============================================================================
# Sample Configuration
# =============================================================================

SAMPLE_AGENTS = [
    {
        "name": "security-reviewer",
        "description": "Reviews authentication and secrets handling",
        "instructions": "Check token handling.",
        "priority": 80,
    },
    {"name": "code-reviewer", "description": "General code review", "priority": 50},
    {"name": "docs-writer", "description": "Writes documentation", "priority": 30},
]

SAMPLE_RULES = [
    {
        "description": "Auth changes",
        "conditions": {"file_pattern": "src/auth*"},
        "route_to_subagents": ["security-reviewer", "code-reviewer"],
    },
    {
        "description": "Security requests",
        "conditions": {"llm_tag": "security"},
        "route_to_subagents": ["security-reviewer"],
    },
]

SAMPLE_TAGS = [
    {"name": "security", "description": "Touches auth or secrets", "examples": ["rotate keys"]},
    {"name": "docs", "description": "Documentation work"},
]


def write_json(path: Path, key: str, records: list) -> Path:
    path.write_text(json.dumps({key: records}))
    return path


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Directory with valid agents.json, rules.json and llm-tags.json."""
    write_json(tmp_path / "agents.json", "agents", SAMPLE_AGENTS)
    write_json(tmp_path / "rules.json", "rules", SAMPLE_RULES)
    write_json(tmp_path / "llm-tags.json", "tags", SAMPLE_TAGS)
    return tmp_path


@pytest.fixture
def config_paths(config_dir: Path) -> ConfigPaths:
    """ConfigPaths pointing at the sample configuration."""
    return ConfigPaths(
        agents=config_dir / "agents.json",
        rules=config_dir / "rules.json",
        tags=config_dir / "llm-tags.json",
    )


@pytest.fixture
def router_config(config_dir: Path) -> dict:
    """load_config()-shaped dictionary pointing at the sample configuration."""
    return {
        "backend": {
            "url": "http://localhost:11434",
            "model": "qwen3:0.6b",
            "model_source": None,
            "thinking_mode": False,
            "temperature": None,
            "request_timeout": 5.0,
            "start_timeout": 1.0,
            "pull_timeout": 5.0,
            "load_timeout": 5.0,
            "poll_interval": 0.01,
            "retry_attempts": 2,
            "retry_backoff": 0.0,
        },
        "routing": {"max_depth": 32, "strict_tags": False, "fallback_enabled": True},
        "paths": {
            "agents": str(config_dir / "agents.json"),
            "rules": str(config_dir / "rules.json"),
            "tags": str(config_dir / "llm-tags.json"),
        },
        "server": {"log_level": "INFO"},
    }


@pytest.fixture
def pattern_cache() -> PatternCache:
    """Fresh pattern cache."""
    return PatternCache()


@pytest.fixture
def backend_settings() -> BackendSettings:
    """Local Ollama settings with short timeouts."""
    return BackendSettings(
        url="http://localhost:11434",
        model_name="qwen3:0.6b",
        model_source=ModelSource.OLLAMA,
        thinking_mode=False,
        request_timeout=5.0,
        start_timeout=1.0,
        pull_timeout=5.0,
        load_timeout=5.0,
        poll_interval=0.01,
        retry_attempts=2,
        retry_backoff=0.0,
    )


# =============================================================================
# Fake Backend
# =============================================================================


class FakeBackend:
    """In-memory stand-in for OllamaBackend.

    State flags describe the world; action methods flip them and count calls.
    generate() returns queued replies in order (or raises queued exceptions).
    """

    def __init__(
        self,
        settings: BackendSettings,
        installed: bool = True,
        running: bool = True,
        has_model: bool = True,
        loaded: bool = True,
        replies: Optional[List[object]] = None,
        action_delay: float = 0.0,
    ):
        self.settings = settings
        self.installed = installed
        self.running = running
        self.model_present = has_model
        self.loaded = loaded
        self.replies = list(replies or [])
        self.action_delay = action_delay
        self.start_on_spawn = True
        self.serve_exit_code: Optional[int] = None
        self.pull_error: Optional[Exception] = None
        self.calls: List[str] = []
        self.prompts: List[str] = []

    @property
    def model(self) -> str:
        return self.settings.effective_model_name

    async def _delay(self) -> None:
        if self.action_delay:
            await asyncio.sleep(self.action_delay)

    async def is_installed(self) -> bool:
        return self.installed

    async def is_running(self) -> bool:
        return self.running

    async def has_model(self) -> bool:
        return self.model_present

    async def is_loaded(self) -> bool:
        return self.loaded

    async def start(self) -> None:
        self.calls.append("start")
        await self._delay()
        if self.start_on_spawn:
            self.running = True

    def serve_exited(self) -> Optional[int]:
        return self.serve_exit_code

    async def pull(self, on_progress: Optional[Callable[[int], None]] = None) -> None:
        self.calls.append("pull")
        await self._delay()
        if self.pull_error is not None:
            raise self.pull_error
        for percent in (10, 50, 100):
            if on_progress:
                on_progress(percent)
        self.model_present = True

    async def load(self) -> None:
        self.calls.append("load")
        await self._delay()
        self.loaded = True

    async def generate(self, prompt: str, temperature: float) -> str:
        self.calls.append("generate")
        self.prompts.append(prompt)
        if not self.replies:
            raise AssertionError("generate() called with no queued reply")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def aclose(self) -> None:
        pass


@pytest.fixture
def make_backend(backend_settings: BackendSettings) -> Callable[..., FakeBackend]:
    """Factory for FakeBackend instances sharing the test settings."""

    def factory(**kwargs) -> FakeBackend:
        return FakeBackend(backend_settings, **kwargs)

    return factory
