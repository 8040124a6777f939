"""Tests for the AgentRouter service wiring."""

import json

import pytest

from agent_router.errors import ConfigError, PrerequisiteError
from agent_router.models import ClassificationRequest
from agent_router.service import AgentRouter


@pytest.fixture
def make_router(router_config, make_backend):
    def factory(branch=None, **backend_flags):
        backend = make_backend(**backend_flags)
        return AgentRouter(router_config, backend=backend, branch_detector=lambda: branch), backend

    return factory


class TestAgentRouter:
    """Tests for AgentRouter."""

    def test_settings_from_config(self, make_router):
        """Settings, options and paths come from the config dictionary."""
        router, _ = make_router()

        assert router.settings.effective_model_name == "qwen3:0.6b"
        assert router.options.fallback_enabled is True
        assert router.paths.agents.name == "agents.json"
        assert router.lifecycle.start_timeout == 1.0

    @pytest.mark.asyncio
    async def test_classify_deterministic(self, make_router):
        """A file match routes without the backend."""
        router, backend = make_router(running=False)

        instructions = await router.classify(
            ClassificationRequest(task="t", intent="i", associated_files=["src/auth.ts"])
        )

        assert len(instructions) == 2
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_branch_detected_when_missing(self, make_router, config_dir):
        """Requests without a branch get the detected one."""
        (config_dir / "rules.json").write_text(
            json.dumps(
                {
                    "rules": [
                        {
                            "description": "Release",
                            "conditions": {"branch_regex": "^release/"},
                            "route_to_subagents": ["code-reviewer"],
                        }
                    ]
                }
            )
        )
        router, _ = make_router(branch="release/2.0")
        request = ClassificationRequest(task="t", intent="i")

        instructions = await router.classify(request)

        assert request.branch == "release/2.0"
        assert instructions[0].trigger.kind == "branch_regex"

    @pytest.mark.asyncio
    async def test_config_reloaded_per_request(self, make_router, config_dir):
        """A broken config file is noticed on the next request."""
        router, _ = make_router()
        await router.classify(ClassificationRequest(task="t", intent="i", associated_files=["src/auth.ts"]))
        (config_dir / "agents.json").write_text("{broken")

        with pytest.raises(ConfigError):
            await router.classify(ClassificationRequest(task="t", intent="i", associated_files=["src/auth.ts"]))

    @pytest.mark.asyncio
    async def test_initialize_then_classify(self, make_router):
        """After init, semantic stages can run."""
        router, backend = make_router(running=False, has_model=False, loaded=False)
        backend.replies = ["1"]
        with pytest.raises(PrerequisiteError):
            await router.classify(ClassificationRequest(task="Rotate keys", intent="security"))

        report = await router.initialize_backend()
        instructions = await router.classify(ClassificationRequest(task="Rotate keys", intent="security"))

        assert report.success
        assert [i.confidence for i in instructions] == [85]
