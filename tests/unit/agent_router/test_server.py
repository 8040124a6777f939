"""Tests for the MCP tool functions."""

import pytest

from agent_router import server
from agent_router.errors import NotInstalled
from agent_router.service import AgentRouter


class FakeContext:
    """Collects progress notifications."""

    def __init__(self):
        self.progress = []

    async def report_progress(self, progress, total=None):
        self.progress.append((progress, total))


@pytest.fixture
def install_router(router_config, make_backend):
    """Install a router backed by a FakeBackend as the server's router."""
    installed = []

    def factory(**backend_flags):
        backend = make_backend(**backend_flags)
        router = AgentRouter(router_config, backend=backend, branch_detector=lambda: None)
        server.set_router(router)
        installed.append(router)
        return router, backend

    yield factory
    server.set_router(None)


class TestGetInstructions:
    """Tests for the get_instructions tool."""

    @pytest.mark.asyncio
    async def test_returns_wire_format(self, install_router):
        """Instructions are serialized with trigger, context and agent."""
        install_router()

        result = await server.get_instructions(
            task="Refactor login", intent="review", associated_files=["src/auth.ts"]
        )

        assert result["count"] == 2
        first = result["instructions"][0]
        assert first["route_to_agent"]["name"] == "security-reviewer"
        assert first["context"]["confidence"] == 100
        assert first["context"]["priority"] == 80
        assert first["trigger"]["rule"] == "Auth changes"

    @pytest.mark.asyncio
    async def test_backend_not_ready_error_payload(self, install_router):
        """Backend prerequisites are reported as a typed error payload."""
        install_router(running=False)

        result = await server.get_instructions(task="t", intent="i")

        assert result["instructions"] == []
        assert result["error_type"] == "PrerequisiteError"
        assert result["step"] == "start"
        assert "init_llm" in result["remediation"]

    @pytest.mark.asyncio
    async def test_invalid_request_payload(self, install_router):
        """Input limit violations are reported, not raised."""
        install_router()

        result = await server.get_instructions(task="t", intent="i", associated_files=["x"] * 101)

        assert result["error_type"] == "InvalidRequest"


class TestInitLlm:
    """Tests for the init_llm tool."""

    @pytest.mark.asyncio
    async def test_success_with_progress(self, install_router):
        """A download reports progress and the steps performed."""
        install_router(has_model=False)
        ctx = FakeContext()

        result = await server.init_llm(ctx)

        assert result["success"] is True
        assert "Downloaded model qwen3:0.6b" in result["steps_performed"]
        assert ctx.progress == [(10, 100), (50, 100), (100, 100)]

    @pytest.mark.asyncio
    async def test_failure_payload(self, install_router):
        """Lifecycle failures return success False with the failed step."""
        install_router(installed=False, running=False)

        result = await server.init_llm(FakeContext())

        assert result["success"] is False
        assert result["error_type"] == NotInstalled.__name__
        assert result["step"] == "install"
        assert result["steps_performed"] == []


class TestGetHealth:
    """Tests for the get_health tool."""

    @pytest.mark.asyncio
    async def test_reports_overall(self, install_router):
        """The aggregated report is returned."""
        install_router()

        result = await server.get_health()

        assert result["overall"] == "healthy"
