"""Tests for the Ollama backend client.

HTTP is served by httpx.MockTransport; CLI calls are replaced with fake
processes so no ollama binary is needed.
"""

import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from agent_router.errors import (
    BackendMalformedResponse,
    BackendUnavailable,
    LifecycleTimeout,
    LoadFailed,
    PullFailed,
)
from agent_router.ollama import OllamaBackend, model_matches, parse_percentage


def make_backend(settings, handler) -> OllamaBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=settings.url)
    return OllamaBackend(settings, client=client)


def refuse(request):
    raise httpx.ConnectError("Connection refused", request=request)


class FakeStream:
    def __init__(self, chunks):
        self.chunks = [c.encode() for c in chunks]

    async def read(self, n):
        return self.chunks.pop(0) if self.chunks else b""


class FakeProcess:
    def __init__(self, chunks, returncode=0):
        self.stderr = FakeStream(chunks)
        self.returncode = returncode

    async def wait(self):
        return self.returncode

    def kill(self):
        pass


class HangingProcess:
    """A child that never exits on its own; kill() ends it."""

    def __init__(self):
        self.returncode = None
        self.killed = False
        self.reaped = False
        self.stderr = self
        self._exited = asyncio.Event()

    async def read(self, n):
        await self._exited.wait()
        return b""

    async def wait(self):
        await self._exited.wait()
        self.reaped = True
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9
        self._exited.set()


def fake_exec(process, calls):
    async def create_subprocess_exec(*args, **kwargs):
        calls.append(args)
        return process

    return create_subprocess_exec


class TestHelpers:
    """Tests for module-level helpers."""

    def test_parse_percentage(self):
        """Percentages are read from pull output lines."""
        assert parse_percentage("pulling 8eeb52dfb3bb...  45% ▕██    ▏ 1.2 GB") == 45
        assert parse_percentage("verifying sha256 digest") is None
        assert parse_percentage("x 250%") == 100

    def test_model_matches_any_tag(self):
        """Inventory entries match by exact name or by base name with a tag."""
        assert model_matches("qwen3:0.6b", "qwen3:0.6b")
        assert model_matches("hf.co/org/model:latest", "hf.co/org/model")
        assert not model_matches("llama3:8b", "qwen3:0.6b")


class TestProbes:
    """Tests for liveness and inventory probes."""

    @pytest.mark.asyncio
    async def test_is_running_true(self, backend_settings):
        """A 200 from /api/tags means running."""
        backend = make_backend(backend_settings, lambda r: httpx.Response(200, json={"models": []}))

        assert await backend.is_running() is True

    @pytest.mark.asyncio
    async def test_is_running_false_when_refused(self, backend_settings):
        """Connection errors mean not running, never an exception."""
        backend = make_backend(backend_settings, refuse)

        assert await backend.is_running() is False

    @pytest.mark.asyncio
    async def test_has_model_and_is_loaded(self, backend_settings):
        """Inventory comes from /api/tags, the loaded set from /api/ps."""

        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": [{"name": "qwen3:0.6b"}]})
            return httpx.Response(200, json={"models": []})

        backend = make_backend(backend_settings, handler)

        assert await backend.has_model() is True
        assert await backend.is_loaded() is False

    @pytest.mark.asyncio
    async def test_malformed_inventory(self, backend_settings):
        """Entries without names are reported as malformed."""
        backend = make_backend(backend_settings, lambda r: httpx.Response(200, json={"models": [{"size": 1}]}))

        with pytest.raises(BackendMalformedResponse):
            await backend.list_models()

    @pytest.mark.asyncio
    async def test_is_installed_false_without_executable(self, backend_settings):
        """A missing executable means not installed."""
        backend = OllamaBackend(backend_settings, executable="ollama-does-not-exist-here")

        assert await backend.is_installed() is False
        await backend.aclose()

    @pytest.mark.asyncio
    async def test_is_installed_times_out_on_hung_executable(self, backend_settings, monkeypatch):
        """A hung `ollama --version` is killed and reported as not installed."""
        process = HangingProcess()
        monkeypatch.setattr("agent_router.ollama.asyncio.create_subprocess_exec", fake_exec(process, []))
        backend = OllamaBackend(replace(backend_settings, request_timeout=0.05))

        assert await asyncio.wait_for(backend.is_installed(), timeout=2.0) is False
        assert process.killed and process.reaped
        await backend.aclose()


class TestLoad:
    """Tests for OllamaBackend.load."""

    @pytest.mark.asyncio
    async def test_load_sends_warmup_generation(self, backend_settings):
        """Loading posts a one-token generation for the configured model."""
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"response": ""})

        await make_backend(backend_settings, handler).load()

        assert seen[0]["model"] == "qwen3:0.6b"
        assert seen[0]["options"]["num_predict"] == 1
        assert seen[0]["stream"] is False

    @pytest.mark.asyncio
    async def test_load_404_is_load_failed(self, backend_settings):
        """A 404 means the model is not installed."""
        backend = make_backend(backend_settings, lambda r: httpx.Response(404, json={"error": "not found"}))

        with pytest.raises(LoadFailed, match="not installed"):
            await backend.load()

    @pytest.mark.asyncio
    async def test_load_timeout(self, backend_settings):
        """Timeouts surface as LifecycleTimeout for the load step."""

        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(LifecycleTimeout) as exc_info:
            await make_backend(backend_settings, handler).load()

        assert exc_info.value.step == "load"

    @pytest.mark.asyncio
    async def test_load_connection_error(self, backend_settings):
        """Connection errors surface as LoadFailed."""
        with pytest.raises(LoadFailed):
            await make_backend(backend_settings, refuse).load()


class TestGenerate:
    """Tests for OllamaBackend.generate."""

    @pytest.mark.asyncio
    async def test_returns_response_text(self, backend_settings):
        """The response field is returned."""
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"response": "1, 2"})

        result = await make_backend(backend_settings, handler).generate("prompt", 0.1)

        assert result == "1, 2"
        assert seen[0]["options"] == {"temperature": 0.1, "num_predict": 100}
        assert "think" not in seen[0]

    @pytest.mark.asyncio
    async def test_thinking_models_get_larger_budget(self, backend_settings):
        """Thinking-capable models get think=True and a larger token budget."""
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"response": "0", "thinking": "hmm"})

        settings = replace(backend_settings, thinking_mode=True)
        await make_backend(settings, handler).generate("prompt", 0.3)

        assert seen[0]["think"] is True
        assert seen[0]["options"]["num_predict"] == 500

    @pytest.mark.asyncio
    async def test_missing_response_field(self, backend_settings):
        """A body without "response" is malformed."""
        backend = make_backend(backend_settings, lambda r: httpx.Response(200, json={"done": True}))

        with pytest.raises(BackendMalformedResponse):
            await backend.generate("prompt", 0.1)

    @pytest.mark.asyncio
    async def test_http_error_status(self, backend_settings):
        """Server errors mean the backend is unavailable."""
        backend = make_backend(backend_settings, lambda r: httpx.Response(500, text="boom"))

        with pytest.raises(BackendUnavailable):
            await backend.generate("prompt", 0.1)

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, backend_settings):
        """Network failures are left for the caller to retry."""
        with pytest.raises(httpx.ConnectError):
            await make_backend(backend_settings, refuse).generate("prompt", 0.1)


class TestPull:
    """Tests for OllamaBackend.pull."""

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_ends_at_100(self, backend_settings, monkeypatch):
        """Carriage-return progress lines become increasing percentages."""
        calls = []
        process = FakeProcess(["pulling manifest\r", "pulling a... 10%\rpulling a... 5", "0%\r", "pulling a... 30%\n"])
        monkeypatch.setattr("agent_router.ollama.asyncio.create_subprocess_exec", fake_exec(process, calls))
        progress = []

        await OllamaBackend(backend_settings).pull(progress.append)

        assert calls[0][:3] == ("ollama", "pull", "qwen3:0.6b")
        assert progress == [10, 50, 100]

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_pull_failed(self, backend_settings, monkeypatch):
        """The last output line and the browse URL are reported."""
        process = FakeProcess(["pulling manifest\n", "Error: pull model manifest: file does not exist\n"], returncode=1)
        monkeypatch.setattr("agent_router.ollama.asyncio.create_subprocess_exec", fake_exec(process, []))

        with pytest.raises(PullFailed) as exc_info:
            await OllamaBackend(backend_settings).pull()

        assert "file does not exist" in str(exc_info.value)
        assert exc_info.value.remediation.endswith("https://ollama.com/library")

    @pytest.mark.asyncio
    async def test_cancelled_pull_kills_and_reaps_child(self, backend_settings, monkeypatch):
        """Timing out a pull leaves no running or zombie `ollama pull` behind."""
        process = HangingProcess()
        monkeypatch.setattr("agent_router.ollama.asyncio.create_subprocess_exec", fake_exec(process, []))

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(OllamaBackend(backend_settings).pull(), timeout=0.05)

        assert process.killed and process.reaped
