"""
Ollama backend client.

Thin async wrapper over the two faces of a local Ollama installation:

- HTTP API (httpx): liveness and inventory (/api/tags), loaded set (/api/ps),
  inference and warm-up loading (/api/generate)
- CLI (asyncio subprocess): `ollama --version`, `ollama serve`, `ollama pull`

Probe methods answer yes/no and never raise for an unreachable service.
Corrective methods raise the LifecycleError subclass for their step.
generate() lets httpx transport errors propagate so the caller can decide
whether to retry.
"""

import asyncio
import logging
import re
from typing import Callable, List, Optional

import httpx

from agent_router.config import BackendSettings
from agent_router.errors import (
    BackendMalformedResponse,
    BackendUnavailable,
    LifecycleTimeout,
    LoadFailed,
    PullFailed,
    StartFailed,
)

logger = logging.getLogger(__name__)

OLLAMA_EXECUTABLE = "ollama"
INSTALL_URL = "https://ollama.com"

ProgressCallback = Callable[[int], None]

_LINE_SPLIT = re.compile(r"[\r\n]")


def model_matches(name: str, effective_name: str) -> bool:
    """True if an inventory entry refers to the configured model (any tag)."""
    return name == effective_name or name.startswith(effective_name.split(":")[0])


def parse_percentage(line: str) -> Optional[int]:
    """
    Parse a progress percentage from an `ollama pull` output line.

    Examples:
        parse_percentage("pulling abc123... 45%")  # 45
        parse_percentage("verifying sha256 digest")  # None
    """
    for word in line.split():
        if word.endswith("%"):
            try:
                return min(int(word[:-1]), 100)
            except ValueError:
                continue
    return None


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill a child process and reap it, even while the caller is being cancelled."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass  # already exited
    await asyncio.shield(proc.wait())


class OllamaBackend:
    """
    Async client for a local Ollama service.

    Args:
        settings: Backend settings (URL, model, timeouts)
        client: Optional preconfigured httpx.AsyncClient (tests inject a
            MockTransport-backed client here)
        executable: Name or path of the ollama CLI
    """

    def __init__(
        self,
        settings: BackendSettings,
        client: Optional[httpx.AsyncClient] = None,
        executable: str = OLLAMA_EXECUTABLE,
    ):
        self.settings = settings
        self.executable = executable
        self._client = client or httpx.AsyncClient(
            base_url=settings.url, timeout=settings.request_timeout
        )
        self._serve_process: Optional[asyncio.subprocess.Process] = None

    @property
    def model(self) -> str:
        return self.settings.effective_model_name

    async def aclose(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # Probes
    # =========================================================================

    async def is_installed(self) -> bool:
        """Check that `ollama --version` runs successfully within the request timeout."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable,
                "--version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.info(f"Ollama executable not available: {e}")
            return False
        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=self.settings.request_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"'{self.executable} --version' did not finish within {self.settings.request_timeout}s")
            await _kill(proc)
            return False
        return returncode == 0

    async def is_running(self) -> bool:
        """Check that the HTTP API answers."""
        try:
            response = await self._client.get("/api/tags")
        except httpx.HTTPError as e:
            logger.debug(f"Ollama liveness probe failed: {e}")
            return False
        return response.is_success

    async def list_models(self) -> List[str]:
        """Names of downloaded models."""
        return await self._model_names("/api/tags")

    async def list_loaded(self) -> List[str]:
        """Names of models currently loaded in memory."""
        return await self._model_names("/api/ps")

    async def has_model(self) -> bool:
        return any(model_matches(name, self.model) for name in await self.list_models())

    async def is_loaded(self) -> bool:
        return any(model_matches(name, self.model) for name in await self.list_loaded())

    async def _model_names(self, path: str) -> List[str]:
        response = await self._client.get(path)
        response.raise_for_status()
        try:
            data = response.json()
            return [str(m["name"]) for m in data.get("models") or []]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise BackendMalformedResponse(f"Unexpected response from {path}: {e}") from e

    # =========================================================================
    # Corrective actions
    # =========================================================================

    async def start(self) -> None:
        """
        Spawn `ollama serve` in its own session.

        The process is left running after this client goes away. Use
        serve_exited() while polling liveness to detect an early crash.

        Raises:
            StartFailed: If the process cannot be spawned
        """
        logger.info("Starting Ollama service...")
        try:
            self._serve_process = await asyncio.create_subprocess_exec(
                self.executable,
                "serve",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise StartFailed(
                f"Could not start Ollama: {e}",
                remediation="Try running 'ollama serve' manually to see errors.",
            ) from e

    def serve_exited(self) -> Optional[int]:
        """Exit code of the spawned `ollama serve`, or None while it runs."""
        if self._serve_process is None:
            return None
        return self._serve_process.returncode

    async def pull(self, on_progress: Optional[ProgressCallback] = None) -> None:
        """
        Download the configured model with `ollama pull`.

        Progress percentages are parsed from stderr and reported through
        on_progress, increasing monotonically and ending at 100.

        Raises:
            PullFailed: If the command cannot run or exits non-zero
        """
        logger.info(f"Pulling model {self.model}...")
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable,
                "pull",
                self.model,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise PullFailed(f"Failed to execute 'ollama pull': {e}") from e

        last_percent = 0
        last_line = ""
        buffer = ""
        try:
            while True:
                chunk = await proc.stderr.read(1024)
                if not chunk:
                    break
                buffer += chunk.decode("utf-8", errors="replace")
                *lines, buffer = _LINE_SPLIT.split(buffer)
                for line in lines:
                    line = line.strip()
                    if not line:
                        continue
                    last_line = line
                    percent = parse_percentage(line)
                    if percent is not None and percent > last_percent:
                        last_percent = percent
                        if on_progress:
                            on_progress(percent)
            if buffer.strip():
                last_line = buffer.strip()
            returncode = await proc.wait()
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        if returncode != 0:
            detail = f"\nError: {last_line}" if last_line else ""
            raise PullFailed(
                f"Failed to pull model '{self.model}'. Please verify the model name is correct.{detail}",
                remediation=f"Browse available models at: {self.settings.browse_url}",
            )

        if on_progress:
            on_progress(100)
        logger.info("Model pulled successfully")

    async def load(self) -> None:
        """
        Force the model into memory with a one-token warm-up generation.

        Raises:
            LoadFailed: If the model is missing (404) or the call fails
            LifecycleTimeout: If loading exceeds load_timeout
        """
        logger.info(f"Loading model {self.model}...")
        payload = self._payload("", temperature=0.0, num_predict=1, think=False)
        try:
            response = await self._client.post(
                "/api/generate", json=payload, timeout=self.settings.load_timeout
            )
        except httpx.TimeoutException as e:
            raise LifecycleTimeout("load", self.settings.load_timeout) from e
        except httpx.HTTPError as e:
            raise LoadFailed(
                f"Could not connect to Ollama while loading model: {e}",
                remediation="Ollama may have stopped. Run init_llm again.",
            ) from e

        if response.status_code == 404:
            raise LoadFailed(
                f"Model '{self.settings.model_name}' is not installed.",
                remediation="Check MODEL_NAME is correct and run init_llm again.",
            )
        if not response.is_success:
            raise LoadFailed(f"Failed to load model: HTTP {response.status_code}")
        logger.info("Model ready")

    # =========================================================================
    # Inference
    # =========================================================================

    def _payload(self, prompt: str, temperature: float, num_predict: int, think: bool) -> dict:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": num_predict},
        }
        if think:
            payload["think"] = True
        return payload

    async def generate(self, prompt: str, temperature: float) -> str:
        """
        Run one non-streaming completion and return the response text.

        Thinking is requested when configured and supported by the model.

        Raises:
            httpx.TransportError: On network failures (caller decides on retry)
            BackendUnavailable: On an unsuccessful HTTP status
            BackendMalformedResponse: If the body has no "response" string
        """
        think = self.settings.should_use_thinking
        payload = self._payload(prompt, temperature, 500 if think else 100, think)

        response = await self._client.post("/api/generate", json=payload)
        if not response.is_success:
            raise BackendUnavailable(f"Ollama generate request failed: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise BackendMalformedResponse(f"Ollama returned invalid JSON: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("response"), str):
            raise BackendMalformedResponse("Ollama response is missing the 'response' field")

        if data.get("thinking"):
            logger.debug(f"LLM thinking trace: {data['thinking']!r}")
        return data["response"]
