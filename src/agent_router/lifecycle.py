"""
Backend Lifecycle Manager

Brings the inference backend to the Ready state:

    Unknown -> NotInstalled | Installed
    Installed -> NotRunning | Running        (start:  `ollama serve`, poll liveness)
    Running -> ModelAbsent | ModelPresent    (pull:   `ollama pull <model>`)
    ModelPresent -> NotLoaded | Ready        (load:   warm-up generation)

A live service implies it is installed, so the install probe only runs when
the liveness probe fails.

Concurrency:
- initialize() is single-flight. The first caller starts the walk as a task;
  concurrent callers await the same task (shielded, so an abandoned caller
  never cancels the walk) and observe the same report or exception.
- Ready is cached for the process lifetime. Only initialize(recheck=True)
  or an explicit probe() re-derives it; failed inference calls never do.
- ensure_ready() never performs corrective actions. It returns on a cached
  Ready, joins an in-flight initialize, or probes and raises
  PrerequisiteError naming the missing step.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import httpx

from agent_router.errors import (
    LifecycleError,
    LifecycleTimeout,
    LoadFailed,
    NotInstalled,
    PrerequisiteError,
    PullFailed,
    StartFailed,
)
from agent_router.ollama import INSTALL_URL, OllamaBackend

logger = logging.getLogger(__name__)

READY_MESSAGE = "LLM ready for routing"


class BackendState(str, Enum):
    """Readiness of the inference backend."""

    UNKNOWN = "unknown"
    NOT_INSTALLED = "not_installed"
    NOT_RUNNING = "installed_not_running"
    MODEL_ABSENT = "running_model_absent"
    NOT_LOADED = "running_model_present_not_loaded"
    READY = "ready"


# Corrective step that moves each non-ready state forward
MISSING_STEP = {
    BackendState.UNKNOWN: "start",
    BackendState.NOT_INSTALLED: "install",
    BackendState.NOT_RUNNING: "start",
    BackendState.MODEL_ABSENT: "pull",
    BackendState.NOT_LOADED: "load",
}

# Error class for a transport failure while working towards each step
STEP_ERRORS = {
    "start": StartFailed,
    "pull": PullFailed,
    "load": LoadFailed,
}


@dataclass
class ReadinessReport:
    """Outcome of a lifecycle walk."""

    success: bool
    message: str
    steps_performed: List[str] = field(default_factory=list)
    state: BackendState = BackendState.UNKNOWN

    def to_dict(self) -> dict:
        """Convert to the init_llm wire format."""
        return {
            "success": self.success,
            "message": self.message,
            "steps_performed": list(self.steps_performed),
            "state": self.state.value,
        }


class BackendLifecycleManager:
    """
    Readiness state machine for one backend, shared by all requests.

    Args:
        backend: OllamaBackend (or any object with the same probe/action methods)
        start_timeout: Seconds to wait for the service to answer after start
        pull_timeout: Seconds to wait for a model download
        poll_interval: Seconds between liveness polls while starting
    """

    def __init__(
        self,
        backend: OllamaBackend,
        start_timeout: Optional[float] = None,
        pull_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        settings = getattr(backend, "settings", None)
        self.backend = backend
        self.start_timeout = start_timeout if start_timeout is not None else settings.start_timeout
        self.pull_timeout = pull_timeout if pull_timeout is not None else settings.pull_timeout
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval

        self._state = BackendState.UNKNOWN
        self._ready_report: Optional[ReadinessReport] = None
        self._inflight: Optional[asyncio.Future] = None

    @property
    def state(self) -> BackendState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._ready_report is not None

    # =========================================================================
    # Public operations
    # =========================================================================

    async def initialize(
        self,
        recheck: bool = False,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> ReadinessReport:
        """
        Walk the state machine, performing corrective actions as needed.

        Args:
            recheck: Ignore a cached Ready and walk again
            on_progress: Receives model download percentages (first caller only)

        Returns:
            ReadinessReport with success=True

        Raises:
            LifecycleError: Subclass naming the failed step, with the steps
                performed before the failure
        """
        if self._ready_report is not None and not recheck:
            return ReadinessReport(
                success=True,
                message=READY_MESSAGE,
                steps_performed=["Backend already ready"],
                state=BackendState.READY,
            )

        if self._inflight is None:
            self._ready_report = None
            self._inflight = asyncio.ensure_future(self._walk(on_progress))
            self._inflight.add_done_callback(self._clear_inflight)
        else:
            logger.info("Backend initialization already in progress, waiting for it")

        return await asyncio.shield(self._inflight)

    async def ensure_ready(self) -> None:
        """
        Check readiness without corrective actions.

        Raises:
            PrerequisiteError: Naming the lifecycle step the caller must run
        """
        if self._ready_report is not None:
            return

        if self._inflight is not None:
            try:
                await asyncio.shield(self._inflight)
            except LifecycleError as e:
                raise PrerequisiteError(
                    e.step, f"Backend initialization failed at step '{e.step}': {e}"
                ) from e
            return

        state = await self.probe()
        if state is not BackendState.READY:
            step = MISSING_STEP[state]
            raise PrerequisiteError(step, self._prerequisite_message(state))

    async def probe(self) -> BackendState:
        """Re-derive the current state without changing anything."""
        state = await self._probe_state()
        self._state = state
        if state is BackendState.READY:
            if self._ready_report is None:
                self._ready_report = ReadinessReport(
                    success=True,
                    message=READY_MESSAGE,
                    steps_performed=["Backend already ready"],
                    state=state,
                )
        else:
            self._ready_report = None
        logger.debug(f"Backend state: {state.value}")
        return state

    # =========================================================================
    # Internals
    # =========================================================================

    def _clear_inflight(self, task: asyncio.Future) -> None:
        self._inflight = None
        if not task.cancelled():
            # Mark the exception retrieved even if every caller went away
            task.exception()

    def _prerequisite_message(self, state: BackendState) -> str:
        model = self.backend.model
        if state is BackendState.NOT_INSTALLED:
            return f"Ollama is not installed. Install it from {INSTALL_URL}, then run init_llm."
        if state is BackendState.MODEL_ABSENT:
            return f"Model '{model}' is not downloaded. Run init_llm to pull it."
        if state is BackendState.NOT_LOADED:
            return "Model not loaded into memory. Run init_llm to load it."
        return "Ollama is not running. Run init_llm first to start Ollama and load the model."

    async def _probe_state(self) -> BackendState:
        if not await self.backend.is_running():
            if not await self.backend.is_installed():
                return BackendState.NOT_INSTALLED
            return BackendState.NOT_RUNNING
        try:
            if not await self.backend.has_model():
                return BackendState.MODEL_ABSENT
            if not await self.backend.is_loaded():
                return BackendState.NOT_LOADED
        except httpx.HTTPError as e:
            logger.warning(f"Backend stopped answering during probe: {e}")
            return BackendState.NOT_RUNNING
        return BackendState.READY

    async def _wait_until_running(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.start_timeout
        while True:
            if await self.backend.is_running():
                return
            exit_code = self.backend.serve_exited()
            if exit_code is not None:
                raise StartFailed(
                    f"Ollama exited with code {exit_code} before becoming ready.",
                    remediation="Try running 'ollama serve' manually to see errors.",
                )
            if loop.time() >= deadline:
                raise LifecycleTimeout(
                    "start",
                    self.start_timeout,
                    remediation="Ollama started but did not become ready. Try running 'ollama serve' manually.",
                )
            await asyncio.sleep(self.poll_interval)

    async def _walk(self, on_progress: Optional[Callable[[int], None]]) -> ReadinessReport:
        model = self.backend.model
        steps: List[str] = []
        step = "start"
        logger.info("Initializing inference backend...")

        try:
            if await self.backend.is_running():
                steps.append("Ollama already running")
            else:
                if not await self.backend.is_installed():
                    self._state = BackendState.NOT_INSTALLED
                    raise NotInstalled(
                        "Ollama is not installed.",
                        remediation=f"Install it from {INSTALL_URL}",
                    )
                self._state = BackendState.NOT_RUNNING
                await self.backend.start()
                await self._wait_until_running()
                steps.append("Started Ollama service")
            logger.info(steps[-1])

            step = "pull"
            if await self.backend.has_model():
                steps.append(f"Model {model} already installed")
            else:
                self._state = BackendState.MODEL_ABSENT
                try:
                    await asyncio.wait_for(self.backend.pull(on_progress), timeout=self.pull_timeout)
                except asyncio.TimeoutError as e:
                    raise LifecycleTimeout(
                        "pull",
                        self.pull_timeout,
                        remediation="Run init_llm again to resume the download.",
                    ) from e
                steps.append(f"Downloaded model {model}")
            logger.info(steps[-1])

            step = "load"
            if await self.backend.is_loaded():
                steps.append(f"Model {model} already loaded")
            else:
                self._state = BackendState.NOT_LOADED
                await self.backend.load()
                steps.append(f"Loaded model {model} into memory")
            logger.info(steps[-1])

        except LifecycleError as e:
            e.steps_performed = steps
            logger.error(f"Backend initialization failed at step '{e.step}': {e}")
            raise
        except httpx.HTTPError as e:
            error = STEP_ERRORS[step](
                f"Lost connection to Ollama during step '{step}': {e}",
                steps_performed=steps,
                remediation="Ollama may have stopped. Run init_llm again.",
            )
            logger.error(str(error))
            raise error from e

        self._state = BackendState.READY
        report = ReadinessReport(
            success=True,
            message=READY_MESSAGE,
            steps_performed=steps,
            state=BackendState.READY,
        )
        self._ready_report = report
        logger.info(READY_MESSAGE)
        return report
