"""
Semantic classification through the inference backend.

Two closed-vocabulary calls used by the orchestrator when rules are
inconclusive:

- select_tags: which declared tags describe the request
- select_agents: which declared agents should handle it (direct fallback)

Transient network errors are retried a bounded number of times with linear
backoff before escalating to BackendUnavailable (or BackendTimeout).
"""

import asyncio
import logging
from typing import List, Optional, Sequence

import httpx

from agent_router.errors import BackendMalformedResponse, BackendTimeout, BackendUnavailable
from agent_router.models import Agent, ClassificationRequest, TagDefinition
from agent_router.ollama import OllamaBackend
from agent_router.prompts import build_agent_prompt, build_tagging_prompt, parse_selection

logger = logging.getLogger(__name__)

# Sampling temperatures when none is configured
TAGGING_TEMPERATURE = 0.1
AGENT_SELECTION_TEMPERATURE = 0.3


class SemanticClassifier:
    """
    Backend-driven tag and agent selection.

    Args:
        backend: Backend exposing `async generate(prompt, temperature) -> str`
        retry_attempts: Total attempts for transient transport errors
        retry_backoff: Seconds added to the wait after each failed attempt
        temperature: Fixed temperature for both calls, or None for per-call defaults
    """

    def __init__(
        self,
        backend: OllamaBackend,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
        temperature: Optional[float] = None,
    ):
        self.backend = backend
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = retry_backoff
        self.temperature = temperature

    async def select_tags(self, request: ClassificationRequest, tags: Sequence[TagDefinition]) -> List[str]:
        """
        Ask the backend which declared tags apply.

        Returns:
            Selected tag names (possibly empty), with "#N" for numbers past the list

        Raises:
            BackendUnavailable: After exhausting retries on transport errors
            BackendMalformedResponse: If the reply cannot be interpreted
        """
        if not tags:
            return []
        prompt = build_tagging_prompt(request, tags)
        temperature = self.temperature if self.temperature is not None else TAGGING_TEMPERATURE
        response = await self._generate(prompt, temperature)
        logger.info(f"LLM raw tagging response: {response!r}")
        return parse_selection(response, [tag.name for tag in tags])

    async def select_agents(self, request: ClassificationRequest, agents: Sequence[Agent]) -> List[str]:
        """
        Ask the backend to pick agents directly from the declared list.

        Returns:
            Selected agent names (possibly empty), with "#N" for numbers past the list

        Raises:
            BackendUnavailable: After exhausting retries on transport errors
            BackendMalformedResponse: If the reply cannot be interpreted
        """
        if not agents:
            return []
        prompt = build_agent_prompt(request, agents)
        temperature = self.temperature if self.temperature is not None else AGENT_SELECTION_TEMPERATURE
        response = await self._generate(prompt, temperature)
        logger.info(f"LLM raw agent selection response: {response!r}")
        return parse_selection(response, [agent.name for agent in agents])

    async def _generate(self, prompt: str, temperature: float) -> str:
        last_error: Optional[httpx.TransportError] = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                response = await self.backend.generate(prompt, temperature)
                break
            except httpx.TransportError as e:
                last_error = e
                logger.warning(f"Backend call failed (attempt {attempt}/{self.retry_attempts}): {e!r}")
                if attempt < self.retry_attempts:
                    await asyncio.sleep(self.retry_backoff * attempt)
        else:
            if isinstance(last_error, httpx.TimeoutException):
                raise BackendTimeout(
                    f"Ollama did not answer within the request timeout after {self.retry_attempts} attempts. "
                    "Run init_llm to check the backend."
                ) from last_error
            raise BackendUnavailable(
                f"Could not reach Ollama after {self.retry_attempts} attempts: {last_error}. "
                "Run init_llm to restart it."
            ) from last_error

        if not response.strip():
            raise BackendMalformedResponse("Backend returned an empty classification reply")
        return response
