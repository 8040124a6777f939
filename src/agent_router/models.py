"""
Agent Router Models - Data classes for configuration records, requests and results.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from agent_router.conditions import DEFAULT_MAX_DEPTH, Condition, MatchContext, parse_condition
from agent_router.errors import ConfigError, InvalidRequest

DEFAULT_PRIORITY = 50

# Input limits for classification requests
MAX_PROMPT_LENGTH = 10_000  # bytes, per text field
MAX_FILES_COUNT = 100
MAX_FILE_PATH_LENGTH = 1_000  # bytes
MAX_BRANCH_LENGTH = 200  # bytes


def _require(data: dict, key: str, record: str) -> object:
    if not isinstance(data, dict):
        raise ConfigError(f"{record} entry must be an object, got: {data!r}")
    if key not in data:
        raise ConfigError(f"{record} entry is missing required field '{key}': {data!r}")
    return data[key]


def _require_str(data: dict, key: str, record: str) -> str:
    value = _require(data, key, record)
    if not isinstance(value, str):
        raise ConfigError(f"{record} field '{key}' must be a string, got: {value!r}")
    return value


# =============================================================================
# CONFIGURATION RECORDS
# =============================================================================


@dataclass(frozen=True)
class Agent:
    """A named handler the router may recommend."""

    name: str
    description: str
    instructions: Optional[str] = None
    priority: int = DEFAULT_PRIORITY

    @classmethod
    def from_dict(cls, data: dict) -> "Agent":
        """Create Agent from agents.json entry."""
        name = _require_str(data, "name", "Agent")
        description = _require_str(data, "description", "Agent")
        priority = data.get("priority", DEFAULT_PRIORITY)
        if isinstance(priority, bool) or not isinstance(priority, int) or not 0 <= priority <= 100:
            raise ConfigError(f"Agent '{name}' priority must be an integer in [0, 100], got: {priority!r}")
        return cls(
            name=name,
            description=description,
            instructions=data.get("instructions"),
            priority=priority,
        )

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description}


@dataclass(frozen=True)
class TagDefinition:
    """A semantic tag the backend may assign; examples are prompt context only."""

    name: str
    description: str
    examples: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "TagDefinition":
        """Create TagDefinition from llm-tags.json entry."""
        name = _require_str(data, "name", "Tag")
        description = _require_str(data, "description", "Tag")
        examples = data.get("examples", [])
        if not isinstance(examples, list):
            raise ConfigError(f"Tag '{name}' examples must be a list")
        return cls(name=name, description=description, examples=tuple(str(e) for e in examples))


@dataclass(frozen=True)
class Rule:
    """A condition tree routing to an ordered list of agents."""

    description: str
    condition: Condition
    targets: Tuple[str, ...]

    @classmethod
    def from_dict(cls, data: dict, index: int, max_depth: int = DEFAULT_MAX_DEPTH) -> "Rule":
        """
        Create Rule from rules.json entry.

        Args:
            data: Rule object ({description?, conditions, route_to_subagents})
            index: 1-based position, used to name rules without a description
            max_depth: Maximum condition nesting depth
        """
        description = data.get("description") if isinstance(data, dict) else None
        description = description or f"Rule #{index}"
        conditions = _require(data, "conditions", f"Rule '{description}'")
        targets = _require(data, "route_to_subagents", f"Rule '{description}'")
        if not isinstance(targets, list) or not all(isinstance(t, str) for t in targets):
            raise ConfigError("route_to_subagents must be a list of agent names", rule=description)
        return cls(
            description=description,
            condition=parse_condition(conditions, rule=description, max_depth=max_depth),
            targets=tuple(targets),
        )


@dataclass(frozen=True)
class RoutingConfig:
    """One loaded set of agents, rules and tags."""

    agents: Tuple[Agent, ...] = ()
    rules: Tuple[Rule, ...] = ()
    tags: Tuple[TagDefinition, ...] = ()

    def get_agent(self, name: str) -> Optional[Agent]:
        for agent in self.agents:
            if agent.name == name:
                return agent
        return None

    @property
    def tag_names(self) -> List[str]:
        return [tag.name for tag in self.tags]


# =============================================================================
# REQUEST
# =============================================================================


@dataclass
class ClassificationRequest:
    """A routing request: what the caller is doing and which files it touches."""

    task: str
    intent: str
    original_prompt: Optional[str] = None
    associated_files: Optional[List[str]] = None
    branch: Optional[str] = None

    @property
    def files(self) -> List[str]:
        """Files used for routing (only the explicitly associated ones)."""
        return list(self.associated_files or [])

    @property
    def prompts(self) -> List[str]:
        texts = [self.task, self.intent]
        if self.original_prompt:
            texts.append(self.original_prompt)
        return texts

    def validate(self) -> None:
        """
        Check input limits.

        Raises:
            InvalidRequest: If any field exceeds its limit
        """
        for label, value in (("task", self.task), ("intent", self.intent), ("original_prompt", self.original_prompt)):
            if value is not None and len(value.encode("utf-8")) > MAX_PROMPT_LENGTH:
                raise InvalidRequest(
                    f"{label} too long: {len(value.encode('utf-8'))} bytes (max: {MAX_PROMPT_LENGTH} bytes)"
                )

        files = self.files
        if len(files) > MAX_FILES_COUNT:
            raise InvalidRequest(f"Too many associated files: {len(files)} (max: {MAX_FILES_COUNT})")
        for path in files:
            if len(path.encode("utf-8")) > MAX_FILE_PATH_LENGTH:
                raise InvalidRequest(f"File path too long: {path[:50]}... (max: {MAX_FILE_PATH_LENGTH} bytes)")

        if self.branch is not None and len(self.branch.encode("utf-8")) > MAX_BRANCH_LENGTH:
            raise InvalidRequest(f"Branch name too long (max: {MAX_BRANCH_LENGTH} bytes)")

    def to_context(self) -> MatchContext:
        """Build the tag-free match context for deterministic rule evaluation."""
        return MatchContext(
            files=tuple(dict.fromkeys(self.files)),
            branch=self.branch or None,
            prompts=tuple(self.prompts),
        )


# =============================================================================
# RESULT
# =============================================================================


@dataclass(frozen=True)
class Trigger:
    """What produced a routing instruction."""

    kind: str  # file_glob, file_regex, branch_regex, prompt_regex, tag, llm_direct
    value: str  # Matched pattern or tag name
    rule: Optional[str] = None  # Description of the rule that fired

    def to_dict(self) -> dict:
        data = {"name": self.kind, "description": self.value}
        if self.rule is not None:
            data["rule"] = self.rule
        return data


@dataclass(frozen=True)
class RoutingInstruction:
    """One (trigger, agent) routing recommendation."""

    trigger: Trigger
    agent: Agent
    confidence: int
    files: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def priority(self) -> int:
        return self.agent.priority

    @property
    def instructions(self) -> Optional[str]:
        return self.agent.instructions

    def to_dict(self) -> dict:
        """Convert to the get_instructions wire format."""
        context = {
            "files": list(self.files),
            "confidence": self.confidence,
            "priority": self.priority,
        }
        if self.instructions is not None:
            context = {"instructions": self.instructions, **context}
        return {
            "trigger": self.trigger.to_dict(),
            "context": context,
            "route_to_agent": self.agent.to_dict(),
        }
