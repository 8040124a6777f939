"""
Prompt construction and reply parsing for backend classification calls.

Both calls are closed-vocabulary: the model sees a numbered list and answers
with numbers. Numbers past the end of the list come back as ``#N`` selections
for the orchestrator to discard or reject. Names in the reply are accepted as
a fallback when it holds no number.
"""

import re
from typing import List, Sequence

from agent_router.errors import BackendMalformedResponse
from agent_router.models import Agent, ClassificationRequest, TagDefinition

_NUMBER = re.compile(r"\d+")

TAGGING_INSTRUCTIONS = """IMPORTANT:
- Only select tags if there is CLEAR evidence in the task/intent. If the task is vague or generic (like "help me" or "do something"), reply "0"
- Do NOT guess or assume. When in doubt, reply "0"

Reply with the number(s) only, comma-separated. Reply "0" if none apply."""

AGENT_INSTRUCTIONS = """IMPORTANT:
- Only select agents whose description CLEARLY covers the task. If no agent fits, reply "0"
- Prefer fewer agents. When in doubt, reply "0"

Reply with the number(s) only, comma-separated. Reply "0" if none apply."""


def sanitize_input(text: str) -> str:
    """Collapse text to one line: trim each line, drop blank lines, join with spaces."""
    return " ".join(line.strip() for line in text.splitlines() if line.strip())


def _request_context(request: ClassificationRequest) -> str:
    files = request.files
    changed_files = ", ".join(sanitize_input(f) for f in files) if files else "none"

    lines = [
        f'Task: "{sanitize_input(request.task)}"',
        f'Intent: "{sanitize_input(request.intent)}"',
    ]
    if request.original_prompt:
        lines.append(f'Original request: "{sanitize_input(request.original_prompt)}"')
    lines.append(f"Changed files: {changed_files}")
    return "\n".join(lines)


def format_tag_list(tags: Sequence[TagDefinition]) -> str:
    entries = []
    for i, tag in enumerate(tags, start=1):
        entry = f"{i}. {tag.name} - {tag.description}"
        if tag.examples:
            entry += f"\n   Examples: {', '.join(tag.examples)}"
        entries.append(entry)
    return "\n".join(entries)


def format_agent_list(agents: Sequence[Agent]) -> str:
    return "\n".join(f"{i}. {agent.name} - {agent.description}" for i, agent in enumerate(agents, start=1))


def build_tagging_prompt(request: ClassificationRequest, tags: Sequence[TagDefinition]) -> str:
    """Prompt asking the model which declared tags apply to the request."""
    return (
        "You are a code task classifier. Be CONSERVATIVE - only select tags that CLEARLY match.\n\n"
        f"{_request_context(request)}\n\n"
        f"Which tags apply? Choose from:\n{format_tag_list(tags)}\n\n"
        f"{TAGGING_INSTRUCTIONS}"
    )


def build_agent_prompt(request: ClassificationRequest, agents: Sequence[Agent]) -> str:
    """Prompt asking the model to pick agents directly when no rule matched."""
    return (
        "You are a code task router. Be CONSERVATIVE - only select agents that CLEARLY fit the task.\n\n"
        f"{_request_context(request)}\n\n"
        f"Which agents should handle this? Choose from:\n{format_agent_list(agents)}\n\n"
        f"{AGENT_INSTRUCTIONS}"
    )


def parse_selection(response: str, names: Sequence[str]) -> List[str]:
    """
    Map a numbered-list reply back to names.

    Numbers are 1-based and 0 selects nothing. A number outside the list is
    returned as ``#N`` so the caller can discard or reject it like any other
    undeclared name. If the reply holds no number at all, names mentioned in
    it (case-insensitive) are used.

    Raises:
        BackendMalformedResponse: If the reply holds neither a number nor a name

    Examples:
        parse_selection("1, 3", ["auth", "db", "api"])  # ["auth", "api"]
        parse_selection("0", ["auth"])  # []
        parse_selection("7", ["auth", "db"])  # ["#7"]
        parse_selection("The auth tag", ["auth", "db"])  # ["auth"]
    """
    found: List[str] = []
    numbers = [int(match.group()) for match in _NUMBER.finditer(response)]
    for index in numbers:
        if index == 0:
            continue
        name = names[index - 1] if index <= len(names) else f"#{index}"
        if name not in found:
            found.append(name)

    if not numbers:
        response_lower = response.lower()
        for name in names:
            if name.lower() in response_lower and name not in found:
                found.append(name)
        if not found:
            raise BackendMalformedResponse(f"Could not interpret backend reply: {response!r}")

    return found
