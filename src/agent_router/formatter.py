"""
Routing Result Formatter.

Formats routing instructions as tagged text for agents that consume routing
advice in their prompt (the `agent-router route --format text` output).
JSON consumers use RoutingInstruction.to_dict() directly.
"""

from typing import Sequence

from agent_router.models import RoutingInstruction


def format_instructions(instructions: Sequence[RoutingInstruction], task: str = "") -> str:
    """
    Format routing instructions as tagged text.

    Args:
        instructions: Output of AgentRouter.classify()
        task: Task text echoed in the header (optional)

    Returns:
        Formatted text, or an empty string when there is nothing to route
    """
    if not instructions:
        return ""

    output_parts = ["<agent_routing>\n"]
    if task:
        output_parts.append(f"<task>{task}</task>\n")

    output_parts.append(f'<instructions count="{len(instructions)}">\n')
    for instruction in instructions:
        trigger = instruction.trigger
        output_parts.append(
            f'<route agent="{instruction.agent.name}" confidence="{instruction.confidence}" '
            f'priority="{instruction.priority}">\n'
        )
        output_parts.append(f'<trigger kind="{trigger.kind}">{trigger.value}</trigger>\n')
        if trigger.rule:
            output_parts.append(f"<rule>{trigger.rule}</rule>\n")
        output_parts.append(f"<summary>{instruction.agent.description}</summary>\n")
        if instruction.files:
            output_parts.append(f"<files>{', '.join(instruction.files)}</files>\n")
        if instruction.instructions:
            output_parts.append(f"<guidance>\n{instruction.instructions}\n</guidance>\n")
        output_parts.append("</route>\n")
    output_parts.append("</instructions>\n")

    output_parts.append("</agent_routing>")
    return "".join(output_parts)
