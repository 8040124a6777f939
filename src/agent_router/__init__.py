"""Agent Router - rule-first routing of tasks to agents with a local LLM fallback."""

__version__ = "0.1.0"
