"""Agent Router command-line interface."""
