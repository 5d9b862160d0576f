"""Janus: budget-aware multi-provider routing, council deliberation and sandboxed execution."""

__version__ = "0.1.0"
