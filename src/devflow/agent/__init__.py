"""Coding agent: shared state, tools, model client and the iteration loop."""
