"""Durable coding-agent workflow."""

__version__ = "0.1.0"
