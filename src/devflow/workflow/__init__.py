"""Durable code-agent workflow: steps, persistence, flow and CLI controllers."""
