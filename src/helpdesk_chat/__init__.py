"""Helpdesk chat-turn pipeline: job queue, streaming orchestrator and tool dispatch."""

__version__ = "1.0.0"
