"""Overnight issue -> plan -> PR automation driven by an external coding agent."""

__version__ = "0.1.0"
