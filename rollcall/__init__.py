"""Rollcall: agent and mail roll call for a multi-agent town."""

__version__ = "0.1.0"
