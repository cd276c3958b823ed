"""Supervisor for long-running agent CLI processes."""

__version__ = "0.1.0"
