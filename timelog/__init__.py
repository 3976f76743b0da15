"""Shared time logging: start/stop sessions, reconciliation and dashboards."""

__version__ = "0.1.0"
