"""Cadre MCP: coordination layer for a small fleet of pipeline workers."""

__version__ = "0.1.0"

__all__ = ["__version__"]
