"""Streaming and tool-capable chat assistant service."""

__version__ = "0.1.0"
