"""Image compression tool: batch pipeline, session backend and CLI."""

__version__ = "0.1.0"
