"""Schema package exports."""

from .messages import ChatMessage

__all__ = ["ChatMessage"]
