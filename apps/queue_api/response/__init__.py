"""Response helpers for long-lived client connections."""

from .streaming import TicketEventStreamer

__all__ = ["TicketEventStreamer"]
