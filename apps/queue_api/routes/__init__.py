from . import counters, departments, display, events, metrics, ping, tickets

__all__ = ["counters", "departments", "display", "events", "metrics", "ping", "tickets"]
