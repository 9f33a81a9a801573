"""Route modules exposed by the API package."""

from . import diagnostics, ping, tickets

__all__ = ["diagnostics", "ping", "tickets"]
