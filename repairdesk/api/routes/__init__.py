"""Route modules exposed by the API package."""

from . import ping, repairs

__all__ = ["ping", "repairs"]
