"""API routers for the Code Bridge service."""

from . import compile, health, socket

__all__ = ["compile", "health", "socket"]
