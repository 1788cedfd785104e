"""Utility modules for the Code Bridge service."""

from .logging import setup_logging, get_logger
from .request_helpers import get_client_ip

__all__ = [
    "setup_logging",
    "get_logger",
    "get_client_ip",
]
