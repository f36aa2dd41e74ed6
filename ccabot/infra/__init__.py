"""
Infrastructure package.

This package contains logging configuration and nonce management.
"""

from ccabot.infra.logging_cfg import build_logger, log_event
from ccabot.infra.nonce import NonceManager

__all__ = [
    "build_logger",
    "log_event",
    "NonceManager",
]
