"""
Configuration package.

Environment settings and the TOML bid list.
"""

from ccabot.config.bid_file import load_bid_file
from ccabot.config.config import Settings

__all__ = [
    "Settings",
    "load_bid_file",
]
