"""
Error hierarchy for the bidder.

Kinds and where they stop:
- BidValidationError: one bid is unusable. Recorded as EXHAUSTED, never retried.
- FetchError: the auction snapshot could not be read. Fatal to the run.
- AttemptError: prepare/simulate/send failed. Absorbed by the retry budget.
- PermanentRevertError: a simulation revert that retrying cannot fix.
- InvariantError: illegal state transition. Always fatal (bug).
- HeadStreamError: the block head source gave up.
"""

from __future__ import annotations

from typing import Optional


class BidderError(Exception):
    """Base exception for the bidder."""

    pass


class BidValidationError(BidderError):
    """Raised when a bid spec cannot become a contract-legal bid."""

    def __init__(self, reason, detail: str) -> None:
        super().__init__(f"{reason.value}: {detail}")
        self.reason = reason
        self.detail = detail


class FetchError(BidderError):
    """Raised when the auction context snapshot is unavailable or incomplete."""

    pass


class AttemptError(BidderError):
    """Raised by a chain client when one pipeline step fails."""

    def __init__(self, stage: str, message: str, data: Optional[str] = None) -> None:
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage
        self.message = message
        self.data = data


class PermanentRevertError(AttemptError):
    """Simulation reverted for a reason that will not resolve by retrying."""

    pass


class InvariantError(BidderError):
    """Illegal bid state transition or registry misuse."""

    pass


class HeadStreamError(BidderError):
    """The block head source failed too many times in a row."""

    pass


class BidFileError(BidderError, ValueError):
    """Malformed bid file."""

    pass
