"""
Classifies simulation reverts as permanent or retryable.

A permanent revert (allocation cap filled, auction over, zero owner) cannot be
fixed by waiting another block, so the bid is exhausted immediately. Anything
the classifier does not recognise stays on the ordinary retry path.

Matching is done on the revert message (case-insensitive substrings) and on
the 4-byte selector of custom errors found in the revert data. Both lists are
extensible from configuration.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from eth_utils import function_signature_to_4byte_selector

from ccabot.errors import AttemptError, PermanentRevertError

DEFAULT_PERMANENT_PATTERNS: Tuple[str, ...] = (
    "purchase limit",
    "exceeds max purchase",
    "auction is over",
    "auctionisover",
    "owner cannot be zero",
)

DEFAULT_PERMANENT_ERRORS: Tuple[str, ...] = (
    "AuctionIsOver()",
    "BidOwnerCannotBeZeroAddress()",
    "MaxPurchaseLimitExceeded()",
)


def error_selector(signature: str) -> str:
    """0x-prefixed 4-byte selector of a custom error signature."""
    return "0x" + function_signature_to_4byte_selector(signature).hex()


class RevertClassifier:
    def __init__(
        self,
        patterns: Iterable[str] = DEFAULT_PERMANENT_PATTERNS,
        error_signatures: Iterable[str] = DEFAULT_PERMANENT_ERRORS,
    ) -> None:
        self._patterns = tuple(p.strip().lower() for p in patterns if p and p.strip())
        self._selectors = frozenset(error_selector(sig) for sig in error_signatures if sig)

    @classmethod
    def with_extra_patterns(cls, extra: Iterable[str]) -> "RevertClassifier":
        return cls(patterns=(*DEFAULT_PERMANENT_PATTERNS, *extra))

    @property
    def patterns(self) -> Tuple[str, ...]:
        return self._patterns

    def is_permanent(self, message: Optional[str], data: Optional[str] = None) -> bool:
        if data:
            selector = data.lower()
            if not selector.startswith("0x"):
                selector = "0x" + selector
            if selector[:10] in self._selectors:
                return True
        text = (message or "").lower()
        return any(pattern in text for pattern in self._patterns)

    def classify(self, stage: str, message: str, data: Optional[str] = None) -> AttemptError:
        """Build the error the execution loop will see for a revert."""
        if self.is_permanent(message, data):
            return PermanentRevertError(stage, message, data)
        return AttemptError(stage, message, data)
