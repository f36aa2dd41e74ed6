"""
Bid State Machine - authoritative in-memory state of every planned bid.

Provides:
- Explicit states: PENDING, SUBMITTED, FAILED, EXHAUSTED
- A transition table; anything else raises InvariantError
- Per-bid attempt counters (never shared between bids)
- Audit trail of state changes

The registry is the sole mutator of bid state. The execution loop reads and
writes only through it, from a single control flow, so no locking is needed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional

from ccabot.auction.validator import BidSpec, PlannedBid
from ccabot.errors import AttemptError, BidValidationError, InvariantError, PermanentRevertError
from ccabot.infra.logging_cfg import log_event

log = logging.getLogger("ccabot")

DEFAULT_MAX_ATTEMPTS = 3


class BidState(Enum):
    """
    Bid lifecycle states.

    PENDING ──────────────────────> SUBMITTED
       │   ▲
       ▼   │ (retry)
     FAILED ──────────────────────> EXHAUSTED

    PENDING ──(window closed)─────> EXHAUSTED
    """
    PENDING = auto()    # Waiting for an attempt
    SUBMITTED = auto()  # Broadcast accepted (terminal)
    FAILED = auto()     # Last attempt failed, retry decision pending
    EXHAUSTED = auto()  # Gave up (terminal)


class ExhaustReason(Enum):
    VALIDATION = "validation"
    ATTEMPTS = "attempts_exhausted"
    PERMANENT_REVERT = "permanent_revert"
    WINDOW_CLOSED = "window_closed"


TERMINAL_STATES = frozenset({BidState.SUBMITTED, BidState.EXHAUSTED})

VALID_TRANSITIONS: Dict[BidState, List[BidState]] = {
    BidState.PENDING: [
        BidState.SUBMITTED,  # Broadcast accepted
        BidState.FAILED,     # Attempt failed
        BidState.EXHAUSTED,  # Window closed before submission
    ],
    BidState.FAILED: [
        BidState.PENDING,    # Retry on a later block
        BidState.EXHAUSTED,  # Budget spent or permanent revert
    ],
    # Terminal states - no transitions allowed
    BidState.SUBMITTED: [],
    BidState.EXHAUSTED: [],
}


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one prepare -> simulate -> send run."""
    tx_hash: Optional[str] = None
    error: Optional[AttemptError] = None

    @classmethod
    def success(cls, tx_hash: str) -> "AttemptOutcome":
        return cls(tx_hash=tx_hash)

    @classmethod
    def failure(cls, error: AttemptError) -> "AttemptOutcome":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def permanent(self) -> bool:
        return isinstance(self.error, PermanentRevertError)


def next_state(attempts: int, outcome: AttemptOutcome, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> BidState:
    """
    Decide where a bid goes after an attempt.

    Args:
        attempts: Attempts made so far, including this one
        outcome: Result of this attempt
        max_attempts: Attempt budget per bid

    Returns:
        SUBMITTED on success, EXHAUSTED on a permanent revert or a spent
        budget, PENDING otherwise.
    """
    if outcome.ok:
        return BidState.SUBMITTED
    if outcome.permanent or attempts >= max_attempts:
        return BidState.EXHAUSTED
    return BidState.PENDING


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: BidState
    to_state: BidState
    timestamp_ms: int
    block_number: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class BidRecord:
    """Complete state record for one bid."""
    bid_id: int
    spec: BidSpec
    planned: Optional[PlannedBid]

    state: BidState = BidState.PENDING
    attempts: int = 0
    tx_hash: Optional[str] = None
    last_error: Optional[str] = None
    exhaust_reason: Optional[ExhaustReason] = None
    receipt_status: Optional[int] = None

    transitions: List[StateTransition] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class BidRegistry:
    """
    Owns every BidRecord, keyed by the bid's position in the input list.

    Iteration order is registration order, which makes the bidding order and
    the summaries reproducible run to run.
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self.max_attempts = max_attempts
        self._records: Dict[int, BidRecord] = {}
        self._frozen = False

    # ========== Registration ==========

    def register(self, planned: PlannedBid, spec: Optional[BidSpec] = None) -> int:
        """Add a planned bid in PENDING state and return its id."""
        self._ensure_mutable()
        bid_id = len(self._records)
        if spec is None:
            spec = BidSpec(max_price=planned.requested_price, amount=planned.amount, owner=planned.owner)
        self._records[bid_id] = BidRecord(bid_id=bid_id, spec=spec, planned=planned)
        return bid_id

    def register_rejected(self, spec: BidSpec, error: BidValidationError) -> int:
        """Add a bid that failed validation; it is EXHAUSTED from the start."""
        self._ensure_mutable()
        bid_id = len(self._records)
        self._records[bid_id] = BidRecord(
            bid_id=bid_id,
            spec=spec,
            planned=None,
            state=BidState.EXHAUSTED,
            last_error=str(error),
            exhaust_reason=ExhaustReason.VALIDATION,
        )
        return bid_id

    # ========== Queries ==========

    def get(self, bid_id: int) -> BidRecord:
        record = self._records.get(bid_id)
        if record is None:
            raise InvariantError(f"unknown bid id {bid_id}")
        return record

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[BidRecord]:
        return iter(self._records.values())

    def records(self) -> List[BidRecord]:
        return list(self._records.values())

    def pending_ids(self) -> List[int]:
        """Ids of bids in PENDING state, in registration order."""
        return [bid_id for bid_id, rec in self._records.items() if rec.state == BidState.PENDING]

    def has_pending(self) -> bool:
        return any(rec.state == BidState.PENDING for rec in self._records.values())

    def all_terminal(self) -> bool:
        return all(rec.is_terminal for rec in self._records.values())

    def count(self, state: BidState) -> int:
        return sum(1 for rec in self._records.values() if rec.state == state)

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ========== Transitions ==========

    def transition(
        self,
        bid_id: int,
        to_state: BidState,
        reason: Optional[str] = None,
        block_number: Optional[int] = None,
        tx_hash: Optional[str] = None,
        error: Optional[str] = None,
        exhaust_reason: Optional[ExhaustReason] = None,
    ) -> BidRecord:
        """
        Move a bid to a new state.

        Raises:
            InvariantError: unknown bid, frozen registry, or a transition the
                table does not allow
        """
        self._ensure_mutable()
        record = self.get(bid_id)
        from_state = record.state

        if to_state not in VALID_TRANSITIONS.get(from_state, []):
            raise InvariantError(
                f"illegal transition for bid {bid_id}: {from_state.name} -> {to_state.name}"
            )
        if to_state == BidState.SUBMITTED and not tx_hash:
            raise InvariantError(f"bid {bid_id} cannot be SUBMITTED without a tx hash")

        record.transitions.append(
            StateTransition(
                from_state=from_state,
                to_state=to_state,
                timestamp_ms=int(time.time() * 1000),
                block_number=block_number,
                reason=reason,
            )
        )
        record.state = to_state
        if tx_hash:
            record.tx_hash = tx_hash
        if error:
            record.last_error = error
        if to_state == BidState.EXHAUSTED:
            record.exhaust_reason = exhaust_reason or ExhaustReason.ATTEMPTS
        return record

    def record_attempt(
        self,
        bid_id: int,
        outcome: AttemptOutcome,
        block_number: Optional[int] = None,
    ) -> BidRecord:
        """
        Apply the result of one attempt to a PENDING bid.

        Counts the attempt, then moves the bid to SUBMITTED, or through FAILED
        to PENDING (retry) or EXHAUSTED. Either all of it happens or, on an
        InvariantError, nothing does.
        """
        self._ensure_mutable()
        record = self.get(bid_id)
        if record.state != BidState.PENDING:
            raise InvariantError(f"bid {bid_id} is {record.state.name}, attempts require PENDING")
        if record.attempts >= self.max_attempts:
            raise InvariantError(f"bid {bid_id} already used {record.attempts} attempts")
        if outcome.ok and not outcome.tx_hash:
            raise InvariantError(f"bid {bid_id} attempt succeeded without a tx hash")

        record.attempts += 1
        target = next_state(record.attempts, outcome, self.max_attempts)

        if target == BidState.SUBMITTED:
            self.transition(bid_id, BidState.SUBMITTED, reason="broadcast_accepted",
                            block_number=block_number, tx_hash=outcome.tx_hash)
            log_event(log, "bid_submitted", bid_id=bid_id, tx_hash=outcome.tx_hash,
                      attempts=record.attempts, block=block_number)
            return record

        error_text = str(outcome.error)
        self.transition(bid_id, BidState.FAILED, reason=outcome.error.stage,
                        block_number=block_number, error=error_text)

        if target == BidState.PENDING:
            self.transition(bid_id, BidState.PENDING, reason="retry", block_number=block_number)
            log_event(log, "bid_retry_scheduled", level=logging.WARNING, bid_id=bid_id,
                      attempts=record.attempts, max_attempts=self.max_attempts, error=error_text)
            return record

        exhaust_reason = ExhaustReason.PERMANENT_REVERT if outcome.permanent else ExhaustReason.ATTEMPTS
        self.transition(bid_id, BidState.EXHAUSTED, reason=exhaust_reason.value,
                        block_number=block_number, exhaust_reason=exhaust_reason)
        log_event(log, "bid_exhausted", level=logging.ERROR, bid_id=bid_id,
                  attempts=record.attempts, reason=exhaust_reason.value, error=error_text)
        return record

    def expire_pending(self, block_number: Optional[int] = None) -> List[int]:
        """Exhaust every PENDING bid because the window closed. Attempts are not consumed."""
        expired = self.pending_ids()
        for bid_id in expired:
            self.transition(
                bid_id,
                BidState.EXHAUSTED,
                reason=ExhaustReason.WINDOW_CLOSED.value,
                block_number=block_number,
                exhaust_reason=ExhaustReason.WINDOW_CLOSED,
            )
            log_event(log, "bid_exhausted", level=logging.ERROR, bid_id=bid_id,
                      attempts=self.get(bid_id).attempts, reason=ExhaustReason.WINDOW_CLOSED.value)
        return expired

    def note_receipt(self, bid_id: int, status: int) -> None:
        """Attach a receipt status to a SUBMITTED bid. The state never changes."""
        self._ensure_mutable()
        record = self.get(bid_id)
        if record.state != BidState.SUBMITTED:
            raise InvariantError(f"bid {bid_id} is {record.state.name}, receipts require SUBMITTED")
        record.receipt_status = status

    def freeze(self) -> None:
        """Make the registry read-only (the loop has exited)."""
        self._frozen = True

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise InvariantError("bid registry is frozen")

    def get_stats(self) -> Dict[str, int]:
        return {
            "total": len(self._records),
            "pending": self.count(BidState.PENDING),
            "submitted": self.count(BidState.SUBMITTED),
            "exhausted": self.count(BidState.EXHAUSTED),
        }
