"""
Tests for BidRegistry and next_state.

Tests cover:
- Transition table enforcement
- Attempt accounting and the retry budget
- Permanent reverts
- Window-close expiry
- Freezing
"""

import pytest

from ccabot.auction.validator import BidSpec, PlannedBid, RejectionReason
from ccabot.errors import AttemptError, BidValidationError, InvariantError, PermanentRevertError
from ccabot.execution.bid_state_machine import (
    AttemptOutcome,
    BidRegistry,
    BidState,
    ExhaustReason,
    next_state,
)
from conftest import OWNER


def _planned(amount: int = 1, price: int = 200) -> PlannedBid:
    return PlannedBid(owner=OWNER, amount=amount, aligned_tick=1, aligned_price=price,
                      adjusted=False, requested_price=price)


def _transient() -> AttemptOutcome:
    return AttemptOutcome.failure(AttemptError("simulate", "execution reverted"))


class TestNextState:
    """Pure retry decision."""

    def test_success(self):
        assert next_state(1, AttemptOutcome.success("0xabc")) == BidState.SUBMITTED

    def test_transient_under_budget(self):
        assert next_state(1, _transient()) == BidState.PENDING
        assert next_state(2, _transient()) == BidState.PENDING

    def test_transient_budget_spent(self):
        assert next_state(3, _transient()) == BidState.EXHAUSTED

    def test_permanent_first_attempt(self):
        outcome = AttemptOutcome.failure(PermanentRevertError("simulate", "AuctionIsOver"))
        assert next_state(1, outcome) == BidState.EXHAUSTED

    def test_custom_budget(self):
        assert next_state(3, _transient(), max_attempts=5) == BidState.PENDING


class TestRegistration:
    def test_ids_follow_registration_order(self):
        reg = BidRegistry()
        assert reg.register(_planned()) == 0
        assert reg.register(_planned()) == 1
        assert reg.pending_ids() == [0, 1]

    def test_rejected_bid_is_exhausted(self):
        reg = BidRegistry()
        err = BidValidationError(RejectionReason.AMOUNT_ZERO, "amount must be > 0")
        bid_id = reg.register_rejected(BidSpec(max_price=None, amount=0), err)
        record = reg.get(bid_id)
        assert record.state == BidState.EXHAUSTED
        assert record.exhaust_reason == ExhaustReason.VALIDATION
        assert record.attempts == 0
        assert "amount_zero" in record.last_error
        assert reg.pending_ids() == []

    def test_unknown_id(self):
        with pytest.raises(InvariantError):
            BidRegistry().get(7)

    def test_zero_budget_rejected(self):
        with pytest.raises(ValueError):
            BidRegistry(max_attempts=0)


class TestTransitions:
    """Transition table enforcement."""

    def test_terminal_states_have_no_exits(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        reg.record_attempt(bid_id, AttemptOutcome.success("0xabc"))
        with pytest.raises(InvariantError):
            reg.transition(bid_id, BidState.PENDING)
        with pytest.raises(InvariantError):
            reg.transition(bid_id, BidState.EXHAUSTED)

    def test_pending_cannot_skip_to_pending(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        with pytest.raises(InvariantError):
            reg.transition(bid_id, BidState.PENDING)

    def test_submitted_requires_hash(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        with pytest.raises(InvariantError):
            reg.transition(bid_id, BidState.SUBMITTED)

    def test_audit_trail(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        reg.record_attempt(bid_id, _transient(), block_number=10)
        reg.record_attempt(bid_id, AttemptOutcome.success("0xabc"), block_number=11)
        states = [(t.from_state, t.to_state) for t in reg.get(bid_id).transitions]
        assert states == [
            (BidState.PENDING, BidState.FAILED),
            (BidState.FAILED, BidState.PENDING),
            (BidState.PENDING, BidState.SUBMITTED),
        ]
        assert reg.get(bid_id).transitions[-1].block_number == 11


class TestRecordAttempt:
    """Attempt accounting."""

    def test_success(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        record = reg.record_attempt(bid_id, AttemptOutcome.success("0xabc"))
        assert record.state == BidState.SUBMITTED
        assert record.tx_hash == "0xabc"
        assert record.attempts == 1

    def test_three_transient_failures_exhaust(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        for _ in range(2):
            assert reg.record_attempt(bid_id, _transient()).state == BidState.PENDING
        record = reg.record_attempt(bid_id, _transient())
        assert record.state == BidState.EXHAUSTED
        assert record.attempts == 3
        assert record.exhaust_reason == ExhaustReason.ATTEMPTS
        assert "execution reverted" in record.last_error

    def test_permanent_revert_exhausts_immediately(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        outcome = AttemptOutcome.failure(PermanentRevertError("simulate", "MaxPurchaseLimitExceeded"))
        record = reg.record_attempt(bid_id, outcome)
        assert record.state == BidState.EXHAUSTED
        assert record.attempts == 1
        assert record.exhaust_reason == ExhaustReason.PERMANENT_REVERT

    def test_submitted_bid_cannot_be_attempted_again(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        reg.record_attempt(bid_id, AttemptOutcome.success("0xabc"))
        with pytest.raises(InvariantError):
            reg.record_attempt(bid_id, AttemptOutcome.success("0xdef"))
        assert reg.get(bid_id).attempts == 1

    def test_success_without_hash_leaves_record_untouched(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        with pytest.raises(InvariantError):
            reg.record_attempt(bid_id, AttemptOutcome(tx_hash=None, error=None))
        record = reg.get(bid_id)
        assert record.attempts == 0
        assert record.state == BidState.PENDING

    def test_counters_are_per_bid(self):
        reg = BidRegistry()
        a = reg.register(_planned())
        b = reg.register(_planned())
        reg.record_attempt(a, _transient())
        reg.record_attempt(a, _transient())
        assert reg.get(a).attempts == 2
        assert reg.get(b).attempts == 0


class TestExpireAndFreeze:
    def test_expire_does_not_consume_attempts(self):
        reg = BidRegistry()
        a = reg.register(_planned())
        b = reg.register(_planned())
        reg.record_attempt(a, _transient())
        reg.record_attempt(b, AttemptOutcome.success("0xabc"))
        assert reg.expire_pending(block_number=15) == [a]
        record = reg.get(a)
        assert record.state == BidState.EXHAUSTED
        assert record.exhaust_reason == ExhaustReason.WINDOW_CLOSED
        assert record.attempts == 1
        assert reg.get(b).state == BidState.SUBMITTED
        assert reg.all_terminal()

    def test_freeze_blocks_mutation(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        reg.freeze()
        assert reg.frozen
        with pytest.raises(InvariantError):
            reg.record_attempt(bid_id, _transient())
        with pytest.raises(InvariantError):
            reg.register(_planned())
        assert reg.get(bid_id).state == BidState.PENDING

    def test_receipt_requires_submitted(self):
        reg = BidRegistry()
        bid_id = reg.register(_planned())
        with pytest.raises(InvariantError):
            reg.note_receipt(bid_id, 1)
        reg.record_attempt(bid_id, AttemptOutcome.success("0xabc"))
        reg.note_receipt(bid_id, 0)
        assert reg.get(bid_id).receipt_status == 0
        assert reg.get(bid_id).state == BidState.SUBMITTED

    def test_stats(self):
        reg = BidRegistry()
        reg.register(_planned())
        reg.register_rejected(BidSpec(None, 0), BidValidationError(RejectionReason.AMOUNT_ZERO, "x"))
        assert reg.get_stats() == {"total": 2, "pending": 1, "submitted": 0, "exhausted": 1}
