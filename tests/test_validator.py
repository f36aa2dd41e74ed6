"""
Tests for bid validation, alignment and planning.
"""

import pytest

from ccabot.auction.validator import (
    UINT128_MAX,
    BidSpec,
    PlannedBid,
    RejectionReason,
    plan_bids,
    validate_and_align,
)
from ccabot.errors import BidValidationError
from conftest import OTHER_OWNER, OWNER, make_ctx


def _reason(spec, ctx, **kwargs):
    with pytest.raises(BidValidationError) as exc_info:
        validate_and_align(spec, ctx, default_owner=OWNER, **kwargs)
    return exc_info.value.reason


class TestValidateAndAlign:
    """Rejections and alignment of a single bid."""

    def test_market_bid_unchanged(self, ctx):
        planned = validate_and_align(BidSpec(max_price=None, amount=2 * 10**18), ctx, OWNER)
        assert planned.aligned_price == 300
        assert planned.requested_price == 300
        assert planned.adjusted is False
        assert planned.owner == OWNER

    def test_explicit_max_price_is_market(self, ctx):
        planned = validate_and_align(BidSpec(max_price=300, amount=1), ctx, OWNER)
        assert planned.aligned_price == 300
        assert not planned.adjusted

    def test_price_below_tick_aligns_down(self, ctx):
        planned = validate_and_align(BidSpec(max_price=299, amount=5 * 10**17), ctx, OWNER)
        assert planned.aligned_price == 200
        assert planned.aligned_tick == 1
        assert planned.adjusted is True
        assert planned.requested_price == 299

    def test_zero_amount(self, ctx):
        assert _reason(BidSpec(max_price=200, amount=0), ctx) == RejectionReason.AMOUNT_ZERO

    def test_amount_over_uint128(self, ctx):
        assert _reason(BidSpec(max_price=200, amount=UINT128_MAX + 1), ctx) == RejectionReason.AMOUNT_TOO_LARGE

    def test_price_above_max(self, ctx):
        assert _reason(BidSpec(max_price=301, amount=1), ctx) == RejectionReason.PRICE_ABOVE_MAX

    def test_price_below_floor(self, ctx):
        assert _reason(BidSpec(max_price=99, amount=1), ctx) == RejectionReason.PRICE_BELOW_FLOOR

    def test_zero_owner(self, ctx):
        spec = BidSpec(max_price=200, amount=1, owner="0x" + "0" * 40)
        assert _reason(spec, ctx) == RejectionReason.INVALID_OWNER

    def test_malformed_owner(self, ctx):
        spec = BidSpec(max_price=200, amount=1, owner="0x1234")
        assert _reason(spec, ctx) == RejectionReason.INVALID_OWNER

    def test_missing_owner_without_default(self, ctx):
        with pytest.raises(BidValidationError) as exc_info:
            validate_and_align(BidSpec(max_price=200, amount=1), ctx, default_owner=None)
        assert exc_info.value.reason == RejectionReason.INVALID_OWNER

    def test_owner_is_checksummed(self, ctx):
        lower = "0x" + "ab" * 20
        planned = validate_and_align(BidSpec(max_price=200, amount=1, owner=lower), ctx, OWNER)
        assert planned.owner != lower
        assert planned.owner.lower() == lower

    def test_cap_exceeded(self):
        ctx = make_ctx(max_purchase_limit=1000, total_purchased=900)
        assert _reason(BidSpec(max_price=200, amount=101), ctx) == RejectionReason.CAP_EXCEEDED

    def test_cap_counts_committed(self):
        ctx = make_ctx(max_purchase_limit=1000)
        assert _reason(BidSpec(max_price=200, amount=500), ctx, committed=600) == RejectionReason.CAP_EXCEEDED

    def test_soulbound_required(self):
        ctx = make_ctx(has_soulbound=False, require_soulbound=True)
        assert _reason(BidSpec(max_price=200, amount=1), ctx) == RejectionReason.INELIGIBLE

    def test_soulbound_not_required(self):
        ctx = make_ctx(has_soulbound=False, require_soulbound=False)
        assert validate_and_align(BidSpec(max_price=200, amount=1), ctx, OWNER).aligned_price == 200

    def test_deterministic(self, ctx):
        spec = BidSpec(max_price=250, amount=7, owner=OTHER_OWNER)
        assert validate_and_align(spec, ctx, OWNER) == validate_and_align(spec, ctx, OWNER)


class TestPlanBids:
    """Whole-list planning."""

    def test_example_two_bids(self, ctx):
        specs = [
            BidSpec(max_price=None, amount=2 * 10**18),
            BidSpec(max_price=299, amount=5 * 10**17),
        ]
        results = plan_bids(specs, ctx, OWNER)
        assert [spec for spec, _ in results] == specs
        first, second = (r for _, r in results)
        assert isinstance(first, PlannedBid) and not first.adjusted
        assert isinstance(second, PlannedBid) and second.adjusted and second.aligned_price == 200

    def test_rejection_does_not_stop_planning(self, ctx):
        results = plan_bids([BidSpec(max_price=50, amount=1), BidSpec(max_price=100, amount=1)], ctx, OWNER)
        assert isinstance(results[0][1], BidValidationError)
        assert isinstance(results[1][1], PlannedBid)

    def test_shared_cap(self):
        ctx = make_ctx(max_purchase_limit=100)
        specs = [BidSpec(None, 60), BidSpec(None, 50), BidSpec(None, 40)]
        results = [r for _, r in plan_bids(specs, ctx, OWNER)]
        assert isinstance(results[0], PlannedBid)
        assert isinstance(results[1], BidValidationError)
        assert results[1].reason == RejectionReason.CAP_EXCEEDED
        # rejected amounts do not count against the cap
        assert isinstance(results[2], PlannedBid)
