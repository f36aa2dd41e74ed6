"""
Bid validation and tick alignment.

Turns a raw BidSpec into a contract-legal PlannedBid, or raises
BidValidationError with a RejectionReason. Pure: no IO, identical output for
identical input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

from eth_utils import is_address, to_checksum_address

from ccabot.auction.context import AuctionContext
from ccabot.errors import BidValidationError
from ccabot.infra.logging_cfg import log_event

log = logging.getLogger("ccabot")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
UINT128_MAX = (1 << 128) - 1


class RejectionReason(Enum):
    AMOUNT_ZERO = "amount_zero"
    AMOUNT_TOO_LARGE = "amount_too_large"
    PRICE_ABOVE_MAX = "price_above_max"
    PRICE_BELOW_FLOOR = "price_below_floor"
    INVALID_OWNER = "invalid_owner"
    CAP_EXCEEDED = "cap_exceeded"
    INELIGIBLE = "ineligible"


@dataclass(frozen=True)
class BidSpec:
    """
    User intent for one bid.

    Attributes:
        max_price: Q96 max price; None is a market order (MAX_BID_PRICE)
        amount: Currency amount in base units
        owner: Bid owner; defaults to the signer when None
    """

    max_price: Optional[int]
    amount: int
    owner: Optional[str] = None

    @property
    def is_market(self) -> bool:
        return self.max_price is None


@dataclass(frozen=True)
class PlannedBid:
    """Validated, tick-aligned bid ready for submission."""

    owner: str
    amount: int
    aligned_tick: int
    aligned_price: int
    adjusted: bool
    requested_price: int


def resolve_owner(owner: Optional[str], default_owner: Optional[str]) -> str:
    candidate = (owner or default_owner or "").strip()
    if not candidate or not is_address(candidate):
        raise BidValidationError(RejectionReason.INVALID_OWNER, f"owner {candidate!r} is not an address")
    checksummed = to_checksum_address(candidate)
    if checksummed == ZERO_ADDRESS:
        raise BidValidationError(RejectionReason.INVALID_OWNER, "owner is the zero address")
    return checksummed


def validate_and_align(
    spec: BidSpec,
    ctx: AuctionContext,
    default_owner: Optional[str] = None,
    committed: int = 0,
) -> PlannedBid:
    """
    Validate a bid spec and snap its price down onto the tick ladder.

    Args:
        spec: Raw bid
        ctx: Auction snapshot
        default_owner: Owner used when the spec has none (the signer)
        committed: Amount already claimed by earlier bids against the same cap

    Returns:
        PlannedBid

    Raises:
        BidValidationError: the bid can never be submitted
    """
    if spec.amount <= 0:
        raise BidValidationError(RejectionReason.AMOUNT_ZERO, f"amount must be > 0, got {spec.amount}")
    if spec.amount > UINT128_MAX:
        raise BidValidationError(RejectionReason.AMOUNT_TOO_LARGE, f"amount {spec.amount} exceeds uint128")

    requested = ctx.max_bid_price if spec.max_price is None else spec.max_price
    if requested > ctx.max_bid_price:
        raise BidValidationError(
            RejectionReason.PRICE_ABOVE_MAX,
            f"max price {requested} exceeds auction cap {ctx.max_bid_price}",
        )

    owner = resolve_owner(spec.owner, default_owner)

    alignment = ctx.ladder.align_down(requested)
    if alignment is None:
        raise BidValidationError(
            RejectionReason.PRICE_BELOW_FLOOR,
            f"max price {requested} is below floor price {ctx.floor_price}",
        )

    # Eligibility is checked on the aligned bid.
    eligibility = ctx.eligibility
    if eligibility.require_soulbound and not eligibility.has_soulbound:
        raise BidValidationError(RejectionReason.INELIGIBLE, "sender is missing the required soulbound token")
    if not eligibility.within_cap(spec.amount, committed):
        raise BidValidationError(
            RejectionReason.CAP_EXCEEDED,
            f"amount {spec.amount} exceeds remaining allocation "
            f"(purchased {eligibility.total_purchased}, committed {committed}, "
            f"cap {eligibility.max_purchase_limit})",
        )

    return PlannedBid(
        owner=owner,
        amount=spec.amount,
        aligned_tick=alignment.tick,
        aligned_price=alignment.price,
        adjusted=alignment.adjusted,
        requested_price=requested,
    )


PlanResult = Union[PlannedBid, BidValidationError]


def plan_bids(
    specs: Sequence[BidSpec],
    ctx: AuctionContext,
    default_owner: Optional[str] = None,
) -> List[Tuple[BidSpec, PlanResult]]:
    """
    Validate every spec in input order.

    All bids are sent by the same signer and draw on the same allocation, so
    accepted amounts accumulate against the cap for later bids.
    """
    results: List[Tuple[BidSpec, PlanResult]] = []
    committed = 0
    for index, spec in enumerate(specs):
        try:
            planned = validate_and_align(spec, ctx, default_owner, committed)
        except BidValidationError as err:
            log_event(
                log,
                "bid_rejected",
                level=logging.WARNING,
                bid_id=index,
                reason=err.reason.value,
                detail=err.detail,
            )
            results.append((spec, err))
            continue

        committed += planned.amount
        if planned.adjusted:
            log_event(
                log,
                "bid_price_adjusted",
                level=logging.WARNING,
                bid_id=index,
                requested_price=planned.requested_price,
                aligned_price=planned.aligned_price,
                aligned_tick=planned.aligned_tick,
            )
        log_event(
            log,
            "bid_planned",
            bid_id=index,
            owner=planned.owner,
            amount=planned.amount,
            aligned_price=planned.aligned_price,
            market=ctx.ladder.is_market(planned.aligned_price),
        )
        results.append((spec, planned))
    return results
