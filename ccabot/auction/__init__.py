"""
Auction package.

Tick ladder, auction snapshot and bid validation. Everything here is pure
apart from fetch_auction_context.
"""

from ccabot.auction.context import AuctionContext, AuctionWindow, Eligibility, fetch_auction_context
from ccabot.auction.ticks import Q96, TickLadder, price_to_q96, q96_to_price
from ccabot.auction.validator import BidSpec, PlannedBid, RejectionReason, plan_bids, validate_and_align

__all__ = [
    "AuctionContext",
    "AuctionWindow",
    "Eligibility",
    "fetch_auction_context",
    "Q96",
    "TickLadder",
    "price_to_q96",
    "q96_to_price",
    "BidSpec",
    "PlannedBid",
    "RejectionReason",
    "plan_bids",
    "validate_and_align",
]
