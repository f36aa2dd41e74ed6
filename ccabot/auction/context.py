"""
AuctionContext: one-time snapshot of auction-wide parameters.

Fetched once before bidding starts and treated as read-only for the rest of
the run. A partial snapshot is useless, so any failed read aborts the fetch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ccabot.auction.ticks import TickLadder
from ccabot.errors import FetchError
from ccabot.infra.logging_cfg import log_event

log = logging.getLogger("ccabot")


@dataclass(frozen=True)
class AuctionParams:
    """Raw values as read from the auction, validation hook and soulbound contracts."""

    contributor_period_end_block: int
    max_purchase_limit: Optional[int]
    floor_price: int
    tick_spacing: int
    max_bid_price: int
    end_block: int
    total_purchased: int
    has_any_token: bool


@dataclass(frozen=True)
class AuctionWindow:
    """Block range during which the public auction accepts bids: [start_block, end_block)."""

    start_block: int
    end_block: int

    def has_started(self, block_number: int) -> bool:
        return block_number >= self.start_block

    def has_closed(self, block_number: int) -> bool:
        return block_number >= self.end_block

    def is_open(self, block_number: int) -> bool:
        return self.has_started(block_number) and not self.has_closed(block_number)


@dataclass(frozen=True)
class Eligibility:
    """Allocation cap and gating data for the sending account."""

    max_purchase_limit: Optional[int]  # None: no cap configured
    total_purchased: int = 0
    has_soulbound: bool = True
    require_soulbound: bool = False

    @property
    def remaining_allocation(self) -> Optional[int]:
        if self.max_purchase_limit is None:
            return None
        return max(0, self.max_purchase_limit - self.total_purchased)

    def within_cap(self, amount: int, committed: int = 0) -> bool:
        if self.max_purchase_limit is None:
            return True
        return self.total_purchased + committed + amount <= self.max_purchase_limit


@dataclass(frozen=True)
class AuctionContext:
    ladder: TickLadder
    window: AuctionWindow
    eligibility: Eligibility

    @property
    def max_bid_price(self) -> int:
        return self.ladder.max_bid_price

    @property
    def floor_price(self) -> int:
        return self.ladder.floor_price

    @classmethod
    def from_params(cls, params: AuctionParams, require_soulbound: bool = False) -> "AuctionContext":
        """Build a context from raw reads, raising FetchError on an inconsistent snapshot."""
        try:
            ladder = TickLadder(
                floor_price=params.floor_price,
                tick_spacing=params.tick_spacing,
                max_bid_price=params.max_bid_price,
            )
        except ValueError as exc:
            raise FetchError(f"invalid tick ladder: {exc}") from exc

        if params.end_block <= params.contributor_period_end_block:
            raise FetchError(
                f"auction window is empty: start {params.contributor_period_end_block}, "
                f"end {params.end_block}"
            )

        return cls(
            ladder=ladder,
            window=AuctionWindow(
                start_block=params.contributor_period_end_block,
                end_block=params.end_block,
            ),
            eligibility=Eligibility(
                max_purchase_limit=params.max_purchase_limit,
                total_purchased=params.total_purchased,
                has_soulbound=params.has_any_token,
                require_soulbound=require_soulbound,
            ),
        )


class AuctionReader(Protocol):
    async def read_auction_params(self) -> AuctionParams: ...


async def fetch_auction_context(client: AuctionReader, require_soulbound: bool = False) -> AuctionContext:
    """
    Read the auction snapshot in a single pass.

    No retry here: the caller decides whether to retry startup or abort.

    Raises:
        FetchError: any read failed or the snapshot is inconsistent
    """
    try:
        params = await client.read_auction_params()
    except FetchError:
        raise
    except Exception as exc:
        raise FetchError(f"failed to read auction parameters: {exc}") from exc

    ctx = AuctionContext.from_params(params, require_soulbound=require_soulbound)
    log_event(
        log,
        "auction_context_loaded",
        floor_price=ctx.ladder.floor_price,
        tick_spacing=ctx.ladder.tick_spacing,
        max_bid_price=ctx.ladder.max_bid_price,
        start_block=ctx.window.start_block,
        end_block=ctx.window.end_block,
        max_purchase_limit=ctx.eligibility.max_purchase_limit,
        total_purchased=ctx.eligibility.total_purchased,
        has_soulbound=ctx.eligibility.has_soulbound,
    )
    return ctx
