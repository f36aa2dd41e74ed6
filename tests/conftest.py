"""
Pytest configuration and fixtures.
Adds the repo root to sys.path so tests can import ccabot without installing it.
"""

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from ccabot.auction.context import AuctionContext, AuctionWindow, Eligibility  # noqa: E402
from ccabot.auction.ticks import TickLadder  # noqa: E402

OWNER = "0x1111111111111111111111111111111111111111"
OTHER_OWNER = "0x2222222222222222222222222222222222222222"


def make_ctx(
    floor_price: int = 100,
    tick_spacing: int = 100,
    max_bid_price: int = 300,
    start_block: int = 10,
    end_block: int = 15,
    max_purchase_limit=None,
    total_purchased: int = 0,
    has_soulbound: bool = True,
    require_soulbound: bool = False,
) -> AuctionContext:
    return AuctionContext(
        ladder=TickLadder(floor_price, tick_spacing, max_bid_price),
        window=AuctionWindow(start_block, end_block),
        eligibility=Eligibility(
            max_purchase_limit=max_purchase_limit,
            total_purchased=total_purchased,
            has_soulbound=has_soulbound,
            require_soulbound=require_soulbound,
        ),
    )


@pytest.fixture
def ctx() -> AuctionContext:
    """Ticks [100, 200, 300], window [10, 15), no cap."""
    return make_ctx()
