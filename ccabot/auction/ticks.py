"""
Tick ladder and Q96 price helpers.

The auction only accepts prices on a discrete ladder:

    floor_price, floor_price + spacing, floor_price + 2 * spacing, ...

capped by MAX_BID_PRICE. MAX_BID_PRICE itself is always admissible (it is the
market-order price) even when it does not sit on the spacing grid, in which
case it is the ladder's top rung.

Prices are Q96 fixed-point integers (96 fractional bits).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, localcontext
from typing import Optional

Q96 = 1 << 96


def price_to_q96(price: Decimal | str | int) -> int:
    """Convert a decimal price to Q96, rounding down (never above what was asked)."""
    with localcontext() as ctx:
        ctx.prec = 120
        value = Decimal(price) * Q96
        if value < 0:
            raise ValueError(f"price must be non-negative: {price}")
        return int(value.to_integral_value(rounding=ROUND_FLOOR))


def q96_to_price(value: int) -> Decimal:
    """Convert a Q96 integer back to a decimal price (for display)."""
    with localcontext() as ctx:
        ctx.prec = 60
        return Decimal(value) / Decimal(Q96)


@dataclass(frozen=True)
class Alignment:
    tick: int
    price: int
    adjusted: bool


@dataclass(frozen=True)
class TickLadder:
    """Admissible prices of the auction, addressed by rung index."""

    floor_price: int
    tick_spacing: int
    max_bid_price: int

    def __post_init__(self) -> None:
        if self.tick_spacing <= 0:
            raise ValueError(f"tick spacing must be > 0, got {self.tick_spacing}")
        if self.floor_price < 0:
            raise ValueError(f"floor price must be >= 0, got {self.floor_price}")
        if self.max_bid_price < self.floor_price:
            raise ValueError(
                f"max bid price {self.max_bid_price} is below floor price {self.floor_price}"
            )

    @property
    def _grid_top(self) -> int:
        return (self.max_bid_price - self.floor_price) // self.tick_spacing

    @property
    def max_on_grid(self) -> bool:
        return (self.max_bid_price - self.floor_price) % self.tick_spacing == 0

    @property
    def top_index(self) -> int:
        """Index of MAX_BID_PRICE on the ladder."""
        return self._grid_top if self.max_on_grid else self._grid_top + 1

    def __len__(self) -> int:
        return self.top_index + 1

    def price_at(self, index: int) -> int:
        if index < 0 or index > self.top_index:
            raise IndexError(f"tick index {index} outside ladder [0, {self.top_index}]")
        if index == self.top_index:
            return self.max_bid_price
        return self.floor_price + index * self.tick_spacing

    def index_of(self, price: int) -> Optional[int]:
        """Rung index of an admissible price, None when the price is not a tick."""
        if price == self.max_bid_price:
            return self.top_index
        if price < self.floor_price or price > self.max_bid_price:
            return None
        offset = price - self.floor_price
        if offset % self.tick_spacing:
            return None
        return offset // self.tick_spacing

    def __contains__(self, price: object) -> bool:
        return isinstance(price, int) and self.index_of(price) is not None

    def is_market(self, price: int) -> bool:
        return price == self.max_bid_price

    def align_down(self, price: int) -> Optional[Alignment]:
        """
        Greatest tick that is <= price.

        The market-order price passes through unchanged. Returns None when the
        price is below the floor (no admissible tick exists). Prices above the
        cap are clamped to the top rung and flagged as adjusted.
        """
        if price >= self.max_bid_price:
            return Alignment(
                tick=self.top_index,
                price=self.max_bid_price,
                adjusted=price != self.max_bid_price,
            )
        if price < self.floor_price:
            return None
        index = (price - self.floor_price) // self.tick_spacing
        aligned = self.floor_price + index * self.tick_spacing
        return Alignment(tick=index, price=aligned, adjusted=aligned != price)
