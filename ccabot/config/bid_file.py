"""
TOML bid list loader.

    [[bids]]
    max_price = "market"                # or a raw Q96 integer, or {price = "0.0001"}
    amount = "2000000000000000000"      # base units; int or string
    owner = "0x..."                     # optional, defaults to the signer
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, List, Mapping, Optional

from ccabot.auction.ticks import price_to_q96
from ccabot.auction.validator import BidSpec
from ccabot.errors import BidFileError

MARKET = "market"


def _parse_int(value: Any, field: str, index: int) -> int:
    if isinstance(value, bool):
        raise BidFileError(f"bids[{index}].{field}: expected an integer, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip().replace("_", "")
        try:
            return int(text, 0)
        except ValueError:
            pass
    raise BidFileError(f"bids[{index}].{field}: expected an integer, got {value!r}")


def _parse_price(value: Any, index: int) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() == MARKET:
        return None
    if isinstance(value, Mapping):
        if "price" not in value:
            raise BidFileError(f"bids[{index}].max_price: table form needs a 'price' key")
        try:
            return price_to_q96(str(value["price"]))
        except (ArithmeticError, ValueError) as exc:
            raise BidFileError(f"bids[{index}].max_price: invalid decimal price {value['price']!r}") from exc
    return _parse_int(value, "max_price", index)


def parse_bids(data: Mapping[str, Any]) -> List[BidSpec]:
    entries = data.get("bids")
    if not isinstance(entries, list) or not entries:
        raise BidFileError("bid file must contain at least one [[bids]] entry")

    specs: List[BidSpec] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise BidFileError(f"bids[{index}] must be a table")
        if "amount" not in entry:
            raise BidFileError(f"bids[{index}] is missing 'amount'")
        owner = entry.get("owner")
        if owner is not None and not isinstance(owner, str):
            raise BidFileError(f"bids[{index}].owner must be a string")
        specs.append(
            BidSpec(
                max_price=_parse_price(entry.get("max_price", MARKET), index),
                amount=_parse_int(entry["amount"], "amount", index),
                owner=owner or None,
            )
        )
    return specs


def load_bid_file(path: str | Path) -> List[BidSpec]:
    """Read and parse a bid file. Raises BidFileError on any problem."""
    p = Path(path)
    try:
        with p.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise BidFileError(f"bid file not found: {p}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise BidFileError(f"bid file {p} is not valid TOML: {exc}") from exc
    return parse_bids(data)
