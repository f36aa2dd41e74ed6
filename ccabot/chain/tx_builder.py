"""
submitBid transaction construction.

Calldata is encoded with eth_abi against the 5-argument submitBid overload
(the one taking a prevTickPrice hint). The bid amount is sent as msg.value.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from eth_abi import encode as eth_abi_encode
from eth_utils import to_checksum_address

from ccabot.chain.abi import SUBMIT_BID_ARG_TYPES, SUBMIT_BID_SELECTOR


@dataclass(frozen=True)
class FeeOverrides:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    def __post_init__(self) -> None:
        if self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("max priority fee cannot exceed max fee per gas")


class AccessListMode(Enum):
    NONE = "none"
    GENERATE = "generate"


@dataclass(frozen=True)
class TxConfig:
    fees: Optional[FeeOverrides] = None
    access_list: AccessListMode = AccessListMode.NONE
    gas_multiplier: float = 1.2

    def with_fee_overrides(self, max_fee_per_gas: int, max_priority_fee_per_gas: int) -> "TxConfig":
        return replace(self, fees=FeeOverrides(max_fee_per_gas, max_priority_fee_per_gas))

    def generate_access_list(self) -> "TxConfig":
        return replace(self, access_list=AccessListMode.GENERATE)


@dataclass(frozen=True)
class SubmitBidParams:
    max_price: int
    amount: int
    owner: str
    prev_tick_price: int
    hook_data: bytes = b""


@dataclass(frozen=True)
class PreparedTx:
    """
    Unsigned EIP-1559 transaction for one bid attempt.

    bid_key ties the attempt to the planned bid it came from. sent_hash is set
    when an earlier broadcast for that bid turned out to have reached the node,
    in which case there is nothing left to simulate or send.
    """
    bid: SubmitBidParams
    params: Dict[str, Any] = field(default_factory=dict)
    bid_key: Optional[int] = None
    sent_hash: Optional[str] = None

    @property
    def nonce(self) -> int:
        return self.params["nonce"]

    @property
    def gas(self) -> Optional[int]:
        return self.params.get("gas")

    def with_params(self, **updates: Any) -> "PreparedTx":
        return replace(self, params={**self.params, **updates})


def encode_submit_bid(bid: SubmitBidParams) -> bytes:
    """Selector + ABI-encoded arguments for submitBid."""
    args = eth_abi_encode(
        SUBMIT_BID_ARG_TYPES,
        [bid.max_price, bid.amount, to_checksum_address(bid.owner), bid.prev_tick_price, bid.hook_data],
    )
    return SUBMIT_BID_SELECTOR + args


def build_base_request(
    sender: str,
    cca: str,
    bid: SubmitBidParams,
    nonce: int,
    chain_id: int,
    max_fee_per_gas: int,
    max_priority_fee_per_gas: int,
) -> Dict[str, Any]:
    return {
        "type": 2,
        "chainId": chain_id,
        "from": to_checksum_address(sender),
        "to": to_checksum_address(cca),
        "data": "0x" + encode_submit_bid(bid).hex(),
        "value": bid.amount,
        "nonce": nonce,
        "maxFeePerGas": max_fee_per_gas,
        "maxPriorityFeePerGas": max_priority_fee_per_gas,
    }


def apply_access_list(params: Dict[str, Any], access_list: List[Dict[str, Any]]) -> Dict[str, Any]:
    normalized = [
        {"address": entry["address"], "storageKeys": list(entry.get("storageKeys", []))}
        for entry in access_list
    ]
    return {**params, "accessList": normalized}


def default_max_fee(base_fee: int, priority_fee: int) -> int:
    """Headroom for two full base-fee doublings, like most wallets."""
    return 2 * base_fee + priority_fee
