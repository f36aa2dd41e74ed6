"""
Contract ABIs and addresses for the continuous clearing auction deployment.

Only the functions the bidder touches are declared.
"""

from __future__ import annotations

from eth_utils import function_signature_to_4byte_selector, to_checksum_address

# Default deployment
CCA_ADDRESS = to_checksum_address("0x608c4e792C65f5527B3f70715deA44d3b302F4Ee")
HOOK_ADDRESS = to_checksum_address("0x2DD6e0E331DE9743635590F6c8BC5038374CAc9D")
SOULBOUND_ADDRESS = to_checksum_address("0xBf3CF56c587F5e833337200536A52E171EF29A09")


def _view(name: str, inputs=(), outputs=("uint256",)) -> dict:
    return {
        "inputs": [{"name": f"arg{i}", "type": t} for i, t in enumerate(inputs)],
        "name": name,
        "outputs": [{"name": f"out{i}", "type": t} for i, t in enumerate(outputs)],
        "stateMutability": "view",
        "type": "function",
    }


CCA_ABI = [
    _view("floorPrice"),
    _view("tickSpacing"),
    _view("MAX_BID_PRICE"),
    _view("endBlock", outputs=("uint64",)),
    # ticks(price) returns the Tick struct (next, currencyDemandQ96); a static
    # struct encodes the same as its fields.
    _view("ticks", inputs=("uint256",), outputs=("uint256", "uint256")),
]

VALIDATION_HOOK_ABI = [
    _view("CONTRIBUTOR_PERIOD_END_BLOCK"),
    _view("MAX_PURCHASE_LIMIT"),
    _view("totalPurchased", inputs=("address",)),
]

SOULBOUND_ABI = [
    _view("hasAnyToken", inputs=("address",), outputs=("bool",)),
]

# submitBid(maxPrice, amount, owner, prevTickPrice, hookData)
SUBMIT_BID_SIGNATURE = "submitBid(uint256,uint128,address,uint256,bytes)"
SUBMIT_BID_ARG_TYPES = ["uint256", "uint128", "address", "uint256", "bytes"]
SUBMIT_BID_SELECTOR = function_signature_to_4byte_selector(SUBMIT_BID_SIGNATURE)
