"""
Async web3 chain client.

Implements the reads the auction snapshot needs and the prepare -> simulate ->
send -> confirm steps of one bid attempt. Every call is bounded by a
client-side timeout. Failures leave this module as AttemptError (or
PermanentRevertError for reverts the classifier recognises) so the execution
loop never sees a raw web3 exception.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Dict, Mapping, Optional

from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncIPCProvider, AsyncWeb3, Web3, WebSocketProvider
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3RPCError
from web3.providers.persistent import PersistentConnectionProvider

from ccabot.auction.context import AuctionContext, AuctionParams
from ccabot.auction.validator import PlannedBid
from ccabot.chain.abi import (
    CCA_ABI,
    SOULBOUND_ABI,
    VALIDATION_HOOK_ABI,
)
from ccabot.chain.tx_builder import (
    AccessListMode,
    PreparedTx,
    SubmitBidParams,
    TxConfig,
    apply_access_list,
    build_base_request,
    default_max_fee,
)
from ccabot.errors import AttemptError
from ccabot.execution.head_source import BlockHead, head_from_payload
from ccabot.execution.revert_classifier import RevertClassifier
from ccabot.infra.logging_cfg import log_event
from ccabot.infra.nonce import NonceManager

log = logging.getLogger("ccabot")

# Upper bound on ticks(...) calls while looking for the prevTickPrice hint.
MAX_TICK_WALK = 10_000

# Node replies meaning this exact signed transaction is already in its pool.
ALREADY_KNOWN_MARKERS = ("already known", "known transaction", "already imported")
NONCE_TOO_LOW_MARKER = "nonce too low"


@dataclass(frozen=True)
class InDoubtSend:
    """A broadcast whose fate is unknown: the node may or may not hold it."""
    nonce: int
    tx_hash: str


def _mentions(err: AttemptError, markers) -> bool:
    message = err.message.lower()
    return any(m in message for m in markers)


def _is_rejection(err: AttemptError) -> bool:
    """True when the node answered with an error, so nothing was accepted."""
    return isinstance(err.__cause__, (Web3RPCError, ValueError, ContractLogicError))


def make_provider(rpc_url: str):
    """Pick the web3 provider from the URL scheme: http(s), ws(s) or an IPC path."""
    url = rpc_url.strip()
    lowered = url.lower()
    if lowered.startswith(("http://", "https://")):
        return AsyncHTTPProvider(url)
    if lowered.startswith(("ws://", "wss://")):
        return WebSocketProvider(url)
    return AsyncIPCProvider(url)


def _revert_data(exc: ContractLogicError) -> Optional[str]:
    data = getattr(exc, "data", None)
    if isinstance(data, (bytes, bytearray)):
        return "0x" + bytes(data).hex()
    if isinstance(data, str):
        return data
    return None


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return str(value)


class ChainClient:
    """
    Chain access for one signer against one auction deployment.

    Usage:
        client = await ChainClient.connect(rpc_url, signer, cca_address, hook, soulbound)
        params = await client.read_auction_params()
        tx = await client.prepare(planned, ctx)
        tx = await client.simulate(tx)
        tx_hash = await client.send(tx)
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        signer,
        cca_address: str,
        hook_address: Optional[str] = None,
        soulbound_address: Optional[str] = None,
        tx_config: Optional[TxConfig] = None,
        classifier: Optional[RevertClassifier] = None,
        call_timeout: float = 20.0,
        receipt_timeout: float = 120.0,
        eligibility_address: Optional[str] = None,
    ) -> None:
        self.w3 = w3
        self.signer = signer
        self.sender = to_checksum_address(signer.address)
        self.eligibility_address = to_checksum_address(eligibility_address or self.sender)
        self.cca_address = to_checksum_address(cca_address)
        self.tx_config = tx_config or TxConfig()
        self.classifier = classifier or RevertClassifier()
        self.call_timeout = call_timeout
        self.receipt_timeout = receipt_timeout
        self.nonces = NonceManager(self._pending_count)
        self._chain_id: Optional[int] = None
        # planned bid key -> send whose outcome is still unknown; its nonce stays with that bid
        self._in_doubt: Dict[int, InDoubtSend] = {}
        self.cca = w3.eth.contract(address=self.cca_address, abi=CCA_ABI)
        self.hook = (
            w3.eth.contract(address=to_checksum_address(hook_address), abi=VALIDATION_HOOK_ABI)
            if hook_address
            else None
        )
        self.soulbound = (
            w3.eth.contract(address=to_checksum_address(soulbound_address), abi=SOULBOUND_ABI)
            if soulbound_address
            else None
        )

    @classmethod
    async def connect(cls, rpc_url: str, signer, cca_address: str, **kwargs: Any) -> "ChainClient":
        provider = make_provider(rpc_url)
        w3 = AsyncWeb3(provider)
        if isinstance(provider, PersistentConnectionProvider):
            await provider.connect()
        log_event(log, "chain_connected", transport=type(provider).__name__)
        return cls(w3, signer, cca_address, **kwargs)

    @property
    def supports_subscriptions(self) -> bool:
        return isinstance(self.w3.provider, PersistentConnectionProvider)

    async def close(self) -> None:
        provider = self.w3.provider
        try:
            await provider.disconnect()
        except NotImplementedError:
            pass

    # ========== Plumbing ==========

    async def _call(self, stage: str, awaitable: Awaitable[Any]) -> Any:
        """Await one chain call under the timeout, converting failures to AttemptError."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.call_timeout)
        except AttemptError:
            raise
        except asyncio.TimeoutError as exc:
            raise AttemptError(stage, f"timed out after {self.call_timeout}s") from exc
        except ContractLogicError as exc:
            raise self.classifier.classify(stage, str(exc.message or exc), _revert_data(exc)) from exc
        except Exception as exc:
            raise AttemptError(stage, f"{type(exc).__name__}: {exc}") from exc

    async def _pending_count(self, account: str) -> int:
        return await self._call("nonce", self.w3.eth.get_transaction_count(account, "pending"))

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self._call("chain_id", self.w3.eth.chain_id)
        return self._chain_id

    # ========== Reads ==========

    async def read_auction_params(self) -> AuctionParams:
        """Read every auction parameter concurrently; any failure fails the whole read."""
        cca = self.cca.functions
        calls = [
            cca.floorPrice().call(),
            cca.tickSpacing().call(),
            cca.MAX_BID_PRICE().call(),
            cca.endBlock().call(),
        ]
        if self.hook is not None:
            hook = self.hook.functions
            calls += [
                hook.CONTRIBUTOR_PERIOD_END_BLOCK().call(),
                hook.MAX_PURCHASE_LIMIT().call(),
                hook.totalPurchased(self.eligibility_address).call(),
            ]
        if self.soulbound is not None:
            calls.append(self.soulbound.functions.hasAnyToken(self.eligibility_address).call())

        results = await self._call("read_auction_params", asyncio.gather(*calls))
        floor_price, tick_spacing, max_bid_price, end_block = results[:4]
        rest = list(results[4:])
        if self.hook is not None:
            start_block, max_purchase_limit, total_purchased = rest[:3]
            rest = rest[3:]
        else:
            start_block, max_purchase_limit, total_purchased = 0, None, 0
        has_any_token = bool(rest[0]) if self.soulbound is not None else True

        return AuctionParams(
            contributor_period_end_block=int(start_block),
            max_purchase_limit=None if max_purchase_limit is None else int(max_purchase_limit),
            floor_price=int(floor_price),
            tick_spacing=int(tick_spacing),
            max_bid_price=int(max_bid_price),
            end_block=int(end_block),
            total_purchased=int(total_purchased),
            has_any_token=has_any_token,
        )

    async def current_head(self) -> BlockHead:
        block = await self._call("head", self.w3.eth.get_block("latest"))
        return head_from_payload(block)

    async def subscribe_heads(self) -> AsyncIterator[Mapping[str, Any]]:
        """Yield raw newHeads payloads; only valid on persistent (ws/ipc) providers."""
        sub_id = await self.w3.eth.subscribe("newHeads")
        log_event(log, "head_subscription_started", subscription=_hex(sub_id))
        try:
            async for message in self.w3.socket.process_subscriptions():
                result = message.get("result") if isinstance(message, Mapping) else None
                if result is not None:
                    yield result
        finally:
            try:
                await self.w3.eth.unsubscribe(sub_id)
            except Exception as exc:
                log.debug("unsubscribe failed: %s", exc)

    async def find_prev_tick_price(self, bid_price: int, floor_price: int) -> int:
        """
        Walk the initialised tick list from the floor and return the last tick
        whose successor is not below bid_price.
        """
        if bid_price < floor_price:
            raise AttemptError("prepare", f"bid price {bid_price} is below floor price {floor_price}")
        prev = floor_price
        for _ in range(MAX_TICK_WALK):
            tick = await self._call("prepare", self.cca.functions.ticks(prev).call())
            next_price = int(tick[0])
            if next_price == 0 or next_price >= bid_price:
                return prev
            prev = next_price
        raise AttemptError("prepare", f"tick list walk exceeded {MAX_TICK_WALK} steps")

    # ========== Attempt steps ==========

    async def _fees(self) -> Dict[str, int]:
        fees = self.tx_config.fees
        if fees is not None:
            return {
                "maxFeePerGas": fees.max_fee_per_gas,
                "maxPriorityFeePerGas": fees.max_priority_fee_per_gas,
            }
        block, priority = await self._call(
            "prepare", asyncio.gather(self.w3.eth.get_block("latest"), self.w3.eth.max_priority_fee)
        )
        base_fee = int(block.get("baseFeePerGas", 0) or 0)
        return {
            "maxFeePerGas": default_max_fee(base_fee, int(priority)),
            "maxPriorityFeePerGas": int(priority),
        }

    async def prepare(self, bid: PlannedBid, ctx: AuctionContext) -> PreparedTx:
        # The registry keeps each PlannedBid for the whole run, so its identity names the bid.
        key = id(bid)
        prev_tick = await self.find_prev_tick_price(bid.aligned_price, ctx.floor_price)
        params = SubmitBidParams(
            max_price=bid.aligned_price,
            amount=bid.amount,
            owner=bid.owner,
            prev_tick_price=prev_tick,
        )
        doubt = self._in_doubt.get(key)
        if doubt is not None:
            if await self._tx_known(doubt.tx_hash):
                del self._in_doubt[key]
                await self.nonces.commit(self.sender, doubt.nonce)
                log_event(log, "send_recovered", tx_hash=doubt.tx_hash, nonce=doubt.nonce, via="later_lookup")
                return PreparedTx(bid=params, params={"nonce": doubt.nonce}, bid_key=key,
                                  sent_hash=doubt.tx_hash)
            nonce = doubt.nonce
        else:
            nonce = await self.nonces.reserve(self.sender)
        fees = await self._fees()
        request = build_base_request(
            sender=self.sender,
            cca=self.cca_address,
            bid=params,
            nonce=nonce,
            chain_id=await self.chain_id(),
            max_fee_per_gas=fees["maxFeePerGas"],
            max_priority_fee_per_gas=fees["maxPriorityFeePerGas"],
        )
        if self.tx_config.access_list == AccessListMode.GENERATE:
            result = await self._call("prepare", self.w3.eth.create_access_list(request))
            entries = [
                {"address": entry["address"], "storageKeys": [_hex(k) for k in entry.get("storageKeys", [])]}
                for entry in result.get("accessList", [])
            ]
            request = apply_access_list(request, entries)
        log.debug("prepared submitBid nonce=%s prev_tick=%s", nonce, prev_tick)
        return PreparedTx(bid=params, params=request, bid_key=key)

    async def simulate(self, tx: PreparedTx) -> PreparedTx:
        """Dry-run the call and fix the gas limit; reverts surface here."""
        if tx.sent_hash is not None:
            return tx
        await self._call("simulate", self.w3.eth.call(tx.params))
        estimate = await self._call("simulate", self.w3.eth.estimate_gas(tx.params))
        gas = int(int(estimate) * self.tx_config.gas_multiplier)
        return tx.with_params(gas=gas)

    async def send(self, tx: PreparedTx) -> str:
        """
        Sign and broadcast. Returns the tx hash once the node accepts it.

        A broadcast that fails without a reply from the node (timeout, dropped
        connection) may still have been accepted. Before reporting failure the
        signed hash is looked up and the same signed bytes are sent once more;
        if the outcome is still unknown the nonce is held for this bid, so a
        later attempt can replace the first broadcast but never add a second.
        """
        if tx.sent_hash is not None:
            return tx.sent_hash
        if tx.gas is None:
            raise AttemptError("send", "transaction was not simulated (no gas limit)")
        unsigned = {k: v for k, v in tx.params.items() if k != "from"}
        try:
            signed = self.signer.sign_transaction(unsigned)
        except Exception as exc:
            raise AttemptError("send", f"signing failed: {exc}") from exc
        try:
            raw_hash = await self._call("send", self.w3.eth.send_raw_transaction(signed.raw_transaction))
        except AttemptError as err:
            tx_hash = await self._settle_failed_send(tx, signed, err)
            if tx_hash is None:
                raise
        else:
            tx_hash = Web3.to_hex(raw_hash)
        await self._mark_sent(tx)
        return tx_hash

    async def _mark_sent(self, tx: PreparedTx) -> None:
        if tx.bid_key is not None:
            self._in_doubt.pop(tx.bid_key, None)
        await self.nonces.commit(self.sender, tx.nonce)

    async def _tx_known(self, tx_hash: str) -> bool:
        """Whether the node holds tx_hash (pending or mined). Lookup errors count as unknown."""
        try:
            await asyncio.wait_for(self.w3.eth.get_transaction(tx_hash), timeout=self.call_timeout)
        except TransactionNotFound:
            return False
        except Exception as exc:
            log_event(log, "tx_lookup_failed", level=logging.WARNING, tx_hash=tx_hash,
                      error=f"{type(exc).__name__}: {exc}")
            return False
        return True

    async def _settle_failed_send(self, tx: PreparedTx, signed, err: AttemptError) -> Optional[str]:
        """
        Decide what a failed broadcast means. Returns the hash the bid should
        record when the node turns out to hold the transaction, None when the
        node rejected it, and raises AttemptError when the outcome is unknown.
        """
        tx_hash = Web3.to_hex(signed.hash)
        if _mentions(err, ALREADY_KNOWN_MARKERS):
            log_event(log, "send_recovered", tx_hash=tx_hash, nonce=tx.nonce, via="already_known")
            return tx_hash

        prior = self._in_doubt.get(tx.bid_key) if tx.bid_key is not None else None
        if _is_rejection(err):
            if prior is None:
                # The local counter may now be ahead of reality; trust the chain next time.
                await self.nonces.reset(self.sender)
            elif prior.nonce == tx.nonce and _mentions(err, (NONCE_TOO_LOW_MARKER,)):
                del self._in_doubt[tx.bid_key]
                if await self._tx_known(prior.tx_hash):
                    log_event(log, "send_recovered", tx_hash=prior.tx_hash, nonce=prior.nonce,
                              via="held_nonce_consumed")
                    return prior.tx_hash
                # Something else used the held nonce, so the earlier broadcast can never be mined.
                await self.nonces.reset(self.sender)
            return None

        if await self._tx_known(tx_hash):
            log_event(log, "send_recovered", tx_hash=tx_hash, nonce=tx.nonce, via="lookup")
            return tx_hash
        try:
            await self._call("send", self.w3.eth.send_raw_transaction(signed.raw_transaction))
        except AttemptError as retry_err:
            if _mentions(retry_err, ALREADY_KNOWN_MARKERS):
                log_event(log, "send_recovered", tx_hash=tx_hash, nonce=tx.nonce, via="already_known")
                return tx_hash
            if tx.bid_key is not None:
                self._in_doubt[tx.bid_key] = InDoubtSend(nonce=tx.nonce, tx_hash=tx_hash)
            # Keep other bids off the held nonce.
            await self.nonces.commit(self.sender, tx.nonce)
            log_event(log, "send_in_doubt", level=logging.WARNING, tx_hash=tx_hash, nonce=tx.nonce,
                      error=err.message, retry_error=retry_err.message)
            raise AttemptError(
                "send", f"outcome unknown for {tx_hash} ({err.message}); nonce {tx.nonce} held for this bid"
            ) from err
        log_event(log, "send_recovered", tx_hash=tx_hash, nonce=tx.nonce, via="rebroadcast")
        return tx_hash

    async def confirm(self, tx_hash: str) -> int:
        """Wait for the receipt and return its status (1 success, 0 reverted)."""
        try:
            receipt = await asyncio.wait_for(
                self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout),
                timeout=self.receipt_timeout + self.call_timeout,
            )
        except (TimeExhausted, asyncio.TimeoutError) as exc:
            raise AttemptError("confirm", f"no receipt for {tx_hash} within {self.receipt_timeout}s") from exc
        except Exception as exc:
            raise AttemptError("confirm", f"{type(exc).__name__}: {exc}") from exc
        return int(receipt["status"])
