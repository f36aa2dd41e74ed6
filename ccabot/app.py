"""
AuctionBot: one bidding run from snapshot to summary.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence

from ccabot.auction.context import AuctionContext, fetch_auction_context
from ccabot.auction.validator import BidSpec, PlannedBid, plan_bids
from ccabot.execution.bid_state_machine import BidRegistry
from ccabot.execution.execution_loop import ExecutionLoop, StopReason
from ccabot.execution.head_source import BlockHead, PollingHeadSource, SubscriptionHeadSource
from ccabot.infra.logging_cfg import log_event
from ccabot.reporting.summary import BidSummary, build_summary, log_summary, persist_summary

log = logging.getLogger("ccabot")


class AuctionBot:
    """
    Usage:
        bot = AuctionBot(client, specs, default_owner)
        await bot.build()
        reason = await bot.run()
    """

    def __init__(
        self,
        client,
        specs: Sequence[BidSpec],
        default_owner: str,
        max_attempts: int = 3,
        require_soulbound: bool = False,
        await_window_close: bool = False,
        wait_for_receipt: bool = False,
        poll_interval: float = 2.0,
        summary_dir: Optional[str | Path] = None,
    ) -> None:
        self.client = client
        self.specs = list(specs)
        self.default_owner = default_owner
        self.max_attempts = max_attempts
        self.require_soulbound = require_soulbound
        self.await_window_close = await_window_close
        self.wait_for_receipt = wait_for_receipt
        self.poll_interval = poll_interval
        self.summary_dir = summary_dir
        self.stop_event = asyncio.Event()
        self.ctx: AuctionContext | None = None
        self.registry: BidRegistry | None = None
        self.loop: ExecutionLoop | None = None
        self.summary: BidSummary | None = None
        self.summary_path: Path | None = None

    async def build(self) -> BidRegistry:
        """Fetch the auction snapshot, validate every bid and register it. FetchError propagates."""
        self.ctx = await fetch_auction_context(self.client, require_soulbound=self.require_soulbound)
        registry = BidRegistry(max_attempts=self.max_attempts)
        for spec, result in plan_bids(self.specs, self.ctx, self.default_owner):
            if isinstance(result, PlannedBid):
                registry.register(result, spec)
            else:
                registry.register_rejected(spec, result)
        self.registry = registry
        log_event(log, "bids_registered", **registry.get_stats())
        return registry

    def head_source(self) -> AsyncIterator[BlockHead]:
        if getattr(self.client, "supports_subscriptions", False):
            return SubscriptionHeadSource(self.client.subscribe_heads)
        return PollingHeadSource(self.client.current_head, poll_interval=self.poll_interval)

    async def run(self, heads: Optional[AsyncIterator[BlockHead]] = None) -> StopReason:
        if self.registry is None or self.ctx is None:
            await self.build()
        self.loop = ExecutionLoop(
            self.registry,
            self.ctx,
            self.client,
            await_window_close=self.await_window_close,
            wait_for_receipt=self.wait_for_receipt,
            stop_event=self.stop_event,
        )
        reason: StopReason | None = None
        try:
            reason = await self.loop.run(heads if heads is not None else self.head_source())
        finally:
            self.registry.freeze()
            self._report(reason or self.loop.stop_reason)
        return reason

    def request_stop(self) -> None:
        log_event(log, "shutdown_requested")
        self.stop_event.set()

    def _report(self, reason: StopReason | None) -> None:
        self.summary = build_summary(self.registry)
        reason_value = reason.value if reason else None
        log_summary(self.summary, reason_value)
        if self.summary_dir is not None:
            try:
                self.summary_path = persist_summary(self.summary, reason_value, self.summary_dir)
            except OSError as exc:
                log_event(log, "bid_summary_write_failed", level=logging.ERROR, error=str(exc))

    def outcome_lines(self) -> List[str]:
        if self.summary is None:
            return []
        return [
            f"bid {o.bid_id}: {o.state} attempts={o.attempts} "
            + (f"tx={o.tx_hash}" if o.tx_hash else f"error={o.last_error}")
            for o in self.summary.outcomes
        ]
