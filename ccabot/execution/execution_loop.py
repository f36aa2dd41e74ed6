"""
ExecutionLoop: the block-driven bid submission state machine.

Architecture:
    Each observed block head drives one step. While BIDDING, every pending bid
    gets exactly one prepare -> simulate -> send attempt per head, in
    registration order. Block arrival is the backoff: chain state changes at
    most once per block, so there is no sleep between attempts.

    WAITING_FOR_WINDOW ──(head >= start)──> BIDDING ──(no pending)──> STOPPED
                                               │                         ▲
                                               ├──(head >= end)──────────┤
                                               └──(no pending, drain)──> DRAINING

Thread Safety:
    Single control flow. The stop signal is checked between bids, never in
    the middle of an attempt, so no bid is left half-processed.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto
from typing import Any, AsyncIterator, List, Optional, Protocol, Tuple

from ccabot.auction.context import AuctionContext
from ccabot.auction.validator import PlannedBid
from ccabot.errors import AttemptError, HeadStreamError
from ccabot.execution.bid_state_machine import AttemptOutcome, BidRegistry, BidState
from ccabot.execution.head_source import BlockHead
from ccabot.infra.logging_cfg import log_event

log = logging.getLogger("ccabot")


class LoopState(Enum):
    WAITING_FOR_WINDOW = auto()
    BIDDING = auto()
    DRAINING = auto()
    STOPPED = auto()


class StopReason(Enum):
    ALL_BIDS_PROCESSED = "all_bids_processed"
    WINDOW_CLOSED = "window_closed"
    SHUTDOWN_REQUESTED = "shutdown_requested"
    HEAD_STREAM_ENDED = "head_stream_ended"
    HEAD_STREAM_ERROR = "head_stream_error"


class BidExecutor(Protocol):
    """Chain operations one attempt needs. Failures raise AttemptError."""

    async def prepare(self, bid: PlannedBid, ctx: AuctionContext) -> Any: ...

    async def simulate(self, tx: Any) -> Any: ...

    async def send(self, tx: Any) -> str: ...

    async def confirm(self, tx_hash: str) -> int: ...


class ExecutionLoop:
    """
    Drives pending bids to a terminal state, one attempt per bid per head.

    Usage:
        loop = ExecutionLoop(registry, ctx, chain_client)
        reason = await loop.run(head_source)
    """

    def __init__(
        self,
        registry: BidRegistry,
        ctx: AuctionContext,
        executor: BidExecutor,
        await_window_close: bool = False,
        wait_for_receipt: bool = False,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.registry = registry
        self.ctx = ctx
        self.executor = executor
        self.await_window_close = await_window_close
        self.wait_for_receipt = wait_for_receipt
        self._stop_event = stop_event or asyncio.Event()
        self._state = LoopState.WAITING_FOR_WINDOW
        self._stop_reason: Optional[StopReason] = None
        self.last_block: Optional[int] = None

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def stop_reason(self) -> Optional[StopReason]:
        return self._stop_reason

    def request_stop(self) -> None:
        """Ask the loop to stop at the next safe point (between bids)."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # ========== Driver ==========

    async def run(self, heads: AsyncIterator[BlockHead]) -> StopReason:
        """Consume heads until the loop stops and return why it stopped."""
        iterator = heads.__aiter__()
        try:
            while self._state != LoopState.STOPPED:
                if self.stop_requested:
                    self._stop(StopReason.SHUTDOWN_REQUESTED)
                    break
                head = await self._next_head(iterator)
                if head is None:
                    if self.stop_requested:
                        self._stop(StopReason.SHUTDOWN_REQUESTED)
                    else:
                        log_event(log, "head_stream_ended", level=logging.WARNING,
                                  pending=len(self.registry.pending_ids()))
                        self._stop(StopReason.HEAD_STREAM_ENDED)
                    break
                await self.handle_block(head)
        except HeadStreamError as exc:
            log_event(log, "head_stream_error", level=logging.ERROR, error=str(exc),
                      pending=len(self.registry.pending_ids()))
            self._stop(StopReason.HEAD_STREAM_ERROR)
        return self._stop_reason

    async def _next_head(self, iterator: AsyncIterator[BlockHead]) -> Optional[BlockHead]:
        """Wait for the next head or the stop signal, whichever comes first."""
        head_task = asyncio.ensure_future(iterator.__anext__())
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait({head_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
        if head_task not in done:
            head_task.cancel()
            await asyncio.gather(head_task, return_exceptions=True)
            return None
        try:
            return head_task.result()
        except StopAsyncIteration:
            return None

    # ========== Per-block step ==========

    async def handle_block(self, head: BlockHead) -> LoopState:
        """Advance the state machine by one observed head."""
        if self._state == LoopState.STOPPED:
            return self._state
        self.last_block = head.number
        window = self.ctx.window

        if self._state == LoopState.WAITING_FOR_WINDOW:
            if not self.registry.has_pending():
                # Every bid was rejected up front; nothing can happen in the window.
                self._stop(StopReason.ALL_BIDS_PROCESSED, head)
                return self._state
            if not window.has_started(head.number):
                log.debug("waiting for window block=%s start=%s", head.number, window.start_block)
                return self._state
            self._advance(LoopState.BIDDING, head)

        if self._state == LoopState.BIDDING:
            await self._handle_bidding(head)
        elif self._state == LoopState.DRAINING:
            if window.has_closed(head.number):
                self._stop(StopReason.ALL_BIDS_PROCESSED, head)
        return self._state

    async def _handle_bidding(self, head: BlockHead) -> None:
        pending = self.registry.pending_ids()
        if not pending:
            self._finish_processed(head)
            return

        if self.ctx.window.has_closed(head.number):
            log_event(log, "window_closed", level=logging.WARNING, block=head.number,
                      end_block=self.ctx.window.end_block, pending=len(pending))
            self.registry.expire_pending(block_number=head.number)
            self._stop(StopReason.WINDOW_CLOSED, head)
            return

        submitted: List[Tuple[int, str]] = []
        for bid_id in pending:
            if self.stop_requested:
                log_event(log, "stop_between_bids", block=head.number, bid_id=bid_id)
                self._stop(StopReason.SHUTDOWN_REQUESTED, head)
                return
            record = await self._attempt(bid_id, head)
            if record.state == BidState.SUBMITTED:
                submitted.append((bid_id, record.tx_hash))

        if self.wait_for_receipt:
            await self._confirm(submitted)

        if not self.registry.pending_ids():
            self._finish_processed(head)

    async def _attempt(self, bid_id: int, head: BlockHead):
        record = self.registry.get(bid_id)
        planned = record.planned
        log_event(
            log,
            "bid_attempt",
            bid_id=bid_id,
            block=head.number,
            owner=planned.owner,
            amount=planned.amount,
            price=planned.aligned_price,
            attempt=record.attempts + 1,
            max_attempts=self.registry.max_attempts,
        )
        try:
            tx = await self.executor.prepare(planned, self.ctx)
            log.debug("prepared bid=%s", bid_id)
            tx = await self.executor.simulate(tx)
            log.debug("simulation succeeded bid=%s", bid_id)
            tx_hash = await self.executor.send(tx)
        except AttemptError as err:
            outcome = AttemptOutcome.failure(err)
        except asyncio.TimeoutError as exc:
            outcome = AttemptOutcome.failure(AttemptError("timeout", str(exc) or "chain call timed out"))
        else:
            outcome = AttemptOutcome.success(tx_hash)
        return self.registry.record_attempt(bid_id, outcome, block_number=head.number)

    async def _confirm(self, submitted: List[Tuple[int, str]]) -> None:
        for bid_id, tx_hash in submitted:
            try:
                status = await self.executor.confirm(tx_hash)
            except (AttemptError, asyncio.TimeoutError) as exc:
                log_event(log, "receipt_unavailable", level=logging.WARNING,
                          bid_id=bid_id, tx_hash=tx_hash, error=str(exc))
                continue
            self.registry.note_receipt(bid_id, status)
            level = logging.INFO if status == 1 else logging.ERROR
            log_event(log, "bid_receipt", level=level, bid_id=bid_id, tx_hash=tx_hash, status=status)

    # ========== State changes ==========

    def _finish_processed(self, head: BlockHead) -> None:
        if self.await_window_close and not self.ctx.window.has_closed(head.number):
            log_event(log, "all_bids_processed_awaiting_end", block=head.number,
                      end_block=self.ctx.window.end_block)
            self._advance(LoopState.DRAINING, head)
            return
        self._stop(StopReason.ALL_BIDS_PROCESSED, head)

    def _advance(self, next_state: LoopState, head: Optional[BlockHead] = None) -> None:
        if self._state != next_state:
            log_event(log, "loop_state_changed", from_state=self._state.name, to_state=next_state.name,
                      block=head.number if head else None)
            self._state = next_state

    def _stop(self, reason: StopReason, head: Optional[BlockHead] = None) -> None:
        self._stop_reason = reason
        self._advance(LoopState.STOPPED, head)
