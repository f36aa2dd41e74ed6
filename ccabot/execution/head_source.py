"""
Block head sources.

The execution loop only needs "the next block observation". Two transports
provide it:
- SubscriptionHeadSource: newHeads over WebSocket or IPC
- PollingHeadSource: eth_blockNumber/eth_getBlockByNumber over HTTP

Both are async iterators of BlockHead and are interchangeable.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional

from ccabot.errors import HeadStreamError
from ccabot.infra.logging_cfg import log_event

log = logging.getLogger("ccabot")


@dataclass(frozen=True)
class BlockHead:
    number: int
    timestamp: int = 0
    hash: Optional[str] = None


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    text = str(value)
    return int(text, 16) if text.startswith(("0x", "0X")) else int(text)


def head_from_payload(payload: Mapping[str, Any]) -> BlockHead:
    """Build a BlockHead from a block/header mapping (hex strings or ints)."""
    raw_hash = payload.get("hash")
    if isinstance(raw_hash, (bytes, bytearray)):
        block_hash: Optional[str] = "0x" + bytes(raw_hash).hex()
    else:
        block_hash = raw_hash
    return BlockHead(
        number=_to_int(payload["number"]),
        timestamp=_to_int(payload.get("timestamp", 0)),
        hash=block_hash,
    )


class PollingHeadSource:
    """
    Polls the latest head and yields each time the block number advances.

    Consecutive fetch errors are tolerated up to max_consecutive_errors, with
    exponential backoff between tries; past that HeadStreamError is raised.
    """

    def __init__(
        self,
        fetch_head: Callable[[], Awaitable[BlockHead]],
        poll_interval: float = 2.0,
        max_consecutive_errors: int = 5,
        max_backoff: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        self._fetch_head = fetch_head
        self._poll_interval = poll_interval
        self._max_errors = max_consecutive_errors
        self._max_backoff = max_backoff
        self._sleep = sleep
        self._last_number: Optional[int] = None

    def __aiter__(self) -> AsyncIterator[BlockHead]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[BlockHead]:
        errors = 0
        while True:
            try:
                head = await self._fetch_head()
            except Exception as exc:
                errors += 1
                log_event(log, "head_poll_error", level=logging.WARNING,
                          errors=errors, max_errors=self._max_errors, error=str(exc))
                if errors >= self._max_errors:
                    raise HeadStreamError(f"head polling failed {errors} times in a row: {exc}") from exc
                backoff = min(self._poll_interval * (2 ** (errors - 1)), self._max_backoff)
                await self._sleep(backoff)
                continue

            errors = 0
            if self._last_number is None or head.number > self._last_number:
                self._last_number = head.number
                yield head
            await self._sleep(self._poll_interval)


class SubscriptionHeadSource:
    """Wraps a newHeads subscription stream of raw header payloads."""

    def __init__(self, subscribe: Callable[[], AsyncIterator[Mapping[str, Any]]]) -> None:
        self._subscribe = subscribe

    def __aiter__(self) -> AsyncIterator[BlockHead]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[BlockHead]:
        last: Optional[int] = None
        try:
            async for payload in self._subscribe():
                head = head_from_payload(payload)
                # Reorgs can replay a height; the loop only cares about progress.
                if last is not None and head.number <= last:
                    continue
                last = head.number
                yield head
        except HeadStreamError:
            raise
        except Exception as exc:
            raise HeadStreamError(f"head subscription failed: {exc}") from exc
