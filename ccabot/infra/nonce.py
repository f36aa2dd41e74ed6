"""
Account-level nonce manager.

Bids sent for consecutive pending records in the same head are signed back to
back, before the node has necessarily counted the previous one as pending.
The manager keeps the next local nonce so those sends do not collide, and a
single asyncio.Lock per account serialises reserve/commit.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Optional


class NonceManager:
    def __init__(self, fetch_pending_count: Callable[[str], Awaitable[int]]) -> None:
        self._fetch = fetch_pending_count
        # map account -> next nonce we intend to use
        self._next: Dict[str, int] = {}
        # map account -> asyncio.Lock
        self._locks: Dict[str, asyncio.Lock] = {}
        # guard for creating locks
        self._guard = asyncio.Lock()

    async def get_lock(self, account: str) -> asyncio.Lock:
        """Return the shared lock serialising nonce use for one account."""
        async with self._guard:
            lock = self._locks.get(account)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[account] = lock
            return lock

    async def reserve(self, account: str) -> int:
        """
        Nonce for the next transaction from account.

        The chain's pending count wins when it is ahead (another sender, or a
        dropped local reservation); the local counter wins when the node has
        not caught up with our own sends yet.
        """
        lock = await self.get_lock(account)
        async with lock:
            chain_nonce = await self._fetch(account)
            local = self._next.get(account)
            return chain_nonce if local is None else max(chain_nonce, local)

    async def commit(self, account: str, nonce: int) -> None:
        """Mark nonce as consumed by a broadcast transaction."""
        lock = await self.get_lock(account)
        async with lock:
            current: Optional[int] = self._next.get(account)
            if current is None or nonce + 1 > current:
                self._next[account] = nonce + 1

    async def reset(self, account: str) -> None:
        """Forget the local counter; the next reserve trusts the chain again."""
        lock = await self.get_lock(account)
        async with lock:
            self._next.pop(account, None)

    def peek(self, account: str) -> Optional[int]:
        return self._next.get(account)
