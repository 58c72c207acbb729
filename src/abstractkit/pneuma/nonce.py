"""
Lock-based sequential nonce allocation.

EVM accounts require strictly sequential nonces. The sequencer keeps one
counter per account and serializes allocation with an ``asyncio.Lock`` per
account, so concurrent coroutines sharing a sequencer never receive the same
nonce and never leave a gap.

Two sequencer instances for the same account do not share state and will
race; use one sequencer per account per process.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .rpc import Client

logger = logging.getLogger(__name__)


@dataclass
class NonceState:
    next_nonce: int = 0
    initialized: bool = False


class NonceSequencer:
    def __init__(self, client: "Client", block: str = "latest") -> None:
        self._client = client
        self._block = block
        self._states: dict[str, NonceState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @staticmethod
    def _key(account: str) -> str:
        return account.lower()

    def _lock_for(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def next(self, account: str) -> int:
        """Return the next nonce for ``account`` and advance the counter.

        The first call fetches the on-chain count. If that fetch fails the
        error propagates and the state stays uninitialized.
        """
        key = self._key(account)
        async with self._lock_for(key):
            state = self._states.get(key)
            if state is None or not state.initialized:
                fetched = await self._client.nonce_at(account, self._block)
                state = NonceState(next_nonce=fetched, initialized=True)
                self._states[key] = state
                logger.debug("nonce for %s synced from chain: %d", account, fetched)

            nonce = state.next_nonce
            state.next_nonce += 1
            return nonce

    async def reset(self, account: str) -> None:
        """Force a re-fetch from the chain on the next ``next()`` call.

        Use after a transaction was dropped, failed to submit, or was
        replaced.
        """
        key = self._key(account)
        async with self._lock_for(key):
            state = self._states.get(key)
            if state is not None and state.initialized:
                state.initialized = False
                logger.debug("nonce for %s reset", account)

    def peek(self, account: str) -> NonceState:
        """Snapshot of the current state without touching the network."""
        state = self._states.get(self._key(account))
        if state is None:
            return NonceState()
        return NonceState(next_nonce=state.next_nonce, initialized=state.initialized)
