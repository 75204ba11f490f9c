"""
Resolution Notifier
===================

In-process wake-up channel between the state machine and callers waiting
for a buyer's attempt to resolve. Waiters still re-read persisted state, so
a missed notification (e.g. a transition applied by another process) only
costs one poll interval.

Version: 0.1.0
"""

import asyncio


class ResolutionNotifier:
    """asyncio events keyed by buyer id."""

    def __init__(self) -> None:
        self._waiters: dict[str, set[asyncio.Event]] = {}

    def subscribe(self, buyer_id: str) -> asyncio.Event:
        event = asyncio.Event()
        self._waiters.setdefault(buyer_id, set()).add(event)
        return event

    def unsubscribe(self, buyer_id: str, event: asyncio.Event) -> None:
        waiters = self._waiters.get(buyer_id)
        if waiters is None:
            return
        waiters.discard(event)
        if not waiters:
            del self._waiters[buyer_id]

    def notify(self, buyer_id: str) -> int:
        """Wake every waiter for ``buyer_id``. Returns how many were woken."""
        waiters = self._waiters.get(buyer_id, set())
        for event in waiters:
            event.set()
        return len(waiters)

    def waiting(self, buyer_id: str) -> int:
        return len(self._waiters.get(buyer_id, ()))
