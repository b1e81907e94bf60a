from __future__ import annotations

import asyncio


class CancellationScope:
    """
    One-shot, observable abort signal.

    Once cancelled a scope stays cancelled; callers that need a fresh signal allocate a new
    scope instead of resetting this one.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class GlobalCancellation:
    """
    Edge-triggered process-wide interrupt.

    `fire()` cancels the current scope. The first party to observe a fired scope through
    `consume()` swaps in a fresh one, so a single interrupt aborts at most one operation.
    """

    def __init__(self) -> None:
        self._scope = CancellationScope()

    @property
    def scope(self) -> CancellationScope:
        return self._scope

    def fire(self) -> None:
        self._scope.cancel()

    def consume(self) -> bool:
        if not self._scope.cancelled:
            return False
        self._scope = CancellationScope()
        return True
