"""
Keyed single-flight execution.

Concurrent callers for the same key share one in-flight coroutine: the
first caller runs it, everyone else awaits its outcome, then the key is
released so the next call starts fresh.

If the leader is cancelled, only the leader sees CancelledError. Waiters
get a RouterError and are free to retry.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable

from .errors import RouterError

logger = logging.getLogger(__name__)


class SingleFlight:
    """Run-once, broadcast-to-waiters, release-key primitive.

    Registry reads and writes happen without an ``await`` in between, so
    check-and-register is atomic on the event loop. One instance must only
    be used from a single event loop.
    """

    def __init__(self) -> None:
        self._in_flight: Dict[Hashable, asyncio.Future] = {}

    @property
    def in_flight(self) -> int:
        """Number of keys with an outstanding call."""
        return len(self._in_flight)

    def is_in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``fn`` once per key among concurrent callers.

        Args:
            key: Deduplication key
            fn: Zero-argument coroutine factory, only called by the leader

        Returns:
            The leader's result, shared with every waiter

        Raises:
            Exception: Whatever ``fn`` raised, re-raised in every caller
            RouterError: In waiters, when the leader was cancelled
        """
        existing = self._in_flight.get(key)
        if existing is not None:
            # shield: a cancelled waiter must not cancel the shared call
            return await asyncio.shield(existing)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            result = await fn()
        except asyncio.CancelledError:
            future.set_exception(RouterError(f"Shared call for {key!r} was cancelled"))
            future.exception()
            logger.debug("Single-flight leader for %r cancelled", key)
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unawaited future does not log on GC
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._in_flight.pop(key, None)
