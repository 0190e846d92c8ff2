"""Per-key deduplication of concurrent upstream fetches."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict


logger = logging.getLogger(__name__)


class _Call:
    __slots__ = ("task", "waiters")

    def __init__(self, task: asyncio.Task):
        self.task = task
        self.waiters = 0


class SingleFlight:
    """Collapses concurrent calls for the same key onto one in-flight task.

    Each caller awaits the shared task through `asyncio.shield`, so one
    caller being cancelled does not abort the fetch for the others. The
    shared task itself is cancelled when its last waiter goes away.
    """

    def __init__(self):
        self._calls: Dict[str, _Call] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._calls

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        call = self._calls.get(key)
        if call is None:
            call = _Call(asyncio.ensure_future(fn()))
            self._calls[key] = call
            call.task.add_done_callback(lambda _task: self._forget(key, call))
        else:
            logger.debug(f"Joining in-flight fetch for key: {key}")

        call.waiters += 1
        try:
            return await asyncio.shield(call.task)
        except asyncio.CancelledError:
            if call.waiters == 1 and not call.task.done():
                call.task.cancel()
            raise
        finally:
            call.waiters -= 1

    def _forget(self, key: str, call: _Call) -> None:
        if self._calls.get(key) is call:
            del self._calls[key]
