"""In-flight request table with per-request timeouts."""

import asyncio
import logging
from typing import Any, Callable, Protocol

from src.mcp.errors import ChannelClosed, DuplicateId, RequestTimeout
from src.mcp.models import RequestId

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Timer source. asyncio event loops satisfy this protocol."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class PendingRequest:
    """One request awaiting its correlated reply."""

    def __init__(
        self,
        request_id: RequestId,
        future: asyncio.Future,
        timeout: float,
    ):
        self.request_id = request_id
        self.future = future
        self.timeout = timeout
        self.timer: TimerHandle | None = None

    def settle(self, result: Any = None, error: BaseException | None = None) -> bool:
        """Cancel the timer and complete the future. False if already done."""
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        if self.future.done():
            # the awaiting caller cancelled
            return False
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(result)
        return True


class PendingRequestTable:
    """
    Tracks in-flight requests keyed by JSON-RPC id.

    Every entry is removed exactly once, by whichever of resolve, reject,
    timeout expiry or drain pops it first; the others become no-ops. All
    calls must happen on the event loop thread that owns the futures.
    """

    def __init__(self, scheduler: Scheduler | None = None):
        self._scheduler = scheduler
        self._entries: dict[RequestId, PendingRequest] = {}

    def register(self, request_id: RequestId, timeout: float) -> asyncio.Future:
        """
        Register a request and start its timeout.

        Raises:
            DuplicateId: If the id is already pending.
        """
        if request_id in self._entries:
            raise DuplicateId(request_id)

        loop = asyncio.get_running_loop()
        entry = PendingRequest(request_id, loop.create_future(), timeout)
        scheduler = self._scheduler or loop
        entry.timer = scheduler.call_later(timeout, self._expire, request_id, entry)
        self._entries[request_id] = entry
        return entry.future

    def _expire(self, request_id: RequestId, entry: PendingRequest) -> None:
        # only the entry this timer was started for may be expired
        if self._entries.get(request_id) is not entry:
            return
        del self._entries[request_id]
        entry.timer = None
        logger.warning(f"Request {request_id!r} timed out after {entry.timeout}s")
        entry.settle(error=RequestTimeout(request_id, entry.timeout))

    def resolve(self, request_id: RequestId, result: Any) -> bool:
        """Fulfill a pending request. No-op if the id is not pending."""
        entry = self._entries.pop(request_id, None)
        if entry is None:
            logger.debug(f"Ignoring reply for unknown or settled request {request_id!r}")
            return False
        return entry.settle(result=result)

    def reject(self, request_id: RequestId, error: BaseException) -> bool:
        """Fail a pending request. No-op if the id is not pending."""
        entry = self._entries.pop(request_id, None)
        if entry is None:
            logger.debug(f"Ignoring error for unknown or settled request {request_id!r}: {error}")
            return False
        return entry.settle(error=error)

    def drain_all(self, reason: str) -> int:
        """Fail every pending request with ChannelClosed. Returns how many."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.settle(error=ChannelClosed(reason))
        if entries:
            logger.info(f"Drained {len(entries)} pending requests: {reason}")
        return len(entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
