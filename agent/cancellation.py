"""Per-run cancellation token."""

import asyncio
import threading
from typing import Any, Awaitable, Optional


class CancellationSignal(Exception):
    """Raised at a suspension point once the run has been cancelled.

    Never reported to the user; the run ends without a terminal event.
    """


class CancellationToken:
    """Set once by the transport (client disconnect or explicit stop).

    ``cancel()`` may be called from any thread. ``wait_for()`` races an
    awaitable against cancellation so suspended runs unwind immediately.
    """

    def __init__(self) -> None:
        self._flag = threading.Event()
        self._event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def cancelled(self) -> bool:
        return self._flag.is_set()

    def cancel(self) -> None:
        if self._flag.is_set():
            return
        self._flag.set()
        if self._event is None or self._loop is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._event.set()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._event.set)

    def raise_if_cancelled(self) -> None:
        if self._flag.is_set():
            raise CancellationSignal()

    def _async_event(self) -> asyncio.Event:
        if self._event is None:
            self._loop = asyncio.get_running_loop()
            self._event = asyncio.Event()
            if self._flag.is_set():
                self._event.set()
        return self._event

    async def wait_for(self, aw: Awaitable[Any]) -> Any:
        """Await ``aw`` unless cancellation fires first (then CancellationSignal).

        Work already running in a thread is not killed; its result is dropped.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._async_event().wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        raise CancellationSignal()
