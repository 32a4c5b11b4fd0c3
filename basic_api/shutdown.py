"""Shutdown coordination.

The service stops when any one of its shutdown sources fires: an OS signal
(SIGINT and SIGTERM by default) or an explicit ``trigger()`` call. Sources are
raced against each other; the first one to resolve wins and the rest are
cancelled.
"""
import asyncio
import logging
import signal
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


def _resolve(fired: asyncio.Future):
    if not fired.done():
        fired.set_result(None)


class ShutdownCoordinator:
    """
    Single-resolution shutdown future.

    ``wait()`` may be awaited any number of times, from any number of tasks;
    every caller shares the same resolution and calls made after it return
    immediately. A signal that cannot be installed (no main thread, no
    ``add_signal_handler`` on this platform) is logged and replaced by a
    source that never fires.

    Signal handlers are removed once the coordinator resolves, so a second
    SIGINT during drain falls through to Python's default handler.
    """

    def __init__(self, signals: Iterable[int] = DEFAULT_SIGNALS):
        self._signals = tuple(signals)
        self._requested = asyncio.Event()
        self._requested_reason = "requested"
        self._waiter: Optional[asyncio.Task] = None
        self._reason: Optional[str] = None

    @property
    def signals(self) -> tuple:
        return self._signals

    @property
    def triggered(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        """Name of the source that resolved the coordinator"""
        return self._reason

    def trigger(self, reason: str = "requested"):
        """Request shutdown from code. Later requests are ignored."""
        if self._requested.is_set():
            return
        self._requested_reason = reason
        self._requested.set()

    async def wait(self) -> str:
        """Wait until the first shutdown source fires; returns its name"""
        if self._waiter is None:
            self._waiter = asyncio.ensure_future(self._race())
        return await asyncio.shield(self._waiter)

    async def _wait_for_request(self) -> str:
        await self._requested.wait()
        return self._requested_reason

    async def _wait_for_signal(self, loop: asyncio.AbstractEventLoop, signum: int) -> str:
        name = signal_name(signum)
        fired = loop.create_future()
        try:
            loop.add_signal_handler(signum, _resolve, fired)
        except (NotImplementedError, RuntimeError, ValueError, OSError) as e:
            logger.warning("Cannot listen for %s, ignoring it: %s", name, e)
            await loop.create_future()

        try:
            await fired
        finally:
            loop.remove_signal_handler(signum)
        return name

    async def _race(self) -> str:
        loop = asyncio.get_running_loop()
        sources = [asyncio.ensure_future(self._wait_for_request())]
        sources.extend(
            asyncio.ensure_future(self._wait_for_signal(loop, signum))
            for signum in self._signals
        )

        try:
            done, _ = await asyncio.wait(sources, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for source in sources:
                source.cancel()
            await asyncio.gather(*sources, return_exceptions=True)

        # Sources finishing in the same iteration resolve the coordinator once
        winner = next(source for source in sources if source in done)
        self._reason = winner.result()
        logger.info("Shutdown requested (%s)", self._reason)
        return self._reason
