"""Interactive selection of unknown devices on stdin."""

import asyncio
import logging
import sys
import threading

from .catalog import SensorIdentity
from .manager import ConnectionManager

logger = logging.getLogger(__name__)


class StdinLines:
    """Lines typed on stdin, read by a daemon thread so shutdown never waits on input."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._thread: threading.Thread | None = None

    def _pump(self, loop: asyncio.AbstractEventLoop) -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(self._queue.put_nowait, line.strip())

    def _ensure_started(self) -> None:
        if self._thread is None:
            loop = asyncio.get_running_loop()
            self._thread = threading.Thread(target=self._pump, args=(loop,), daemon=True, name="stdin")
            self._thread.start()

    async def next_line(self, clear: bool = True) -> str:
        """Wait for the next line; ``clear`` drops anything typed earlier."""
        self._ensure_started()
        if clear:
            while not self._queue.empty():
                self._queue.get_nowait()
        return await self._queue.get()


async def choose_candidate(manager: ConnectionManager, candidates: list[SensorIdentity], lines: StdinLines) -> None:
    """Ask which new device to pair with and hand the answer to the manager.

    An empty answer picks the first device, "r" rescans.
    """
    print("Found new devices:")
    for i, identity in enumerate(candidates, 1):
        print(f"  {i}. {identity.display_name} ({identity.address})")

    while True:
        print('Select device [1], or "r" to rescan: ', end="", flush=True)
        choice = (await lines.next_line()).lower() or "1"
        if choice == "r":
            logger.info("Devices rejected, rescanning")
            manager.request_reconnect()
            return
        try:
            idx = int(choice) - 1
            if 0 <= idx < len(candidates):
                manager.accept_candidate(candidates[idx])
                return
        except ValueError:
            pass
        print("Invalid selection, try again.")
