import asyncio
from typing import Awaitable, Callable, Optional

from marketchat.utils.errors import TransientIOError
from marketchat.utils.logger import get_logger


logger = get_logger(__name__)


class RefreshTrigger:
    """Schedules an async refresh instead of running it inline.

    Fires while a refresh is pending or running are coalesced into one more
    run, so a burst of notifications costs at most two refreshes. With a
    debounce the run waits that long first, absorbing the burst.
    """

    def __init__(
        self,
        action: Callable[[], Awaitable[None]],
        *,
        name: str = "refresh",
        debounce: float = 0.0,
    ) -> None:
        self._action = action
        self._name = name
        self._debounce = debounce
        self._dirty = False
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def fire(self) -> None:
        if self._cancelled:
            return
        self._dirty = True
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while self._dirty and not self._cancelled:
            if self._debounce:
                await asyncio.sleep(self._debounce)
            self._dirty = False
            self.runs += 1
            try:
                await self._action()
            except TransientIOError as exc:
                logger.warning("%s failed, will retry on next trigger: %s", self._name, exc)
            except Exception:
                logger.exception("%s failed", self._name)

    async def wait_idle(self) -> None:
        while self._task is not None and not self._task.done():
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if self._task.cancelled():
                    return
                raise

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
