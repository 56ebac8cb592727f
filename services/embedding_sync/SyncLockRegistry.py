"""Single-flight registry: at most one in-flight task per key."""

import asyncio
from typing import Any, Awaitable, Callable

from shared.helper.HelperConfig import HelperConfig


class SyncLockRegistry:
    """Keyed single-flight execution.

    The registry starts empty. run_once() inserts a task for a key that has
    none, and the task's done-callback removes the entry when it settles,
    successfully or not. Callers arriving while the task runs await the same
    task and observe the same result or exception.
    """

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self._running: dict[str, asyncio.Task] = {}

    def is_running(self, key: str) -> bool:
        return key in self._running

    def __len__(self) -> int:
        return len(self._running)

    async def run_once(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Run factory() for key unless a run for key is already in flight.

        Args:
            key (str): The single-flight key (an organization id).
            factory (Callable[[], Awaitable[Any]]): Creates the work; only called when no run is in flight.

        Returns:
            Any: The result of the in-flight run.
        """
        task = self._running.get(key)
        if task is not None:
            self.logging.info("Sync already in progress for %s, waiting for completion", key)
        else:
            # no await between lookup and insert, so this check-then-insert is atomic on the loop
            task = asyncio.ensure_future(factory())
            self._running[key] = task
            task.add_done_callback(lambda finished: self._release(key, finished))
        # a cancelled waiter must not cancel the run the other waiters share
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._running.get(key) is task:
            del self._running[key]
        if not task.cancelled() and task.exception() is not None:
            self.logging.debug("Sync for %s settled with error: %s", key, task.exception())
        self.logging.info("Sync lock released for %s", key)
