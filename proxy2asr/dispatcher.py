"""
Event dispatch for connection callbacks.

Callbacks never run on the task that reads or writes the socket. Every event
gets its own asyncio task: coroutine functions are awaited on the event loop,
plain callables run in a worker thread so blocking consumer code cannot stall
frame reception. Tasks are created in the order events are processed, so
message callbacks start in the order their messages completed.

Exceptions raised by a callback stay inside its task and are reported on the
error channel.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Set

from proxy2asr.handlers.error_handler import ErrorContext, ErrorSeverity, handle_error

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Runs connection callbacks on independent execution units."""

    def __init__(self, name: str = "connection"):
        self.name = name
        self.dispatched = 0
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of callbacks still running."""
        return len(self._pending)

    def dispatch(
        self, event: str, callback: Optional[Callable], *args: Any
    ) -> Optional[asyncio.Task]:
        """
        Schedule ``callback(*args)`` on its own task.

        Args:
            event: Event name used for task names and error reports
            callback: Callback to invoke; None means nobody is listening
            *args: Arguments passed to the callback

        Returns:
            Optional[asyncio.Task]: The callback task, or None if no callback
        """
        if callback is None:
            logger.debug(f"[{self.name}] No {event} callback registered")
            return None

        task = asyncio.get_running_loop().create_task(
            self._invoke(event, callback, *args), name=f"{self.name}:on_{event}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        self.dispatched += 1
        return task

    async def _invoke(self, event: str, callback: Callable, *args: Any) -> None:
        try:
            if inspect.iscoroutinefunction(callback):
                await callback(*args)
            else:
                result = await asyncio.to_thread(callback, *args)
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            await handle_error(
                e,
                context=ErrorContext.CALLBACK,
                severity=ErrorSeverity.MEDIUM,
                operation=f"on_{event}",
                connection_id=self.name,
            )

    async def drain(self) -> None:
        """Wait until every dispatched callback has finished."""
        current = asyncio.current_task()
        while True:
            pending = [task for task in self._pending if task is not current]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
