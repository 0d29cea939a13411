"""Tk mainloop on the main thread, asyncio loop on a background thread."""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
import tkinter as tk
from typing import Any, Coroutine, Optional

from checkpost_verify.core.logging_utils import get_module_logger

logger = get_module_logger(__name__)


class AsyncBridge:
    """
    Bridge between Tkinter (main thread) and AsyncIO (background thread).

    - Tkinter owns the main thread and runs the real mainloop()
    - the workflow controller and its tasks live on the asyncio loop
    - each side reaches the other only through thread-safe scheduling
    """

    def __init__(self, root: tk.Tk):
        self.root = root
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.thread: Optional[threading.Thread] = None
        self._running = True
        self._ready = threading.Event()

    def start(self) -> None:
        """Start AsyncIO event loop in background thread."""
        logger.info("Starting AsyncIO bridge in background thread")
        self.thread = threading.Thread(target=self._run_event_loop, name="checkpost-asyncio", daemon=True)
        self.thread.start()

        if not self._ready.wait(timeout=5.0):
            raise RuntimeError("AsyncIO loop failed to start within 5 seconds")

        logger.info("AsyncIO event loop running in background (thread %s)", self.thread.ident)

    def _run_event_loop(self) -> None:
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self._ready.set()
        self.loop.run_forever()
        self.loop.close()
        logger.debug("AsyncIO loop stopped")

    def run_coroutine(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """
        Schedule a coroutine on the AsyncIO loop from the Tk thread.

        Failures are logged when the future completes, so fire-and-forget
        button handlers do not lose exceptions.
        """
        if self.loop is None:
            coro.close()
            raise RuntimeError("AsyncIO loop not started")
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(self._log_failure)
        return future

    @staticmethod
    def _log_failure(future: concurrent.futures.Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Scheduled coroutine failed: %s", exc, exc_info=exc)

    def call_in_gui(self, func, *args, **kwargs) -> None:
        """
        Schedule a function to run in the GUI (main thread).
        Thread-safe via Tkinter's after() mechanism.
        """
        def wrapper():
            try:
                func(*args, **kwargs)
            except Exception as e:
                logger.error("AsyncBridge ERROR in %s: %s", getattr(func, "__name__", func), e, exc_info=True)

        if not self._running:
            return
        try:
            self.root.after(0, wrapper)
        except (RuntimeError, tk.TclError):
            # Window already destroyed during shutdown.
            logger.debug("GUI gone; dropping callback %s", getattr(func, "__name__", func))

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel remaining tasks and stop the loop; waits for the thread to finish."""
        if self.loop and self._running:
            logger.info("Stopping AsyncIO bridge")
            self._running = False
            asyncio.run_coroutine_threadsafe(self._shutdown(), self.loop)
            if self.thread is not None:
                self.thread.join(timeout=timeout)

    async def _shutdown(self) -> None:
        tasks = [task for task in asyncio.all_tasks(self.loop) if task is not asyncio.current_task()]

        logger.info("Cancelling %d pending tasks", len(tasks))
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.loop.stop()
        logger.info("AsyncIO loop stopped cleanly")


__all__ = ["AsyncBridge"]
