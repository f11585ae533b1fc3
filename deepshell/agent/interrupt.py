"""Global interrupt signal shared by every agent context."""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from deepshell.errors import TaskInterrupted

T = TypeVar("T")

ESCAPE = "\x1b"


class InterruptController:
    """
    Cancellation token for the whole process.

    A trigger fires once: every registered listener is called (killing shell
    processes, cancelling model calls) and `interrupted` stays set until
    `clear()` is called after the stack has been unwound.
    """

    def __init__(self) -> None:
        self._listeners: dict[int, Callable[[], Any]] = {}
        self._next_id = 0
        self._interrupted = False

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    def trigger(self) -> None:
        if self._interrupted:
            return
        self._interrupted = True
        logger.info(f"Interrupt triggered ({len(self._listeners)} listeners)")
        for callback in list(self._listeners.values()):
            try:
                callback()
            except Exception as e:
                logger.warning(f"Interrupt listener failed: {e}")

    def clear(self) -> None:
        self._interrupted = False

    def on_interrupt(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        listener_id = self._next_id
        self._next_id += 1
        self._listeners[listener_id] = callback

        def unregister() -> None:
            self._listeners.pop(listener_id, None)

        return unregister

    def check(self) -> None:
        """Raise TaskInterrupted if an interrupt is pending."""
        if self._interrupted:
            raise TaskInterrupted()

    async def run_cancellable(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` as a task that is cancelled when an interrupt fires.

        Raises:
            TaskInterrupted: if the interrupt fired before or during the call.
        """
        if self._interrupted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise TaskInterrupted()
        task = asyncio.ensure_future(awaitable)
        unregister = self.on_interrupt(task.cancel)
        try:
            return await task
        except asyncio.CancelledError:
            if self._interrupted:
                raise TaskInterrupted() from None
            raise
        finally:
            unregister()


class InterruptMonitor:
    """
    Out-of-band watcher that turns ESC presses and Ctrl+C into interrupts.

    The ESC watcher needs a POSIX terminal: stdin is switched to cbreak mode
    and read through the event loop. It must be stopped while something else
    (the input prompt) owns the terminal.
    """

    def __init__(self, controller: InterruptController, stream: Any = None):
        self.controller = controller
        self.stream = stream if stream is not None else sys.stdin
        self._loop: asyncio.AbstractEventLoop | None = None
        self._saved_attrs: Any = None
        self._reading = False
        self._sigint_installed = False

    @property
    def active(self) -> bool:
        return self._reading or self._sigint_installed

    def start(self) -> None:
        if self.active:
            return
        self._loop = asyncio.get_running_loop()
        try:
            self._loop.add_signal_handler(signal.SIGINT, self.controller.trigger)
            self._sigint_installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            self._sigint_installed = False

        if not self._is_tty():
            return
        try:
            import termios
            import tty

            fd = self.stream.fileno()
            self._saved_attrs = termios.tcgetattr(fd)
            tty.setcbreak(fd)
            self._loop.add_reader(fd, self._on_readable)
            self._reading = True
        except (ImportError, OSError, ValueError) as e:
            logger.debug(f"ESC interrupt monitor unavailable: {e}")
            self._restore_terminal()

    def stop(self) -> None:
        if self._loop is None:
            return
        if self._sigint_installed:
            self._loop.remove_signal_handler(signal.SIGINT)
            self._sigint_installed = False
        if self._reading:
            try:
                self._loop.remove_reader(self.stream.fileno())
            except (OSError, ValueError):
                pass
            self._reading = False
        self._restore_terminal()

    def _on_readable(self) -> None:
        try:
            data = os.read(self.stream.fileno(), 64)
        except OSError:
            return
        if ESCAPE.encode() in data:
            self.controller.trigger()

    def _is_tty(self) -> bool:
        try:
            return bool(self.stream.isatty())
        except (AttributeError, OSError, ValueError):
            return False

    def _restore_terminal(self) -> None:
        if self._saved_attrs is None:
            return
        try:
            import termios

            termios.tcsetattr(self.stream.fileno(), termios.TCSADRAIN, self._saved_attrs)
        except (ImportError, OSError, ValueError):
            pass
        self._saved_attrs = None
