# === MODULE PURPOSE ===
# Bounded per-connection outbound queue of pending notifications.

# === KEY CONCEPTS ===
# - Single producer (the bus) / single consumer (the outbound pump)
# - offer() never blocks: a full mailbox means the consumer is too slow
# - close() is idempotent; buffered items are still drained after close

from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

T = TypeVar("T")

DEFAULT_MAILBOX_CAPACITY = 256


class MailboxClosed(Exception):
    """Raised by receive() once the mailbox is closed and drained."""


class Mailbox(Generic[T]):
    """
    Bounded FIFO mailbox with a close signal.

    Usage:
        mailbox = Mailbox(capacity=256)

        # Producer side
        if not mailbox.offer(item):
            ...  # full or closed

        # Consumer side
        try:
            item = await mailbox.receive(timeout=5.0)  # None on timeout
        except MailboxClosed:
            ...  # stop consuming
    """

    def __init__(self, capacity: int = DEFAULT_MAILBOX_CAPACITY):
        if capacity <= 0:
            raise ValueError("Mailbox capacity must be positive")
        self._capacity = capacity
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=capacity)
        self._closed = asyncio.Event()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    def full(self) -> bool:
        return self._queue.full()

    def offer(self, item: T) -> bool:
        """
        Enqueue without waiting.

        Returns:
            False if the mailbox is closed or at capacity, True otherwise.
        """
        if self.closed:
            return False
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> bool:
        """
        Close the mailbox.

        Returns:
            True on the first call, False if it was already closed.
        """
        if self._closed.is_set():
            return False
        self._closed.set()
        return True

    async def receive(self, timeout: float | None = None) -> T | None:
        """
        Wait for the next item.

        Waits on three outcomes at once: an item arrives, the mailbox is
        closed, or the timeout elapses.

        Args:
            timeout: Seconds to wait; None waits indefinitely.

        Returns:
            The next item, or None if the timeout elapsed first.

        Raises:
            MailboxClosed: If the mailbox is closed and no items remain.
        """
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self.closed:
            raise MailboxClosed()

        get_task = asyncio.ensure_future(self._queue.get())
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait(
                {get_task, closed_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (get_task, closed_task):
                if not task.done():
                    task.cancel()

        if get_task.done() and not get_task.cancelled():
            return get_task.result()
        # The get was cancelled; an item may have landed in the meantime
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self.closed:
            raise MailboxClosed()
        return None
