"""
Closable FIFO channels for passing keys and results between threads.

A channel is closed by its producer; every consumer then sees the close,
so one channel can feed a whole pool of workers. Channels created by a
Selector share one queue, which lets a single consumer wait on all of them
at once and see their items in the order they were sent.
"""
from __future__ import annotations
import queue
import threading
from typing import Any, Iterator, Optional, Tuple

CLOSED = object()


class ChannelClosed(Exception):
    pass


class Channel:
    def __init__(self, maxsize: int = 0, name: str = "", events: Optional[queue.Queue] = None):
        self.name = name
        self._queue: queue.Queue = events if events is not None else queue.Queue(maxsize)

    def put(self, item: Any) -> None:
        """Send an item; blocks while a bounded channel is full."""
        self._queue.put((self.name, item))

    def close(self) -> None:
        self._queue.put((self.name, CLOSED))

    def get(self) -> Any:
        name, item = self._queue.get()
        if item is CLOSED:
            # put the marker back for the next consumer
            self._queue.put((name, item))
            raise ChannelClosed(name)
        return item

    def __iter__(self) -> Iterator[Any]:
        while True:
            try:
                yield self.get()
            except ChannelClosed:
                return


class Selector:
    """One consumer, many named input channels."""

    def __init__(self):
        self._events: queue.Queue = queue.Queue()

    def channel(self, name: str) -> Channel:
        return Channel(name=name, events=self._events)

    def select(self, timeout: Optional[float] = None) -> Tuple[str, Any]:
        """
        Return (channel name, item) for the next event; item is CLOSED when
        that channel was closed. Raises queue.Empty if timeout expires first.
        """
        return self._events.get(timeout=timeout)


def fan_out(
    source: Channel,
    first: Optional[Channel] = None,
    second: Optional[Channel] = None,
) -> Tuple[Channel, Channel]:
    """
    Copy every item of source to first and then to second, in arrival order,
    and close both once source is closed. Runs on its own daemon thread.
    """
    first = first if first is not None else Channel()
    second = second if second is not None else Channel()

    def _pump() -> None:
        for item in source:
            first.put(item)
            second.put(item)
        first.close()
        second.close()

    threading.Thread(target=_pump, name="fan-out", daemon=True).start()
    return first, second
