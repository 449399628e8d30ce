import asyncio
from typing import Optional

from loguru import logger

from trip.geo import Coordinates


class PositionSubscription:
    """One subscriber's view of the position stream.

    Iterate with ``async for``; iteration ends once the subscription is closed.
    """

    def __init__(self, feed: "PositionFeed", maxsize: int = 64):
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def _push(self, position: Coordinates) -> None:
        if self._queue.full():
            # Keep the newest positions
            self._queue.get_nowait()
        self._queue.put_nowait(position)

    async def get(self) -> Optional[Coordinates]:
        """Next position, or None once closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._unsubscribe(self)
        # Wake any pending get()
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Coordinates:
        position = await self.get()
        if position is None:
            raise StopAsyncIteration
        return position


class PositionFeed:
    """Fan-out of position updates to subscribers."""

    def __init__(self):
        self._subscribers: list[PositionSubscription] = []
        self.latest: Optional[Coordinates] = None

    def publish(self, position: Coordinates) -> None:
        self.latest = position
        for sub in list(self._subscribers):
            sub._push(position)

    def subscribe(self) -> PositionSubscription:
        sub = PositionSubscription(self)
        self._subscribers.append(sub)
        logger.debug("Position subscriber added ({} total)", len(self._subscribers))
        return sub

    def _unsubscribe(self, sub: PositionSubscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
            logger.debug("Position subscriber removed ({} left)", len(self._subscribers))

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
