"""
Live question feed.

Publishers push items (at-least-once: the same item may be pushed again,
e.g. after a reconnect). Each subscription delivers an item id at most once,
so a question the learner has already seen or answered never reappears.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Generic, Protocol, TypeVar

from loguru import logger


class HasId(Protocol):
    @property
    def id(self) -> str: ...


T = TypeVar("T", bound=HasId)

_CLOSED = object()


class Subscription(Generic[T]):
    """One consumer's view of the feed, deduplicated by item id."""

    def __init__(self, feed: QuestionFeed[T], seen: Iterable[str] = ()):
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue()
        self._seen: set[str] = set(seen)
        self.closed = False

    def _offer(self, item: T) -> None:
        if not self.closed:
            self._queue.put_nowait(item)

    def mark_seen(self, item_id: str) -> None:
        """Suppress an id, e.g. one answered through another channel."""
        self._seen.add(item_id)

    async def get(self, timeout: float | None = None) -> T | None:
        """
        Next unseen item.

        Returns:
            The item, or None if the subscription closed or the timeout elapsed
        """
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                return None
            if item is _CLOSED:
                return None
            if item.id in self._seen:
                logger.debug(f"Dropping duplicate feed item {item.id}")
                continue
            self._seen.add(item.id)
            return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)
        self._feed._unsubscribe(self)

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


class QuestionFeed(Generic[T]):
    """Fan-out of live questions to subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[Subscription[T]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, seen: Iterable[str] = ()) -> Subscription[T]:
        """
        Open a subscription.

        Args:
            seen: Item ids already seen or answered; never delivered
        """
        subscription: Subscription[T] = Subscription(self, seen)
        self._subscribers.append(subscription)
        return subscription

    def publish(self, item: T) -> int:
        """Push an item to every subscriber. Returns how many received it."""
        for subscription in self._subscribers:
            subscription._offer(item)
        return len(self._subscribers)

    def close(self) -> None:
        for subscription in list(self._subscribers):
            subscription.close()

    def _unsubscribe(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
