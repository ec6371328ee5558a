"""Bounded, thread-safe feed of anchoring transactions.

Subscribers receive entries through their own bounded queue rather than
through callbacks. A slow subscriber loses its oldest undelivered entries;
it never blocks publishers or other subscribers.
"""
from __future__ import annotations

import queue
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, List, Optional, Set


@dataclass(frozen=True)
class FeedEntry:
    tx_ref: str
    hash: str
    block: int
    sender: str
    recorded_at: datetime = field(default_factory=datetime.utcnow)


class Subscription:
    def __init__(self, feed: "TransactionFeed", maxsize: int) -> None:
        self._feed = feed
        self.channel: "queue.Queue[FeedEntry]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def deliver(self, entry: FeedEntry) -> None:
        while True:
            try:
                self.channel.put_nowait(entry)
                return
            except queue.Full:
                try:
                    self.channel.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[FeedEntry]:
        try:
            return self.channel.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[FeedEntry]:
        items: List[FeedEntry] = []
        while True:
            try:
                items.append(self.channel.get_nowait())
            except queue.Empty:
                return items

    def close(self) -> None:
        self._feed.unsubscribe(self)
        self.closed = True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class TransactionFeed:
    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: Deque[FeedEntry] = deque(maxlen=capacity)
        self._subscribers: Set[Subscription] = set()
        self._lock = threading.Lock()

    def publish(self, entry: FeedEntry) -> None:
        with self._lock:
            if any(existing.tx_ref == entry.tx_ref for existing in self._entries):
                return
            self._entries.appendleft(entry)
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.deliver(entry)

    def snapshot(self) -> List[FeedEntry]:
        """Newest first."""
        with self._lock:
            return list(self._entries)

    def subscribe(self, replay: bool = False, maxsize: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, maxsize or self.capacity)
        with self._lock:
            if replay:
                for entry in reversed(self._entries):
                    subscription.deliver(entry)
            self._subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
