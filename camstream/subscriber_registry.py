import threading
import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Subscriber:
    id: str
    connected_at: float = field(default_factory=time.time)


class SubscriberRegistry:
    """Set of connected viewers, reporting 0->1 and 1->0 transitions"""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = {}

    def add(self, subscriber_id):
        """Register a viewer; True if it is the first one"""
        with self._lock:
            if subscriber_id in self._subscribers:
                return False
            self._subscribers[subscriber_id] = Subscriber(subscriber_id)
            return len(self._subscribers) == 1

    def remove(self, subscriber_id):
        """Forget a viewer; True if it was the last one"""
        with self._lock:
            if self._subscribers.pop(subscriber_id, None) is None:
                return False
            return not self._subscribers

    def get(self, subscriber_id):
        with self._lock:
            return self._subscribers.get(subscriber_id)

    def count(self):
        with self._lock:
            return len(self._subscribers)

    def ids(self):
        with self._lock:
            return list(self._subscribers)

    def __contains__(self, subscriber_id):
        with self._lock:
            return subscriber_id in self._subscribers
