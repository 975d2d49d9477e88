"""In-memory FIFO of pending work items with a single in-flight slot."""

from collections import deque
from typing import Deque, Dict, List, Optional

from .models import ItemState, WorkItem


class Sequencer:
    """Owns the pending queue and the in-flight slot.

    Every known pending item is either queued or in flight, never both and
    never twice. Items that reached a terminal state are remembered and not
    queued again. Callers running several threads must hold their own lock.
    """

    def __init__(self) -> None:
        self._queue: Deque[WorkItem] = deque()
        self._in_flight: Optional[WorkItem] = None
        self._terminal: Dict[str, ItemState] = {}

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def queue(self) -> List[WorkItem]:
        return list(self._queue)

    @property
    def in_flight(self) -> Optional[WorkItem]:
        return self._in_flight

    def _is_known(self, item_id: str) -> bool:
        if self._in_flight is not None and self._in_flight.item_id == item_id:
            return True
        return any(queued.item_id == item_id for queued in self._queue)

    def state_of(self, item_id: str) -> Optional[ItemState]:
        if self._in_flight is not None and self._in_flight.item_id == item_id:
            return ItemState.IN_FLIGHT
        if any(queued.item_id == item_id for queued in self._queue):
            return ItemState.QUEUED
        return self._terminal.get(item_id)

    def enqueue(self, item: WorkItem) -> bool:
        """Append *item* unless it is queued, in flight or already finished."""
        if self._is_known(item.item_id) or item.item_id in self._terminal:
            return False
        self._queue.append(item)
        return True

    def requeue_front(self, item: WorkItem) -> None:
        """Put *item* back at the head of the queue, releasing its in-flight slot."""
        if self._in_flight is not None and self._in_flight.item_id == item.item_id:
            self._in_flight = None
        if self._is_known(item.item_id):
            return
        self._queue.appendleft(item)

    def dequeue_next(self) -> Optional[WorkItem]:
        """Move the head of the queue in flight, or return None if that is not allowed."""
        if self._in_flight is not None or not self._queue:
            return None
        self._in_flight = self._queue.popleft()
        return self._in_flight

    def finish(self, item_id: str, success: bool = True) -> None:
        """Release the in-flight slot and record the terminal outcome."""
        if self._in_flight is None or self._in_flight.item_id != item_id:
            raise ValueError(f"Item {item_id} is not in flight")
        self._in_flight = None
        self._terminal[item_id] = ItemState.SUCCEEDED if success else ItemState.FAILED
