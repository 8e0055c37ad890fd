import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from utilities import SUBSCRIBER_QUEUE_SIZE

logger = logging.getLogger(__name__)

# ------------ In-memory structures ------------
@dataclass(frozen=True)
class RegistrationHandle:
    subscriber_id: str

class Subscriber:
    ''' Represents one connected display client.'''

    def __init__(self, label: str = "subscriber", queue_size: int = SUBSCRIBER_QUEUE_SIZE):

        # initialize fields
        self.subscriber_id = uuid.uuid4().hex
        self.label = label

        # per subscriber delivery buffer
        # a writer never waits for a slow subscriber
        # if the queue is full the oldest pending document is dropped;
        # every message is a full document so the newest one still lands
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

        # optional background task that drains the queue onto a transport
        self.sender_task: Optional[asyncio.Task] = None
        self.connected = True
        self.dropped = 0

    def deliver(self, doc: dict) -> bool:
        if not self.connected:
            return False
        if self.queue.full():
            try:
                self.queue.get_nowait()
                self.dropped += 1
                logger.warning("Slow subscriber %s: dropped oldest pending document", self.label)
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(doc)
        return True

    async def next_document(self, timeout: Optional[float] = None) -> Optional[dict]:
        ''' Next queued document, or None when nothing arrived within timeout.'''
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self):
        self.connected = False

    # graceful cleanup
    async def stop(self):
        self.connected = False
        task = self.sender_task
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

class SubscriberRegistry:
    '''
    The set of currently connected subscribers.

    ``lock`` guards membership together with fan-out. ``add`` and
    ``fan_out`` expect the caller to hold it, so a caller can pair a
    membership change or a broadcast with its own state update in one
    critical section. Neither of them awaits, so delivery to one subscriber
    can never hold up the rest.
    '''

    def __init__(self):
        self.subscribers: Dict[str, Subscriber] = {}
        self.lock = asyncio.Lock()
        # stats
        self.broadcasts = 0

    def __len__(self) -> int:
        return len(self.subscribers)

    def add(self, subscriber: Subscriber) -> RegistrationHandle:
        self.subscribers[subscriber.subscriber_id] = subscriber
        logger.info("Subscriber %s registered (%d connected)", subscriber.label, len(self.subscribers))
        return RegistrationHandle(subscriber.subscriber_id)

    def fan_out(self, doc: dict) -> int:
        delivered = 0
        for sub_id, sub in list(self.subscribers.items()):
            try:
                ok = sub.deliver(doc)
            except Exception:
                logger.exception("Delivery to subscriber %s failed", sub.label)
                ok = False
            if ok:
                delivered += 1
            else:
                self._remove(sub_id)
        self.broadcasts += 1
        return delivered

    async def register(self, subscriber: Subscriber) -> RegistrationHandle:
        async with self.lock:
            return self.add(subscriber)

    def deregister(self, handle: RegistrationHandle) -> None:
        # never awaits, so it is safe from cancelled tasks and repeated calls
        self._remove(handle.subscriber_id)

    async def broadcast(self, doc: dict) -> int:
        async with self.lock:
            return self.fan_out(doc)

    def close_all(self) -> None:
        for sub_id in list(self.subscribers):
            self._remove(sub_id)

    def _remove(self, sub_id: str) -> None:
        sub = self.subscribers.pop(sub_id, None)
        if sub is not None:
            sub.close()
            logger.info("Subscriber %s deregistered (%d connected)", sub.label, len(self.subscribers))
