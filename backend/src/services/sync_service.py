"""Settings synchronization: one live document, persisted and fanned out."""

import asyncio
import copy
import logging
from typing import Any, Mapping, Optional, Tuple, Union

from models import RegistrationHandle, Subscriber, SubscriberRegistry
from storage import DocumentStore
from utilities import DEFAULT_SETTINGS, InvalidOrUnpersistable, StorageUnavailable, normalize, strict_loads

logger = logging.getLogger(__name__)


class SettingsSyncService:
    """Owns the in-memory settings document and the only path that changes it.

    Reads are served from memory. Writes are serialized by ``_write_lock``:
    persist, then swap the in-memory document and fan it out while holding the
    registry lock, so subscribers see writes in commit order and a new
    subscriber's snapshot is never older than the last committed write it
    will not be sent.
    """

    def __init__(
        self,
        store: DocumentStore,
        registry: SubscriberRegistry,
        defaults: Optional[Mapping[str, Any]] = None,
    ):
        self.store = store
        self.registry = registry
        self.defaults = dict(DEFAULT_SETTINGS if defaults is None else defaults)
        self._current: Optional[dict] = None
        self._write_lock = asyncio.Lock()
        # stats
        self.writes_accepted = 0
        self.writes_rejected = 0

    async def start(self) -> dict:
        """Load the persisted document (seeding it on first run).

        Raises:
            StorageUnavailable, CorruptDocument: startup cannot continue.
        """
        doc = await asyncio.to_thread(self.store.load)
        self._current = normalize(doc, self.defaults)
        logger.info("Loaded settings from %s", self.store.settings_path)
        return self.get_current()

    @property
    def started(self) -> bool:
        return self._current is not None

    def get_current(self) -> dict:
        if self._current is None:
            raise RuntimeError("settings service has not been started")
        return copy.deepcopy(self._current)

    async def subscribe(self, subscriber: Subscriber) -> Tuple[RegistrationHandle, dict]:
        """Register a subscriber and queue the current document as its first message."""
        if self._current is None:
            raise RuntimeError("settings service has not been started")
        async with self.registry.lock:
            handle = self.registry.add(subscriber)
            initial = self._current
            subscriber.deliver(initial)
        return handle, copy.deepcopy(initial)

    def unsubscribe(self, handle: RegistrationHandle) -> None:
        self.registry.deregister(handle)

    async def replace_raw(self, body: Union[bytes, str]) -> dict:
        """Parse a request body and replace the document with it."""
        try:
            candidate = strict_loads(body)
        except ValueError as e:
            self._reject("body is not valid JSON")
            raise InvalidOrUnpersistable("Invalid JSON") from e
        return await self.replace(candidate)

    async def replace(self, candidate: Any) -> dict:
        """Normalize, persist, publish and return a full replacement document.

        Raises:
            InvalidOrUnpersistable: candidate is not an object, or persisting
                failed. Nothing changed in memory and nothing was broadcast.
        """
        if not isinstance(candidate, Mapping):
            self._reject("body is not a JSON object")
            raise InvalidOrUnpersistable("Invalid JSON")

        normalized = normalize(candidate, self.defaults)
        # the commit outlives a cancelled caller so disk and memory stay in step
        committed = await asyncio.shield(self._commit(normalized))
        return copy.deepcopy(committed)

    async def _commit(self, normalized: dict) -> dict:
        async with self._write_lock:
            try:
                await asyncio.to_thread(self.store.write, normalized)
            except (StorageUnavailable, TypeError, ValueError) as e:
                self._reject(f"persist failed: {e}")
                raise InvalidOrUnpersistable("Could not persist settings") from e

            async with self.registry.lock:
                self._current = normalized
                delivered = self.registry.fan_out(normalized)

            self.writes_accepted += 1
            logger.info("Settings updated; pushed to %d subscriber(s)", delivered)
            return normalized

    def _reject(self, reason: str) -> None:
        self.writes_rejected += 1
        logger.warning("Rejected settings write: %s", reason)
