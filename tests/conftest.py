"""Shared fixtures for the settings service tests."""

import asyncio
import threading
import time

import pytest

from models import SubscriberRegistry
from services import SettingsSyncService
from storage import DocumentStore
from utilities.config import BUNDLED_DEFAULTS


class GatedStore(DocumentStore):
    """DocumentStore whose writes can be held open and are recorded in order."""

    def __init__(self, settings_path, default_path, delay: float = 0.0):
        super().__init__(settings_path, default_path)
        self.delay = delay
        self.entered = threading.Event()
        self.release = threading.Event()
        self.release.set()
        self.written = []

    def write(self, doc):
        self.entered.set()
        self.release.wait(timeout=5)
        if self.delay:
            time.sleep(self.delay)
        super().write(doc)
        self.written.append(doc)


@pytest.fixture
def settings_path(tmp_path):
    return tmp_path / "settings.json"


@pytest.fixture
def store(settings_path):
    return DocumentStore(settings_path, BUNDLED_DEFAULTS)


@pytest.fixture
def gated_store(settings_path):
    return GatedStore(settings_path, BUNDLED_DEFAULTS)


@pytest.fixture
def registry():
    return SubscriberRegistry()


@pytest.fixture
def service(store, registry):
    return SettingsSyncService(store, registry)


def drain(subscriber) -> list:
    """Everything currently queued for a subscriber."""
    items = []
    while True:
        try:
            items.append(subscriber.queue.get_nowait())
        except asyncio.QueueEmpty:
            return items
