"""Tests for the settings synchronization service."""

import asyncio
import json
from unittest.mock import patch

import pytest

from models import Subscriber, SubscriberRegistry
from services import SettingsSyncService
from storage import DocumentStore
from utilities import (
    DEFAULT_SETTINGS,
    CorruptDocument,
    InvalidOrUnpersistable,
    StorageUnavailable,
    normalize,
)
from conftest import drain


async def wait_until(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestStartup:
    """Tests for loading the document at startup."""

    @pytest.mark.asyncio
    async def test_first_run_seeds_defaults(self, service, settings_path):
        current = await service.start()

        assert current == DEFAULT_SETTINGS
        assert json.loads(settings_path.read_text(encoding="utf-8")) == DEFAULT_SETTINGS

    @pytest.mark.asyncio
    async def test_loaded_document_is_normalized(self, service, settings_path):
        settings_path.write_text(json.dumps({"goalAmount": 9, "slides": []}), encoding="utf-8")

        current = await service.start()

        assert current["goalAmount"] == 9
        assert current["slides"] == DEFAULT_SETTINGS["slides"]

    @pytest.mark.asyncio
    async def test_unreadable_storage_is_fatal(self, tmp_path, registry):
        store = DocumentStore(tmp_path / "settings.json", tmp_path / "missing.json")
        service = SettingsSyncService(store, registry)

        with pytest.raises(StorageUnavailable):
            await service.start()
        assert not service.started

    @pytest.mark.asyncio
    async def test_corrupt_storage_is_fatal(self, service, settings_path):
        settings_path.write_text("{", encoding="utf-8")

        with pytest.raises(CorruptDocument):
            await service.start()

    def test_get_current_before_start(self, service):
        with pytest.raises(RuntimeError):
            service.get_current()


class TestReplace:
    """Tests for replace() and replace_raw()."""

    @pytest.mark.asyncio
    async def test_write_then_read(self, service, store):
        await service.start()
        sub = Subscriber("viewer")
        await service.subscribe(sub)
        drain(sub)

        result = await service.replace({"goalAmount": 5000, "raisedAmount": 1200})

        expected = {**DEFAULT_SETTINGS, "goalAmount": 5000, "raisedAmount": 1200}
        assert result == expected
        assert service.get_current() == expected
        assert store.read() == expected
        assert drain(sub) == [expected]

    @pytest.mark.asyncio
    async def test_empty_slides_become_defaults(self, service):
        await service.start()

        result = await service.replace({"slides": []})

        assert result["slides"] == DEFAULT_SETTINGS["slides"]

    @pytest.mark.asyncio
    async def test_unparsable_body_rejected(self, service, store):
        await service.start()
        sub = Subscriber("viewer")
        await service.subscribe(sub)
        drain(sub)
        before = service.get_current()

        with pytest.raises(InvalidOrUnpersistable):
            await service.replace_raw(b"not json-parseable")

        assert service.get_current() == before
        assert store.read() == before
        assert drain(sub) == []
        assert service.writes_rejected == 1

    @pytest.mark.asyncio
    async def test_non_finite_numbers_rejected(self, service, store):
        await service.start()
        sub = Subscriber("viewer")
        await service.subscribe(sub)
        drain(sub)
        before = service.get_current()

        with pytest.raises(InvalidOrUnpersistable):
            await service.replace_raw(b'{"goalAmount": NaN}')
        with pytest.raises(InvalidOrUnpersistable):
            await service.replace_raw(b'{"raisedAmount": -Infinity}')
        with pytest.raises(InvalidOrUnpersistable):
            await service.replace({"goalAmount": float("inf")})

        assert service.get_current() == before
        assert store.read() == before
        assert drain(sub) == []
        assert service.writes_accepted == 0

    @pytest.mark.asyncio
    async def test_non_object_rejected(self, service):
        await service.start()

        with pytest.raises(InvalidOrUnpersistable):
            await service.replace_raw(b"[1, 2, 3]")
        with pytest.raises(InvalidOrUnpersistable):
            await service.replace("a string")

    @pytest.mark.asyncio
    async def test_persist_failure_changes_nothing(self, service, store):
        await service.start()
        sub = Subscriber("viewer")
        await service.subscribe(sub)
        drain(sub)
        before = service.get_current()

        with patch.object(store, "write", side_effect=StorageUnavailable("disk full")):
            with pytest.raises(InvalidOrUnpersistable) as excinfo:
                await service.replace({"goalAmount": 1})

        assert isinstance(excinfo.value.__cause__, StorageUnavailable)
        assert service.get_current() == before
        assert drain(sub) == []
        assert service.writes_accepted == 0

    @pytest.mark.asyncio
    async def test_returned_document_is_a_copy(self, service):
        await service.start()

        result = await service.replace({"bullets": ["a"]})
        result["bullets"].append("b")

        assert service.get_current()["bullets"] == ["a"]


class TestOrdering:
    """Tests for broadcast order and the registration boundary."""

    @pytest.mark.asyncio
    async def test_subscriber_sees_writes_in_order(self, service):
        await service.start()
        sub = Subscriber("viewer")
        _, snapshot = await service.subscribe(sub)

        docs = [{"raisedAmount": n} for n in (100, 200, 300)]
        for doc in docs:
            await service.replace(doc)

        assert drain(sub) == [snapshot] + [normalize(d) for d in docs]

    @pytest.mark.asyncio
    async def test_concurrent_writers_are_serialized(self, gated_store):
        gated_store.delay = 0.005
        service = SettingsSyncService(gated_store, SubscriberRegistry())
        await service.start()
        sub = Subscriber("viewer", queue_size=64)
        await service.subscribe(sub)
        drain(sub)

        await asyncio.gather(*(service.replace({"raisedAmount": n}) for n in range(10)))

        assert drain(sub) == gated_store.written
        assert gated_store.read() == service.get_current() == gated_store.written[-1]

    @pytest.mark.asyncio
    async def test_subscribe_during_write_gets_old_then_new(self, gated_store):
        service = SettingsSyncService(gated_store, SubscriberRegistry())
        before = await service.start()
        gated_store.entered.clear()
        gated_store.release.clear()

        task = asyncio.create_task(service.replace({"goalAmount": 777}))
        await wait_until(gated_store.entered.is_set)

        sub = Subscriber("late")
        _, snapshot = await service.subscribe(sub)
        gated_store.release.set()
        committed = await task

        assert snapshot == before
        assert drain(sub) == [before, committed]

    @pytest.mark.asyncio
    async def test_subscribe_after_write_gets_new_snapshot(self, service):
        await service.start()
        committed = await service.replace({"goalAmount": 1})

        sub = Subscriber("after")
        _, snapshot = await service.subscribe(sub)

        assert snapshot == committed
        assert drain(sub) == [committed]

    @pytest.mark.asyncio
    async def test_cancelled_writer_still_commits(self, gated_store):
        service = SettingsSyncService(gated_store, SubscriberRegistry())
        await service.start()
        gated_store.entered.clear()
        gated_store.release.clear()

        task = asyncio.create_task(service.replace({"goalAmount": 3}))
        await wait_until(gated_store.entered.is_set)
        task.cancel()
        gated_store.release.set()
        with pytest.raises(asyncio.CancelledError):
            await task

        await wait_until(lambda: service.get_current()["goalAmount"] == 3)
        assert gated_store.read()["goalAmount"] == 3


class TestIsolation:
    """A broken subscriber never holds up writers or other subscribers."""

    @pytest.mark.asyncio
    async def test_broken_subscriber_does_not_block_replace(self, service, registry):
        await service.start()
        broken = Subscriber("broken", queue_size=1)
        healthy = Subscriber("healthy")
        await service.subscribe(broken)
        await service.subscribe(healthy)
        drain(healthy)

        # nobody ever drains "broken"; its queue stays full
        for n in range(5):
            await asyncio.wait_for(service.replace({"raisedAmount": n}), timeout=1)

        assert [d["raisedAmount"] for d in drain(healthy)] == [0, 1, 2, 3, 4]
        assert drain(broken) == [service.get_current()]

    @pytest.mark.asyncio
    async def test_closed_subscriber_released_on_next_write(self, service, registry):
        await service.start()
        sub = Subscriber("gone")
        await service.subscribe(sub)
        sub.close()

        await service.replace({"goalAmount": 2})

        assert len(registry) == 0
