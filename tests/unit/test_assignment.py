"""Tests for fleetsync._assignment — assignments and playlists.

Test Techniques Used:
    - Specification-based Testing: assign/unassign/reorder/shuffle rules
    - Invariant Testing: order-map keys equal the assigned set
    - Idempotence Testing: repeating assign changes nothing
    - Side-effect Verification: one update_content push per device
    - Fault Injection: failed pushes keep the registry write
"""

from __future__ import annotations

import json
import logging
import random
from typing import Any

import pytest

from fleetsync._assignment import AssignmentEngine
from fleetsync._errors import ConflictError, InvalidState, NotFound
from fleetsync._gateway import MessageGateway
from fleetsync._models import Content, ContentStatus, Device
from fleetsync._mqtt import MockMqttClient
from fleetsync._registry import Registry

# ---------------------------------------------------------------------------
# Fixtures & helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(registry: Registry, gateway: MessageGateway) -> AssignmentEngine:
    return AssignmentEngine(registry=registry, gateway=gateway, rng=random.Random(7))


@pytest.fixture
async def fleet(registry: Registry) -> list[str]:
    """Devices d1..d3 and unassigned content c1..c4."""
    for n in range(1, 4):
        await registry.create_device(Device(id=f"d{n}", name=f"Display {n}"))
    for n in range(1, 5):
        await registry.create_content(Content(id=f"c{n}", filename=f"c{n}.jpg"), b"img")
    return ["d1", "d2", "d3"]


def _pushes(mqtt: MockMqttClient, device_id: str) -> list[dict[str, Any]]:
    return [
        json.loads(payload)
        for payload, _, _ in mqtt.get_messages_for(f"signage/device/{device_id}/command")
    ]


async def _assert_invariant(registry: Registry) -> None:
    for content in await registry.list_content():
        assert set(content.device_orders) == set(content.assigned_devices), content.id


# ---------------------------------------------------------------------------
# TestAssign
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("fleet")
class TestAssign:
    """Technique: Specification-based Testing."""

    async def test_orders_start_at_start_order(
        self, engine: AssignmentEngine, mock_mqtt: MockMqttClient
    ) -> None:
        content = await engine.assign("c1", ["d1", "d2"], 5)

        assert content.assigned_devices == ["d1", "d2"]
        assert content.device_orders == {"d1": 5, "d2": 6}
        assert len(_pushes(mock_mqtt, "d1")) == 1
        assert len(_pushes(mock_mqtt, "d2")) == 1
        assert _pushes(mock_mqtt, "d3") == []

    async def test_missing_device_aborts_before_writing(
        self, engine: AssignmentEngine, registry: Registry, mock_mqtt: MockMqttClient
    ) -> None:
        before = await registry.get_content("c1")
        with pytest.raises(NotFound, match="ghost"):
            await engine.assign("c1", ["d1", "ghost"])

        after = await registry.get_content("c1")
        assert after.rev == before.rev
        assert mock_mqtt.publish_count == 0

    async def test_missing_content(self, engine: AssignmentEngine) -> None:
        with pytest.raises(NotFound, match="content"):
            await engine.assign("nope", ["d1"])

    async def test_idempotent(self, engine: AssignmentEngine, registry: Registry) -> None:
        await engine.assign("c1", ["d1"], 0)
        once = await registry.get_content("c1")
        await engine.assign("c1", ["d1"], 0)
        twice = await registry.get_content("c1")

        assert twice.assigned_devices == once.assigned_devices == ["d1"]
        assert twice.device_orders == once.device_orders == {"d1": 0}

    async def test_reassign_overwrites_order(self, engine: AssignmentEngine) -> None:
        await engine.assign("c1", ["d1"], 0)
        content = await engine.assign("c1", ["d2", "d1"], 10)

        assert content.assigned_devices == ["d1", "d2"]
        assert content.device_orders == {"d1": 11, "d2": 10}

    async def test_duplicate_ids_collapse(self, engine: AssignmentEngine) -> None:
        content = await engine.assign("c1", ["d1", "d1", "d2"], 0)
        assert content.assigned_devices == ["d1", "d2"]
        assert content.device_orders == {"d1": 0, "d2": 1}

    async def test_empty_device_list_is_noop(
        self, engine: AssignmentEngine, mock_mqtt: MockMqttClient
    ) -> None:
        content = await engine.assign("c1", [])
        assert content.assigned_devices == []
        assert mock_mqtt.publish_count == 0

    async def test_negative_start_order_rejected(self, engine: AssignmentEngine) -> None:
        with pytest.raises(ValueError, match="start_order"):
            await engine.assign("c1", ["d1"], -1)


# ---------------------------------------------------------------------------
# TestUnassign
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("fleet")
class TestUnassign:
    """Technique: Specification-based Testing / Error Condition Testing."""

    async def test_removes_device_and_order(
        self, engine: AssignmentEngine, mock_mqtt: MockMqttClient
    ) -> None:
        await engine.assign("c1", ["d1", "d2"], 0)
        mock_mqtt.published.clear()

        content = await engine.unassign("c1", "d1")

        assert content.assigned_devices == ["d2"]
        assert content.device_orders == {"d2": 1}
        [push] = _pushes(mock_mqtt, "d1")
        assert push["payload"] == {"content": []}

    async def test_not_assigned_is_invalid_state(
        self, engine: AssignmentEngine, registry: Registry, mock_mqtt: MockMqttClient
    ) -> None:
        before = await registry.get_content("c1")
        with pytest.raises(InvalidState):
            await engine.unassign("c1", "d1")

        after = await registry.get_content("c1")
        assert after.rev == before.rev
        assert after.assigned_devices == []
        assert mock_mqtt.publish_count == 0


# ---------------------------------------------------------------------------
# TestReorder
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("fleet")
class TestReorder:
    """Technique: Specification-based Testing."""

    async def test_updates_orders_of_assigned_content(
        self, engine: AssignmentEngine, registry: Registry
    ) -> None:
        await engine.assign("c1", ["d1"], 0)
        await engine.assign("c2", ["d1"], 1)

        updated = await engine.reorder("d1", [("c1", 1), ("c2", 0)])

        assert [c.id for c in updated] == ["c1", "c2"]
        items = await registry.content_for_device("d1")
        assert [c.id for c in items] == ["c2", "c1"]

    async def test_non_qualifying_pairs_skipped(
        self, engine: AssignmentEngine, registry: Registry
    ) -> None:
        await engine.assign("c1", ["d1"], 0)
        await engine.assign("c2", ["d2"], 0)

        updated = await engine.reorder("d1", [("ghost", 3), ("c2", 4), ("c1", 9)])

        assert [c.id for c in updated] == ["c1"]
        assert (await registry.get_content("c2")).device_orders == {"d2": 0}
        await _assert_invariant(registry)

    async def test_missing_device(self, engine: AssignmentEngine) -> None:
        with pytest.raises(NotFound):
            await engine.reorder("ghost", [])

    async def test_pushes_once(
        self, engine: AssignmentEngine, mock_mqtt: MockMqttClient
    ) -> None:
        await engine.assign("c1", ["d1"], 0)
        mock_mqtt.published.clear()
        await engine.reorder("d1", [("c1", 3)])
        assert len(_pushes(mock_mqtt, "d1")) == 1


# ---------------------------------------------------------------------------
# TestShuffle
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("fleet")
class TestShuffle:
    """Technique: Specification-based Testing — permutation properties."""

    async def test_orders_form_permutation(
        self, engine: AssignmentEngine, registry: Registry
    ) -> None:
        for n, cid in enumerate(("c1", "c2", "c3")):
            await engine.assign(cid, ["d1"], n * 10)
        await engine.assign("c4", ["d2"], 42)
        await engine.assign("c1", ["d2"], 0)

        await engine.shuffle("d1")

        items = await registry.content_for_device("d1")
        assert {c.id for c in items} == {"c1", "c2", "c3"}
        assert sorted(c.order_for("d1") for c in items) == [0, 1, 2]
        assert (await registry.get_content("c4")).device_orders == {"d2": 42}
        assert (await registry.get_content("c1")).order_for("d2") == 0
        await _assert_invariant(registry)

    async def test_every_permutation_reachable(
        self, registry: Registry, gateway: MessageGateway
    ) -> None:
        engine = AssignmentEngine(registry=registry, gateway=gateway, rng=random.Random(0))
        for n, cid in enumerate(("c1", "c2", "c3")):
            await engine.assign(cid, ["d1"], n)

        seen: set[tuple[str, ...]] = set()
        for _ in range(60):
            await engine.shuffle("d1")
            seen.add(tuple(c.id for c in await registry.content_for_device("d1")))
        assert len(seen) == 6

    async def test_nothing_assigned_is_invalid_state(self, engine: AssignmentEngine) -> None:
        with pytest.raises(InvalidState):
            await engine.shuffle("d1")

    async def test_missing_device(self, engine: AssignmentEngine) -> None:
        with pytest.raises(NotFound):
            await engine.shuffle("ghost")


# ---------------------------------------------------------------------------
# TestInvariant
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("fleet")
class TestInvariant:
    """Order-map keys equal the assigned set after every operation.

    Technique: Invariant Testing over a mixed operation sequence.
    """

    async def test_mixed_sequence(self, engine: AssignmentEngine, registry: Registry) -> None:
        await engine.assign("c1", ["d1", "d2", "d3"], 0)
        await _assert_invariant(registry)
        await engine.assign("c2", ["d2"], 3)
        await _assert_invariant(registry)
        await engine.unassign("c1", "d2")
        await _assert_invariant(registry)
        await engine.reorder("d2", [("c1", 5), ("c2", 0)])
        await _assert_invariant(registry)
        await engine.shuffle("d1")
        await _assert_invariant(registry)
        await engine.assign("c1", ["d2"], 1)
        await _assert_invariant(registry)


# ---------------------------------------------------------------------------
# TestPlaylist
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("fleet")
class TestPlaylist:
    """Playlist contents and push side effects.

    Technique: Side-effect Verification / Fault Injection.
    """

    async def test_entries_in_device_order(
        self, engine: AssignmentEngine, mock_mqtt: MockMqttClient
    ) -> None:
        await engine.assign("c2", ["d1"], 1)
        await engine.assign("c1", ["d1"], 0)

        last = _pushes(mock_mqtt, "d1")[-1]
        assert last["command"] == "update_content"
        assert last["payload"]["content"] == [
            {"id": "c1", "path": "api/content/c1/attachment", "order": 0, "extension": ".jpg"},
            {"id": "c2", "path": "api/content/c2/attachment", "order": 1, "extension": ".jpg"},
        ]

    async def test_inactive_content_excluded(
        self, engine: AssignmentEngine, registry: Registry
    ) -> None:
        await engine.assign("c1", ["d1"], 0)
        await engine.assign("c2", ["d1"], 1)
        await registry.update_content("c2", {"status": ContentStatus.INACTIVE})

        assert [e.id for e in await engine.playlist("d1")] == ["c1"]

    async def test_public_base_url_adds_url(
        self, registry: Registry, gateway: MessageGateway
    ) -> None:
        engine = AssignmentEngine(
            registry=registry,
            gateway=gateway,
            public_base_url="http://signage.local:3000/",
        )
        await engine.assign("c1", ["d1"], 0)

        [entry] = await engine.playlist("d1")
        assert entry.url == "http://signage.local:3000/api/content/c1/attachment"

    async def test_disconnected_push_skipped_write_kept(
        self,
        engine: AssignmentEngine,
        registry: Registry,
        mock_mqtt: MockMqttClient,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        mock_mqtt.connected = False
        with caplog.at_level(logging.WARNING, logger="fleetsync._assignment"):
            content = await engine.assign("c1", ["d1"], 0)

        assert content.assigned_devices == ["d1"]
        assert (await registry.get_content("c1")).assigned_devices == ["d1"]
        assert mock_mqtt.publish_count == 0
        assert "skipping playlist push" in caplog.text

    async def test_publish_failure_logged_write_kept(
        self,
        engine: AssignmentEngine,
        registry: Registry,
        mock_mqtt: MockMqttClient,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        async def broken_publish(*_args: object, **_kwargs: object) -> None:
            msg = "broker went away"
            raise OSError(msg)

        monkeypatch.setattr(mock_mqtt, "publish", broken_publish)

        with caplog.at_level(logging.ERROR, logger="fleetsync._assignment"):
            await engine.assign("c1", ["d1"], 0)

        assert (await registry.get_content("c1")).assigned_devices == ["d1"]
        assert "Playlist push to d1 failed" in caplog.text

    async def test_push_playlist_reports_result(
        self, engine: AssignmentEngine, mock_mqtt: MockMqttClient
    ) -> None:
        assert await engine.push_playlist("d1") is True
        mock_mqtt.connected = False
        assert await engine.push_playlist("d1") is False


# ---------------------------------------------------------------------------
# TestDeleteContent
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("fleet")
class TestDeleteContent:
    """Deletion cascades to every assigned device's playlist.

    Technique: Side-effect Verification.
    """

    async def test_removes_and_repushes(
        self, engine: AssignmentEngine, registry: Registry, mock_mqtt: MockMqttClient
    ) -> None:
        await engine.assign("c1", ["d1", "d2"], 0)
        await engine.assign("c2", ["d1"], 1)
        mock_mqtt.published.clear()

        await engine.delete_content("c1")

        assert await registry.find_content("c1") is None
        [d1_push] = _pushes(mock_mqtt, "d1")
        [d2_push] = _pushes(mock_mqtt, "d2")
        assert [e["id"] for e in d1_push["payload"]["content"]] == ["c2"]
        assert d2_push["payload"]["content"] == []

    async def test_missing_content(self, engine: AssignmentEngine) -> None:
        with pytest.raises(NotFound):
            await engine.delete_content("ghost")


# ---------------------------------------------------------------------------
# TestConcurrentAssign
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("fleet")
class TestConcurrentAssign:
    """Technique: Concurrency Testing — conflicts are surfaced."""

    async def test_stale_snapshot_conflicts(
        self,
        engine: AssignmentEngine,
        registry: Registry,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        real_get = registry.get_content

        async def get_then_race(content_id: str) -> Content:
            snapshot = await real_get(content_id)
            await registry.update_content(content_id, {"filename": "raced.jpg"})
            return snapshot

        monkeypatch.setattr(registry, "get_content", get_then_race)

        with pytest.raises(ConflictError):
            await engine.assign("c1", ["d1"], 0)
