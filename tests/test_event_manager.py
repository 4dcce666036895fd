"""
Tests for per-project render event fan-out.
"""

import asyncio
import json

import pytest

from hybridedit.services.event_manager import NullEventSink, ProjectEvent, ProjectEventManager


async def wait_for_subscribers(manager: ProjectEventManager, project_id: str, count: int) -> None:
    for _ in range(50):
        if manager.get_subscriber_count(project_id) == count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} subscribers")


class TestProjectEvent:
    def test_to_sse(self):
        event = ProjectEvent(
            event_type="render_progress",
            project_id="p1",
            sequence=4,
            timestamp="2026-01-01T00:00:00+00:00",
            data={"percent": 30},
        )

        sse = event.to_sse()

        assert sse.startswith("id: 4\nevent: render_progress\ndata: ")
        assert sse.endswith("\n\n")
        payload = json.loads(sse.split("data: ", 1)[1])
        assert payload == {
            "type": "render_progress",
            "project_id": "p1",
            "timestamp": "2026-01-01T00:00:00+00:00",
            "data": {"percent": 30},
        }

    def test_to_sse_without_data(self):
        payload = json.loads(ProjectEvent("render_started", "p1").to_sse().split("data: ", 1)[1])
        assert "data" not in payload

    @pytest.mark.parametrize(
        "event_type,terminal",
        [
            ("render_started", False),
            ("render_progress", False),
            ("render_completed", True),
            ("render_cached", True),
            ("render_failed", True),
        ],
    )
    def test_is_terminal(self, event_type, terminal):
        assert ProjectEvent(event_type, "p1").is_terminal is terminal


class TestProjectEventManager:
    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        assert await ProjectEventManager().publish("p1", "render_started") == 0

    @pytest.mark.asyncio
    async def test_subscriber_receives_only_its_project(self):
        manager = ProjectEventManager()
        stream = manager.subscribe("p1")
        receive = asyncio.create_task(stream.__anext__())
        await wait_for_subscribers(manager, "p1", 1)

        assert await manager.publish("p2", "render_started") == 0
        assert await manager.publish("p1", "render_completed", {"version": 3}) == 1

        event = await asyncio.wait_for(receive, timeout=1)
        assert event.event_type == "render_completed"
        assert event.data == {"version": 3}
        assert event.sequence == 1

        await stream.aclose()
        assert manager.get_subscriber_count("p1") == 0

    @pytest.mark.asyncio
    async def test_sequence_is_per_project(self):
        manager = ProjectEventManager()
        await manager.publish("p1", "render_started")
        await manager.publish("p1", "render_progress", {"percent": 10})
        await manager.publish("p2", "render_started")

        assert manager.last_event("p1").sequence == 2
        assert manager.last_event("p2").sequence == 1
        assert manager.last_event("p3") is None

    @pytest.mark.asyncio
    async def test_full_queue_drops_progress(self):
        manager = ProjectEventManager(max_queue_size=1)
        stream = manager.subscribe("p1")
        receive = asyncio.create_task(stream.__anext__())
        await wait_for_subscribers(manager, "p1", 1)

        assert await manager.publish("p1", "render_progress", {"percent": 10}) == 1
        first = await asyncio.wait_for(receive, timeout=1)
        assert await manager.publish("p1", "render_progress", {"percent": 30}) == 1
        assert await manager.publish("p1", "render_progress", {"percent": 90}) == 0

        second = await asyncio.wait_for(stream.__anext__(), timeout=1)
        assert [first.data["percent"], second.data["percent"]] == [10, 30]
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_terminal_event_evicts_oldest(self):
        manager = ProjectEventManager(max_queue_size=1)
        stream = manager.subscribe("p1")
        receive = asyncio.create_task(stream.__anext__())
        await wait_for_subscribers(manager, "p1", 1)
        await manager.publish("p1", "render_started")
        await asyncio.wait_for(receive, timeout=1)

        await manager.publish("p1", "render_progress", {"percent": 30})
        assert await manager.publish("p1", "render_failed", {"error": "boom"}) == 1

        event = await asyncio.wait_for(stream.__anext__(), timeout=1)
        assert event.event_type == "render_failed"
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_last_event(self):
        manager = ProjectEventManager()
        await manager.publish("p1", "render_progress", {"percent": 30})

        stream = manager.subscribe("p1")
        event = await asyncio.wait_for(stream.__anext__(), timeout=1)

        assert event.data == {"percent": 30}
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_replay_can_be_disabled(self):
        manager = ProjectEventManager()
        await manager.publish("p1", "render_completed")

        stream = manager.subscribe("p1", replay_last=False)
        receive = asyncio.create_task(stream.__anext__())
        await wait_for_subscribers(manager, "p1", 1)
        await manager.publish("p1", "render_started")

        assert (await asyncio.wait_for(receive, timeout=1)).event_type == "render_started"
        await stream.aclose()


class TestNullEventSink:
    @pytest.mark.asyncio
    async def test_drops_events(self):
        assert await NullEventSink().publish("p1", "render_started", {}) == 0
