"""Tests for healthscore.core.events: Event model, builders, InMemoryEventBus."""

import pytest

from healthscore.core.events import (
    COLLECTOR_RUN_COMPLETED,
    INSTANCE_SCORE_UPDATED,
    Event,
    EventBus,
    collector_run_completed,
    get_event_bus,
    instance_score_updated,
    set_event_bus,
)
from healthscore.core.events.memory import InMemoryEventBus
from healthscore.core.models import CompositeHealthScore, ExecutionRecord, ExecutionStatus


class TestEventMatches:
    def test_exact_and_wildcards(self):
        event = Event(event_type="collector.run_completed", source="test")
        assert event.matches("collector.run_completed")
        assert event.matches("*")
        assert event.matches("collector.*")
        assert not event.matches("instance.*")


class TestBuilders:
    def test_instance_score_updated_payload(self):
        composite = CompositeHealthScore("SQL01", 96, "Optimal", {}, {})
        event = instance_score_updated(composite, correlation_id="exec-1")
        assert event.event_type == INSTANCE_SCORE_UPDATED
        assert event.payload["instance_name"] == "SQL01"
        assert event.payload["score"] == 96
        assert event.payload["status"] == "Optimal"
        assert event.correlation_id == "exec-1"

    def test_collector_run_completed_payload(self):
        record = ExecutionRecord.start("CPU")
        record.status = ExecutionStatus.COMPLETED
        record.success_count, record.error_count, record.total_instances = 3, 1, 4
        event = collector_run_completed(record)
        assert event.event_type == COLLECTOR_RUN_COMPLETED
        assert event.payload["execution_id"] == record.id
        assert event.payload["status"] == "Completed"
        assert event.payload["counts"] == {"total": 4, "success": 3, "error": 1, "skipped": 0}


class TestInMemoryEventBus:
    @pytest.mark.asyncio
    async def test_publish_to_matching_subscribers(self):
        bus = InMemoryEventBus()
        received: list[str] = []

        async def handler(event: Event) -> None:
            received.append(event.event_type)

        await bus.subscribe("instance.*", handler)
        await bus.publish(Event(event_type="instance.score_updated", source="t"))
        await bus.publish(Event(event_type="collector.run_completed", source="t"))
        assert received == ["instance.score_updated"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_others(self):
        bus = InMemoryEventBus()
        received: list[Event] = []

        async def bad(event: Event) -> None:
            raise RuntimeError("boom")

        async def good(event: Event) -> None:
            received.append(event)

        await bus.subscribe("*", bad)
        await bus.subscribe("*", good)
        await bus.publish(Event(event_type="x", source="t"))
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_and_close(self):
        bus = InMemoryEventBus()

        async def handler(event: Event) -> None:
            pass

        sub = await bus.subscribe("*", handler)
        await bus.subscribe("*", handler)
        assert bus.subscription_count == 2
        await bus.unsubscribe(sub)
        assert bus.subscription_count == 1
        await bus.close()
        assert bus.subscription_count == 0
        await bus.publish(Event(event_type="x", source="t"))  # no-op once closed

    @pytest.mark.asyncio
    async def test_handler_errors_counted_per_event_type(self):
        bus = InMemoryEventBus()

        async def bad(event: Event) -> None:
            raise RuntimeError("relay down")

        await bus.subscribe(INSTANCE_SCORE_UPDATED, bad)
        composite = CompositeHealthScore("SQL01", 96, "Optimal", {}, {})
        await bus.publish(instance_score_updated(composite))
        await bus.publish(instance_score_updated(composite))
        await bus.publish(collector_run_completed(ExecutionRecord.start("CPU")))

        stats = bus.stats()
        assert stats["published"] == {INSTANCE_SCORE_UPDATED: 2, COLLECTOR_RUN_COMPLETED: 1}
        assert stats["handler_errors"] == {INSTANCE_SCORE_UPDATED: 2}
        assert stats["subscriptions"] == 1

    @pytest.mark.asyncio
    async def test_latest_score_tracked_per_instance(self):
        bus = InMemoryEventBus()
        assert bus.latest_score("SQL01") is None

        await bus.publish(instance_score_updated(CompositeHealthScore("SQL01", 96, "Optimal", {}, {})))
        await bus.publish(instance_score_updated(CompositeHealthScore("SQL01", 42, "Critical", {}, {})))
        await bus.publish(instance_score_updated(CompositeHealthScore("SQL02", 80, "Good", {}, {})))

        latest = bus.latest_score("SQL01")
        assert latest["score"] == 42
        assert latest["status"] == "Critical"
        assert bus.stats()["instances_tracked"] == 2

    @pytest.mark.asyncio
    async def test_score_subscription_filtered_by_instance(self):
        bus = InMemoryEventBus()
        seen: list[int] = []

        async def handler(event: Event) -> None:
            seen.append(event.payload["score"])

        await bus.subscribe_score_updates(handler, instance_name="SQL02")
        await bus.publish(instance_score_updated(CompositeHealthScore("SQL01", 96, "Optimal", {}, {})))
        await bus.publish(instance_score_updated(CompositeHealthScore("SQL02", 80, "Good", {}, {})))
        await bus.publish(collector_run_completed(ExecutionRecord.start("CPU")))
        assert seen == [80]

    @pytest.mark.asyncio
    async def test_run_subscription_filtered_by_collector(self):
        bus = InMemoryEventBus()
        seen: list[str] = []

        async def handler(event: Event) -> None:
            seen.append(event.payload["collector_name"])

        await bus.subscribe_run_completions(handler, collector_name="Memory")
        await bus.subscribe_run_completions(handler)
        await bus.publish(collector_run_completed(ExecutionRecord.start("CPU")))
        await bus.publish(collector_run_completed(ExecutionRecord.start("Memory")))
        assert sorted(seen) == ["CPU", "Memory", "Memory"]


    def test_satisfies_protocol(self):
        assert isinstance(InMemoryEventBus(), EventBus)


class TestGlobalBus:
    def test_default_is_in_memory(self):
        assert isinstance(get_event_bus(), InMemoryEventBus)
        assert get_event_bus() is get_event_bus()

    def test_set_and_reset(self):
        custom = InMemoryEventBus()
        set_event_bus(custom)
        assert get_event_bus() is custom
        set_event_bus(None)
        assert get_event_bus() is not custom
