"""
Test cases for the patrol service: dispatching, concurrency, run-once and shutdown.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import T0, FakeClock, InMemoryStore, RecordingNotifier, ScriptedRenderer, make_target
from patrol.engine import PatrolEngine
from patrol.models import ChangeVerdict, CycleResult, CycleState
from patrol.patrol_scheduler import PatrolScheduler
from patrol.patrol_service import PatrolService


@pytest.fixture
def targets():
    return [
        make_target("one", "https://one.example/"),
        make_target("two", "https://two.example/"),
    ]


@pytest.fixture
def renderer():
    return ScriptedRenderer({"one": ["1a", "1a"], "two": ["2a", "2b"]})


@pytest.fixture
def service(renderer, targets):
    clock = FakeClock()
    engine = PatrolEngine(renderer, InMemoryStore(), RecordingNotifier(), clock=clock)
    return PatrolService(engine, PatrolScheduler(targets, start=T0), max_concurrency=2, clock=clock)


def slow_engine(active, peak, release=None):
    """Engine mock whose cycles block until `release` is set (or briefly sleep)."""
    async def run_cycle(target):
        active.append(target.target_id)
        peak.append(len(active))
        try:
            if release is not None:
                await release.wait()
            else:
                await asyncio.sleep(0.01)
        finally:
            active.remove(target.target_id)
        return CycleResult(target_id=target.target_id, state=CycleState.SUCCEEDED, started_at=T0, finished_at=T0)

    engine = MagicMock(spec=PatrolEngine)
    engine.run_cycle = AsyncMock(side_effect=run_cycle)
    return engine


class TestRunOnce:
    """Test cases for run-once mode."""

    @pytest.mark.asyncio
    async def test_run_once_observes_every_target(self, service, renderer):
        results = await service.run_once()

        assert sorted(r.target_id for r in results) == ["one", "two"]
        assert all(r.verdict == ChangeVerdict.BASELINE for r in results)
        assert sorted(renderer.calls) == ["one", "two"]
        assert service.patrol_scheduler.in_flight == frozenset()

    @pytest.mark.asyncio
    async def test_start_in_run_once_mode_returns(self, service):
        await service.start(run_once=True)

        status = service.get_status()
        assert status["cycles_succeeded"] == 2
        assert status["running"] is False


class TestDispatch:
    """Test cases for tick dispatching."""

    @pytest.mark.asyncio
    async def test_tick_dispatches_due_targets(self, service):
        summary = await service._patrol_tick_job()
        await asyncio.gather(*service._tasks)

        assert summary == {"dispatched": 2}
        assert service.get_status()["cycles_succeeded"] == 2

    @pytest.mark.asyncio
    async def test_second_cycle_detects_change(self, service):
        await service.run_once()
        service.clock.advance(60)
        await service.run_once()

        status = service.get_status()
        assert status["changes_detected"] == 1
        verdicts = {t["target_id"]: t["last_verdict"] for t in status["targets"]}
        assert verdicts == {"one": "unchanged", "two": "changed"}
        assert {t["cycle_state"] for t in status["targets"]} == {"succeeded"}

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        active, peak = [], []
        targets = [make_target(f"t{i}", f"https://t{i}.example/") for i in range(5)]
        service = PatrolService(
            slow_engine(active, peak),
            PatrolScheduler(targets, start=T0),
            max_concurrency=2,
            clock=FakeClock()
        )

        results = await service.run_once()

        assert len(results) == 5
        assert max(peak) == 2

    @pytest.mark.asyncio
    async def test_engine_crash_releases_target(self, targets):
        engine = MagicMock(spec=PatrolEngine)
        engine.run_cycle = AsyncMock(side_effect=RuntimeError("bug"))
        service = PatrolService(engine, PatrolScheduler(targets, start=T0), clock=FakeClock())

        results = await service.run_once()

        assert results == []
        assert service.patrol_scheduler.in_flight == frozenset()


class TestShutdown:
    """Test cases for graceful shutdown."""

    @pytest.mark.asyncio
    async def test_stop_cancels_cycles_exceeding_grace(self, targets):
        active, peak = [], []
        service = PatrolService(
            slow_engine(active, peak, release=asyncio.Event()),
            PatrolScheduler(targets, start=T0),
            max_concurrency=2,
            shutdown_grace_seconds=0.05,
            clock=FakeClock()
        )

        await service._patrol_tick_job()
        await asyncio.sleep(0)
        assert service.patrol_scheduler.in_flight == {"one", "two"}

        await service.stop()

        assert active == []
        assert service._tasks == set()
        assert service.patrol_scheduler.in_flight == frozenset()

    @pytest.mark.asyncio
    async def test_stop_waits_for_quick_cycles(self, targets):
        active, peak = [], []
        service = PatrolService(
            slow_engine(active, peak),
            PatrolScheduler(targets, start=T0),
            max_concurrency=2,
            shutdown_grace_seconds=5,
            clock=FakeClock()
        )

        await service._patrol_tick_job()
        await service.stop()

        assert service.get_status()["cycles_succeeded"] == 2

    @pytest.mark.asyncio
    async def test_daemon_mode_until_stop_requested(self, renderer, targets):
        engine = PatrolEngine(renderer, InMemoryStore(), RecordingNotifier())
        service = PatrolService(engine, PatrolScheduler(targets), max_concurrency=2, tick_seconds=0.05)

        with patch.object(service, "_setup_signal_handlers"):
            task = asyncio.create_task(service.start())
            for _ in range(100):
                if service.get_status()["cycles_succeeded"] == 2:
                    break
                await asyncio.sleep(0.02)
            service.request_stop()
            await asyncio.wait_for(task, timeout=5)

        assert service.get_status()["cycles_succeeded"] == 2
        assert service.scheduler.running is False


class TestStatus:
    """Test cases for status reporting."""

    def test_status_before_any_cycle(self, service):
        status = service.get_status()

        assert status["running"] is False
        assert status["max_concurrency"] == 2
        assert [t["target_id"] for t in status["targets"]] == ["one", "two"]
        assert status["targets"][0]["next_due"] == T0.isoformat()
        assert status["targets"][0]["last_state"] is None
        assert status["targets"][0]["cycle_state"] is None
        assert status["cycles_failed"] == 0
