"""
Main patrol service.

This module provides:
- A periodic tick job on APScheduler that dispatches due targets
- A concurrency bound on simultaneous cycles (browser sessions are scarce)
- Run-once mode
- Graceful shutdown with a grace period for in-flight cycles
- Status reporting
"""

import asyncio
import signal
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

import structlog
from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from patrol.engine import PatrolEngine
from patrol.models import ChangeVerdict, CycleResult, Target, utc_now
from patrol.patrol_scheduler import PatrolScheduler

logger = structlog.get_logger(__name__)


class PatrolService:
    """Drives the patrol scheduler and engine for the process lifetime."""

    def __init__(
        self,
        engine: PatrolEngine,
        patrol_scheduler: PatrolScheduler,
        max_concurrency: int = 1,
        tick_seconds: float = 1.0,
        shutdown_grace_seconds: float = 10.0,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize patrol service.

        Args:
            engine: Engine running single target cycles
            patrol_scheduler: Owner of per-target due times
            max_concurrency: Cycles allowed to run at the same time
            tick_seconds: How often due targets are collected
            shutdown_grace_seconds: Time in-flight cycles get to finish on shutdown
            clock: Source of timestamps
        """
        self.engine = engine
        self.patrol_scheduler = patrol_scheduler
        self.max_concurrency = max_concurrency
        self.tick_seconds = tick_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.clock = clock

        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(component="patrol_service")

        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self._stop_event: Optional[asyncio.Event] = None
        self._stats = {"cycles_succeeded": 0, "cycles_failed": 0, "changes_detected": 0}
        self._last_results: Dict[str, CycleResult] = {}

        self._setup_scheduler_listeners()

    def _setup_scheduler_listeners(self) -> None:
        def job_error_listener(event):
            self.logger.error(
                "Job execution failed",
                job_id=event.job_id,
                error=str(event.exception)
            )

        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    def _setup_signal_handlers(self) -> None:
        """Stop gracefully on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self.request_stop, signum)
            except (NotImplementedError, RuntimeError):
                # not supported by this event loop (e.g. Windows)
                signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(self.request_stop, s))

    async def start(self, run_once: bool = False) -> None:
        """Start patrolling; returns once stopped (or after one round in run-once mode)."""
        if run_once:
            self.logger.info("Starting patrol service in RUN ONCE MODE")
            results = await self.run_once()
            self.logger.info(
                "Run once mode completed",
                targets=len(results),
                succeeded=sum(1 for r in results if r.succeeded),
                changed=sum(1 for r in results if r.verdict == ChangeVerdict.CHANGED)
            )
            return

        self._stop_event = asyncio.Event()
        self._setup_signal_handlers()

        self.scheduler.add_job(
            func=self._patrol_tick_job,
            trigger='interval',
            seconds=self.tick_seconds,
            id='patrol_tick',
            name='Patrol Tick',
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            next_run_time=self.clock()
        )
        self.scheduler.start()

        self.logger.info(
            "Patrol service started",
            targets=len(self.patrol_scheduler.targets),
            max_concurrency=self.max_concurrency,
            tick_seconds=self.tick_seconds
        )

        await self._stop_event.wait()
        await self.stop()

    def request_stop(self, signum: Optional[int] = None) -> None:
        if signum is not None:
            self.logger.info(f"Received signal {signum}, shutting down gracefully...")
        if self._stop_event is not None:
            self._stop_event.set()

    async def stop(self) -> None:
        """Stop dispatching and wait for in-flight cycles, cancelling the stragglers."""
        self.logger.info("Stopping patrol service", in_flight=len(self._tasks))

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        if self._tasks:
            done, pending = await asyncio.wait(set(self._tasks), timeout=self.shutdown_grace_seconds)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                self.logger.warning("Cancelled in-flight cycles", cancelled=len(pending))

        self.logger.info("Patrol service stopped")

    async def _patrol_tick_job(self) -> Dict:
        """Collect due targets and start a cycle for each."""
        due = self.patrol_scheduler.tick(self.clock())
        for target in due:
            self._dispatch(target)
        return {'dispatched': len(due)}

    def _dispatch(self, target: Target) -> asyncio.Task:
        task = asyncio.create_task(self._run_target(target), name=f"patrol:{target.target_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_target(self, target: Target) -> Optional[CycleResult]:
        try:
            async with self._semaphore:
                result = await self.engine.run_cycle(target)
            self._record(result)
            return result
        except asyncio.CancelledError:
            self.logger.warning("Patrol cycle cancelled", target_id=target.target_id)
            raise
        except Exception as e:
            self.logger.error(
                "Unexpected error in patrol cycle",
                target_id=target.target_id,
                error=str(e)
            )
            return None
        finally:
            self.patrol_scheduler.complete(target.target_id)

    def _record(self, result: CycleResult) -> None:
        self._last_results[result.target_id] = result
        if result.succeeded:
            self._stats["cycles_succeeded"] += 1
            if result.verdict == ChangeVerdict.CHANGED:
                self._stats["changes_detected"] += 1
        else:
            self._stats["cycles_failed"] += 1

    async def run_once(self) -> List[CycleResult]:
        """Run one cycle for every due target (all of them on a cold start)."""
        due = self.patrol_scheduler.tick(self.clock())
        results = await asyncio.gather(*(self._run_target(target) for target in due))
        return [result for result in results if result is not None]

    def get_status(self) -> Dict:
        """Get current patrol status."""
        now = self.clock()
        targets = []
        for target in self.patrol_scheduler.targets:
            last = self._last_results.get(target.target_id)
            state = self.engine.cycle_state(target.target_id)
            targets.append({
                'target_id': target.target_id,
                'url': target.url_str,
                'interval_seconds': target.interval_seconds,
                'next_due': self.patrol_scheduler.next_due(target, now).isoformat(),
                'in_flight': target.target_id in self.patrol_scheduler.in_flight,
                'cycle_state': state.value if state else None,
                'last_state': last.state.value if last else None,
                'last_verdict': last.verdict.value if last and last.verdict else None,
            })

        return {
            'running': self.scheduler.running,
            'max_concurrency': self.max_concurrency,
            'targets': targets,
            **self._stats
        }
