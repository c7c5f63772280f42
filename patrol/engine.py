"""
Patrol engine: one fetch-detect-persist-notify cycle per target.

Cycle states: PENDING -> FETCHING -> {SUCCEEDED, FAILED}.

Rules:
- a failed fetch never touches the stored record
- every successful observation rewrites the record (last_checked_at advances)
- the record is persisted before a change is notified
- the first observation of a target is a baseline and is never reported
- every error is contained here; nothing unwinds into the scheduler loop
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

import structlog

from patrol.errors import FetchError, StoreError, UnknownFetchError
from patrol.fingerprinting import ChangeDetector
from patrol.models import (
    ChangeEvent, ChangeVerdict, CycleResult, CycleState, FailureKind,
    FingerprintRecord, Observation, ObservationFailure, Target, utc_now
)
from patrol.ports import FingerprintStore, Notifier, PageRenderer
from utilities.logger import PatrolLogger

logger = structlog.get_logger(__name__)


class PatrolEngine:
    """Orchestrates renderer, change detector, store and notifier for one target cycle."""

    def __init__(
        self,
        renderer: PageRenderer,
        store: FingerprintStore,
        notifier: Notifier,
        detector: Optional[ChangeDetector] = None,
        retry_attempts: int = 0,
        retry_delay: float = 1.0,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the engine.

        Args:
            renderer: Page rendering port
            store: Fingerprint store port
            notifier: Notification port
            detector: Change detector, defaults to strip-normalized SHA-256
            retry_attempts: Immediate fetch retries within one cycle (0 = none,
                the next scheduled tick is the retry)
            retry_delay: Base delay for exponential backoff between retries
            clock: Source of timestamps
        """
        self.renderer = renderer
        self.store = store
        self.notifier = notifier
        self.detector = detector or ChangeDetector()
        self.retry_attempts = max(0, retry_attempts)
        self.retry_delay = retry_delay
        self.clock = clock
        self._cycle_states: Dict[str, CycleState] = {}
        self.patrol_logger = PatrolLogger("patrol_engine")
        self.logger = logger.bind(component="patrol_engine")

    async def run_cycle(self, target: Target) -> CycleResult:
        """
        Run one patrol cycle for a target.

        Args:
            target: Target to observe

        Returns:
            CycleResult in state SUCCEEDED or FAILED
        """
        started_at = self.clock()
        self._cycle_states[target.target_id] = CycleState.PENDING
        self.patrol_logger.log_cycle_start(target.target_id, target.url_str)

        try:
            previous = await self.store.read(target.target_id)
        except Exception as e:
            return await self._store_failed(target, "read", e, started_at)

        self._cycle_states[target.target_id] = CycleState.FETCHING
        try:
            observation, fingerprint, attempts = await self._observe(target)
        except FetchError as e:
            failure = ObservationFailure(
                target_id=target.target_id,
                url=target.url_str,
                kind=e.kind,
                message=str(e) or type(e).__name__,
                attempts=getattr(e, "attempts", 1),
                occurred_at=self.clock()
            )
            self.patrol_logger.log_fetch_failure(
                target.target_id, failure.kind.value, failure.message, failure.attempts
            )
            await self._notify_failure(failure)
            return self._result(target, CycleState.FAILED, started_at, failure=failure)

        observed_at = observation.observed_at
        verdict = self.detector.has_changed(previous.fingerprint if previous else None, fingerprint)
        record = self._next_record(target, previous, fingerprint, verdict, observed_at)

        try:
            await self.store.write(record)
        except Exception as e:
            return await self._store_failed(target, "write", e, started_at)

        event = None
        if verdict == ChangeVerdict.CHANGED:
            event = ChangeEvent(
                target_id=target.target_id,
                url=target.url_str,
                previous_fingerprint=previous.fingerprint,
                new_fingerprint=fingerprint,
                detected_at=observed_at
            )
            try:
                await self.notifier.emit_change(event)
            except Exception as e:
                # the record is already persisted; only the notification is lost
                self.logger.error(
                    "Change notification failed",
                    target_id=target.target_id,
                    event_id=event.event_id,
                    error=str(e)
                )

        result = self._result(
            target, CycleState.SUCCEEDED, started_at,
            verdict=verdict, record=record, event=event
        )
        self.patrol_logger.log_verdict(
            target.target_id, verdict.value, fingerprint, result.duration_seconds
        )
        if attempts > 1:
            self.logger.info("Fetch recovered after retry", target_id=target.target_id, attempts=attempts)
        return result

    def cycle_state(self, target_id: str) -> Optional[CycleState]:
        """State of the target's current or most recent cycle, None if it never ran."""
        return self._cycle_states.get(target_id)

    async def _observe(self, target: Target) -> Tuple[Observation, str, int]:
        """Fetch and fingerprint, retrying up to retry_attempts times with exponential backoff."""
        max_attempts = self.retry_attempts + 1

        for attempt in range(1, max_attempts + 1):
            try:
                try:
                    content = await self.renderer.fetch(target)
                except FetchError:
                    raise
                except Exception as e:
                    raise UnknownFetchError(f"{type(e).__name__}: {e}") from e
                if not isinstance(content, str):
                    raise UnknownFetchError(f"Renderer returned {type(content).__name__}, expected str")

                observation = Observation(target_id=target.target_id, content=content, observed_at=self.clock())
                return observation, self.detector.fingerprint(observation.content), attempt

            except FetchError as e:
                if attempt >= max_attempts:
                    e.attempts = attempt
                    raise
                delay = self.retry_delay * (2 ** (attempt - 1))
                self.patrol_logger.log_retry(target.target_id, attempt, self.retry_attempts, delay)
                await asyncio.sleep(delay)

    @staticmethod
    def _next_record(
        target: Target,
        previous: Optional[FingerprintRecord],
        fingerprint: str,
        verdict: ChangeVerdict,
        observed_at: datetime
    ) -> FingerprintRecord:
        if verdict == ChangeVerdict.CHANGED:
            last_changed_at = observed_at
        elif verdict == ChangeVerdict.UNCHANGED:
            last_changed_at = previous.last_changed_at
        else:
            last_changed_at = None

        return FingerprintRecord(
            target_id=target.target_id,
            url=target.url_str,
            fingerprint=fingerprint,
            last_checked_at=observed_at,
            last_changed_at=last_changed_at
        )

    async def _store_failed(
        self,
        target: Target,
        operation: str,
        error: Exception,
        started_at: datetime
    ) -> CycleResult:
        message = str(error) if isinstance(error, StoreError) else f"{type(error).__name__}: {error}"
        self.patrol_logger.log_store_failure(target.target_id, operation, message)

        failure = ObservationFailure(
            target_id=target.target_id,
            url=target.url_str,
            kind=FailureKind.STORE,
            message=f"store {operation} failed: {message}",
            occurred_at=self.clock()
        )
        await self._notify_failure(failure)
        return self._result(target, CycleState.FAILED, started_at, failure=failure)

    async def _notify_failure(self, failure: ObservationFailure) -> None:
        try:
            await self.notifier.emit_failure(failure)
        except Exception as e:
            self.logger.error(
                "Failure notification failed",
                target_id=failure.target_id,
                error_kind=failure.kind.value,
                error=str(e)
            )

    def _result(self, target: Target, state: CycleState, started_at: datetime, **kwargs) -> CycleResult:
        self._cycle_states[target.target_id] = state
        return CycleResult(
            target_id=target.target_id,
            state=state,
            started_at=started_at,
            finished_at=self.clock(),
            **kwargs
        )
