"""
Per-target patrol timing.

The scheduler owns the "next due" instant of every target and the set of
targets with a cycle in flight. It is created from the target list at
startup, mutated only through tick() and complete(), and discarded at
shutdown.
"""

from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Union

import structlog

from patrol.errors import ConfigurationError
from patrol.models import Target, utc_now

logger = structlog.get_logger(__name__)


class PatrolScheduler:
    """Decides which targets are due and keeps one cycle per target at most."""

    def __init__(self, targets: Iterable[Target], start: Optional[datetime] = None):
        """
        Initialize the scheduler. Every target is due at `start` (cold start).

        Args:
            targets: Targets to patrol
            start: Cold start instant, defaults to now

        Raises:
            ConfigurationError: on duplicate target identifiers
        """
        self._targets: Dict[str, Target] = {}
        for target in targets:
            if target.target_id in self._targets:
                raise ConfigurationError(f"Duplicate target id: {target.target_id}")
            self._targets[target.target_id] = target

        start = start or utc_now()
        self._next_due: Dict[str, datetime] = {target_id: start for target_id in self._targets}
        self._in_flight: Set[str] = set()
        self.logger = logger.bind(component="patrol_scheduler")

    @property
    def targets(self) -> List[Target]:
        return list(self._targets.values())

    @property
    def in_flight(self) -> FrozenSet[str]:
        return frozenset(self._in_flight)

    def next_due(self, target: Union[Target, str], now: Optional[datetime] = None) -> datetime:
        """
        Instant at which the target is next due.

        An overdue target is due `now` when `now` is given.
        """
        target_id = target.target_id if isinstance(target, Target) else target
        due = self._next_due[target_id]
        if now is not None and due < now:
            return now
        return due

    def tick(self, now: Optional[datetime] = None) -> List[Target]:
        """
        Collect targets due at `now` and mark them in flight.

        Each due target's next-due instant advances by its interval whether
        or not its previous cycle succeeded. A due target whose previous
        cycle is still running is skipped for this period.

        Returns:
            Targets whose cycle should start now
        """
        now = now or utc_now()
        due: List[Target] = []

        for target_id, target in self._targets.items():
            if self._next_due[target_id] > now:
                continue

            self._next_due[target_id] = self._advance(self._next_due[target_id], target.interval, now)

            if target_id in self._in_flight:
                self.logger.warning(
                    "Previous cycle still in flight, skipping period",
                    target_id=target_id,
                    next_due=self._next_due[target_id].isoformat()
                )
                continue

            self._in_flight.add(target_id)
            due.append(target)

        return due

    def complete(self, target_id: str) -> None:
        """Mark the target's cycle as finished."""
        self._in_flight.discard(target_id)

    def snapshot(self) -> Dict[str, datetime]:
        """Copy of the next-due table."""
        return dict(self._next_due)

    @staticmethod
    def _advance(due: datetime, interval: timedelta, now: datetime) -> datetime:
        next_due = due + interval
        if next_due <= now:
            # missed periods are not replayed
            next_due = now + interval
        return next_due
