"""
Notification adapters for change events and observation failures.

This module provides:
- Log-based alerting with per-target rate limiting
- A JSON-lines file sink
- Fan-out to several notifiers
"""

import asyncio
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Union

import structlog

from patrol.errors import NotifierError
from patrol.models import ChangeEvent, ObservationFailure, utc_now
from patrol.ports import Notifier

logger = structlog.get_logger(__name__)


class LogNotifier:
    """Reports changes and failures as structured log entries."""

    def __init__(self, max_alerts_per_hour: int = 10, clock: Callable[[], datetime] = utc_now):
        """
        Initialize log notifier.

        Args:
            max_alerts_per_hour: Change alerts allowed per target per hour
            clock: Source of timestamps for rate limiting
        """
        self.max_alerts_per_hour = max_alerts_per_hour
        self.clock = clock
        self.logger = logger.bind(component="log_notifier")
        self.alert_history: Dict[str, List[datetime]] = {}

    async def emit_change(self, event: ChangeEvent) -> None:
        if not self._check_rate_limit(event.target_id):
            self.logger.warning("Change alert rate limited", target_id=event.target_id)
            return

        self.logger.warning(
            "Page change detected",
            target_id=event.target_id,
            url=event.url,
            previous_fingerprint=event.previous_fingerprint[:16] + "...",
            new_fingerprint=event.new_fingerprint[:16] + "...",
            detected_at=event.detected_at.isoformat(),
            event_id=event.event_id
        )
        self._update_alert_history(event.target_id)

    async def emit_failure(self, failure: ObservationFailure) -> None:
        self.logger.error(
            "Page observation failed",
            target_id=failure.target_id,
            url=failure.url,
            error_kind=failure.kind.value,
            error=failure.message,
            attempts=failure.attempts
        )

    def _check_rate_limit(self, target_id: str) -> bool:
        """Check if another change alert for the target is within the hourly limit."""
        hour_ago = self.clock() - timedelta(hours=1)
        recent_alerts = [
            time for time in self.alert_history.get(target_id, [])
            if time > hour_ago
        ]
        return len(recent_alerts) < self.max_alerts_per_hour

    def _update_alert_history(self, target_id: str) -> None:
        current_time = self.clock()
        hour_ago = current_time - timedelta(hours=1)

        history = self.alert_history.setdefault(target_id, [])
        history.append(current_time)

        # Clean up entries older than 1 hour
        self.alert_history[target_id] = [time for time in history if time > hour_ago]


class JsonLinesNotifier:
    """Appends one JSON object per event to a file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def emit_change(self, event: ChangeEvent) -> None:
        await self._append({"type": "change", **event.model_dump(mode="json")})

    async def emit_failure(self, failure: ObservationFailure) -> None:
        await self._append({"type": "failure", **failure.model_dump(mode="json")})

    async def _append(self, entry: dict) -> None:
        line = json.dumps(entry, ensure_ascii=False) + "\n"
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_line, line)
            except OSError as e:
                raise NotifierError(f"Failed to write event to {self.path}: {e}") from e

    def _write_line(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line)


class CompositeNotifier:
    """Delivers every event to all wrapped notifiers; one failing sink does not block the others."""

    def __init__(self, notifiers: Iterable[Notifier]):
        self.notifiers: List[Notifier] = list(notifiers)
        self.logger = logger.bind(component="composite_notifier")

    async def emit_change(self, event: ChangeEvent) -> None:
        await self._fan_out("emit_change", event, event.target_id)

    async def emit_failure(self, failure: ObservationFailure) -> None:
        await self._fan_out("emit_failure", failure, failure.target_id)

    async def _fan_out(self, method: str, payload, target_id: str) -> None:
        results = await asyncio.gather(
            *(getattr(notifier, method)(payload) for notifier in self.notifiers),
            return_exceptions=True
        )
        for notifier, result in zip(self.notifiers, results):
            if isinstance(result, Exception):
                self.logger.error(
                    "Notifier failed",
                    notifier=type(notifier).__name__,
                    method=method,
                    target_id=target_id,
                    error=str(result)
                )
