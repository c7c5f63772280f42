"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from patrol.errors import StoreError
from patrol.models import ChangeEvent, FingerprintRecord, ObservationFailure, RenderMode, Target, WaitPolicy

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class ScriptedRenderer:
    """Renderer returning scripted content (or raising scripted errors) per target."""

    def __init__(self, script: Optional[Dict[str, list]] = None):
        self.script = {key: list(value) for key, value in (script or {}).items()}
        self.calls: List[str] = []

    def push(self, target_id: str, *outcomes) -> None:
        self.script.setdefault(target_id, []).extend(outcomes)

    async def fetch(self, target: Target) -> str:
        self.calls.append(target.target_id)
        outcomes = self.script.get(target.target_id)
        if not outcomes:
            raise AssertionError(f"No scripted outcome left for {target.target_id}")
        outcome = outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class InMemoryStore:
    """Fingerprint store held in a dict, with switchable failures."""

    def __init__(self, journal: Optional[list] = None):
        self.records: Dict[str, FingerprintRecord] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.writes: List[FingerprintRecord] = []
        self.journal = journal if journal is not None else []

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def read(self, target_id: str) -> Optional[FingerprintRecord]:
        if self.fail_reads:
            raise StoreError("read unavailable")
        return self.records.get(target_id)

    async def read_all(self) -> Dict[str, FingerprintRecord]:
        if self.fail_reads:
            raise StoreError("read unavailable")
        return dict(self.records)

    async def write(self, record: FingerprintRecord) -> None:
        if self.fail_writes:
            raise StoreError("disk full")
        self.records[record.target_id] = record
        self.writes.append(record)
        self.journal.append(("write", record.target_id, record.fingerprint))

    async def delete(self, target_id: str) -> Optional[FingerprintRecord]:
        return self.records.pop(target_id, None)


class RecordingNotifier:
    """Notifier remembering every event it receives."""

    def __init__(self, journal: Optional[list] = None):
        self.changes: List[ChangeEvent] = []
        self.failures: List[ObservationFailure] = []
        self.journal = journal if journal is not None else []
        self.fail = False

    async def emit_change(self, event: ChangeEvent) -> None:
        self.journal.append(("change", event.target_id, event.new_fingerprint))
        if self.fail:
            raise RuntimeError("notifier down")
        self.changes.append(event)

    async def emit_failure(self, failure: ObservationFailure) -> None:
        self.journal.append(("failure", failure.target_id, failure.kind.value))
        if self.fail:
            raise RuntimeError("notifier down")
        self.failures.append(failure)


def make_target(
    target_id: str = "example",
    url: str = "https://example.com/",
    selector: str = "body",
    mode: RenderMode = RenderMode.FULL,
    interval_seconds: float = 60.0,
    wait_seconds: Optional[float] = None
) -> Target:
    return Target(
        target_id=target_id,
        url=url,
        mode=mode,
        wait=WaitPolicy(selector=selector, wait_seconds=wait_seconds),
        interval_seconds=interval_seconds
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def journal():
    return []


@pytest.fixture
def in_memory_store(journal):
    return InMemoryStore(journal)


@pytest.fixture
def recording_notifier(journal):
    return RecordingNotifier(journal)


@pytest.fixture
def scripted_renderer():
    return ScriptedRenderer()


@pytest.fixture
def sample_target():
    return make_target()


@pytest.fixture
def sample_html_content():
    """Sample HTML content for testing."""
    return """
    <html>
        <head><title>Release notes</title></head>
        <body>
            <main>
                <h1>Release notes</h1>
                <p class="entry">  Version 1.2 released  </p>
                <p class="entry">Version 1.1 released</p>
                <p class="entry">   </p>
            </main>
            <footer>Rendered at 12:00:01</footer>
        </body>
    </html>
    """
