"""
Capability boundaries the patrol engine depends on.

Concrete adapters live in the renderer, storage, api packages and in
patrol.alerting; they are injected at process startup.
"""

from typing import Dict, Optional, Protocol, runtime_checkable

from patrol.models import ChangeEvent, FingerprintRecord, ObservationFailure, Target


@runtime_checkable
class PageRenderer(Protocol):
    """Renders a target's page and returns its observed text."""

    async def fetch(self, target: Target) -> str:
        """
        Render the target's URL honouring its wait policy.

        Raises:
            FetchError: one of its classified subclasses on failure
        """
        ...


@runtime_checkable
class FingerprintStore(Protocol):
    """Durable mapping of target identifier to its last fingerprint record."""

    async def read(self, target_id: str) -> Optional[FingerprintRecord]:
        """Return the record, or None when the target was never observed. Raises StoreError."""
        ...

    async def write(self, record: FingerprintRecord) -> None:
        """Persist the record atomically. Raises StoreError."""
        ...

    async def read_all(self) -> Dict[str, FingerprintRecord]:
        ...

    async def delete(self, target_id: str) -> Optional[FingerprintRecord]:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Delivers change events and observation failures."""

    async def emit_change(self, event: ChangeEvent) -> None:
        ...

    async def emit_failure(self, failure: ObservationFailure) -> None:
        ...
