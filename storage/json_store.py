"""
JSON data file fingerprint store.

The whole store is one JSON object keyed by target id. It is loaded once,
served from memory, and rewritten atomically (temp file + rename) on every
write. A failed save rolls the in-memory entry back, so memory and disk
never disagree.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Union

import structlog
from pydantic import ValidationError

from patrol.errors import StoreError
from patrol.models import FingerprintRecord

logger = structlog.get_logger(__name__)


class JsonFileFingerprintStore:
    """Fingerprint store backed by a single JSON file."""

    def __init__(self, path: Union[str, Path]):
        """
        Initialize the store. Nothing is read until open().

        Args:
            path: Data file location
        """
        self.path = Path(path)
        self._records: Optional[Dict[str, FingerprintRecord]] = None
        self._save_lock = asyncio.Lock()
        self.logger = logger.bind(component="json_store", path=str(self.path))

    async def open(self) -> None:
        """
        Load the data file. A missing or empty file is an empty store.

        Raises:
            StoreError: if the file cannot be read or parsed
        """
        self._records = await asyncio.to_thread(self._load)
        self.logger.info("Fingerprint store loaded", records=len(self._records))

    async def close(self) -> None:
        self.logger.debug("Fingerprint store closed")

    async def read(self, target_id: str) -> Optional[FingerprintRecord]:
        return self._cache().get(target_id)

    async def read_all(self) -> Dict[str, FingerprintRecord]:
        return dict(self._cache())

    async def write(self, record: FingerprintRecord) -> None:
        """
        Persist a record.

        Raises:
            StoreError: if the file could not be replaced; the previous record stays in effect
        """
        async with self._save_lock:
            records = self._cache()
            previous = records.get(record.target_id)
            records[record.target_id] = record
            try:
                await asyncio.to_thread(self._save, dict(records))
            except (OSError, TypeError, ValueError) as e:
                self._restore(record.target_id, previous)
                raise StoreError(f"Failed to save {self.path}: {e}") from e

        self.logger.debug("Stored fingerprint record", target_id=record.target_id)

    async def delete(self, target_id: str) -> Optional[FingerprintRecord]:
        async with self._save_lock:
            records = self._cache()
            previous = records.pop(target_id, None)
            if previous is None:
                return None
            try:
                await asyncio.to_thread(self._save, dict(records))
            except (OSError, TypeError, ValueError) as e:
                self._restore(target_id, previous)
                raise StoreError(f"Failed to save {self.path}: {e}") from e

        self.logger.info("Deleted fingerprint record", target_id=target_id)
        return previous

    def _cache(self) -> Dict[str, FingerprintRecord]:
        if self._records is None:
            raise StoreError("Fingerprint store is not open")
        return self._records

    def _restore(self, target_id: str, previous: Optional[FingerprintRecord]) -> None:
        if previous is None:
            self._records.pop(target_id, None)
        else:
            self._records[target_id] = previous

    def _load(self) -> Dict[str, FingerprintRecord]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StoreError(f"Cannot read {self.path}: {e}") from e

        if not text.strip():
            return {}

        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise StoreError(f"Malformed data file {self.path}: {e}") from e

        if not isinstance(document, dict):
            raise StoreError(f"Malformed data file {self.path}: top level must be an object")

        records = {}
        for target_id, raw in document.items():
            try:
                records[target_id] = FingerprintRecord(**{**raw, "target_id": target_id})
            except (TypeError, ValidationError) as e:
                raise StoreError(f"Malformed record {target_id!r} in {self.path}: {e}") from e
        return records

    def _save(self, records: Dict[str, FingerprintRecord]) -> None:
        document = {
            target_id: record.model_dump(mode="json")
            for target_id, record in sorted(records.items())
        }
        payload = json.dumps(document, indent=2, ensure_ascii=False)

        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
