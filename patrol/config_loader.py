"""
Target list loading.

Reads the TOML target file into an immutable list of validated Target
objects. Two layouts are accepted:

    [example]                      # table key is the target id
    url = "https://example.com/"
    selector = "main"
    mode = "full"
    wait_seconds = 2
    interval_minutes = 5

    [[targets]]                    # id defaults to the URL
    url = "https://example.org/news"
"""

import math
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from patrol.errors import ConfigurationError
from patrol.models import MAX_INTERVAL_SECONDS, RenderMode, Target, WaitPolicy

logger = structlog.get_logger(__name__)


class TargetConfig(BaseModel):
    """One target entry as written in the configuration file."""
    id: Optional[str] = Field(default=None, min_length=1)
    url: str
    selector: str = Field(default="body", min_length=1)
    mode: RenderMode = Field(default=RenderMode.FULL)
    wait_seconds: Optional[float] = Field(default=None, ge=0)
    interval_minutes: Optional[float] = Field(default=None)

    model_config = {"extra": "forbid"}

    def to_target(self, target_id: str, default_interval_minutes: float) -> Target:
        interval_minutes = self.interval_minutes if self.interval_minutes is not None else default_interval_minutes
        if not math.isfinite(interval_minutes) or interval_minutes <= 0:
            raise ConfigurationError(f"[{target_id}]: interval must be positive and finite, got {interval_minutes}")
        if interval_minutes * 60 > MAX_INTERVAL_SECONDS:
            raise ConfigurationError(
                f"[{target_id}]: interval of {interval_minutes} minutes exceeds {MAX_INTERVAL_SECONDS // 60} minutes"
            )

        return Target(
            target_id=target_id,
            url=self.url,
            mode=self.mode,
            wait=WaitPolicy(selector=self.selector, wait_seconds=self.wait_seconds),
            interval_seconds=interval_minutes * 60
        )


def load_targets(path: Union[str, Path], default_interval_minutes: float = 1.0) -> List[Target]:
    """
    Load and validate the target list.

    Args:
        path: TOML configuration file
        default_interval_minutes: Interval for targets that do not set one

    Returns:
        Targets in file order

    Raises:
        ConfigurationError: if the file is unreadable or any entry is invalid
    """
    path = Path(path)
    try:
        with open(path, "rb") as f:
            document = tomllib.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e

    targets = parse_targets(document, default_interval_minutes)

    logger.info("Loaded target configuration", path=str(path), targets=len(targets))
    return targets


def parse_targets(document: Dict[str, Any], default_interval_minutes: float = 1.0) -> List[Target]:
    """Build targets from an already-parsed TOML document."""
    if not math.isfinite(default_interval_minutes) or default_interval_minutes <= 0:
        raise ConfigurationError("Default interval must be positive and finite")

    entries = []
    for key, value in document.items():
        if key == "targets" and isinstance(value, list):
            for item in value:
                entries.append((None, item))
        elif isinstance(value, dict):
            entries.append((key, value))
        else:
            raise ConfigurationError(f"Unexpected top-level entry: {key!r}")

    if not entries:
        raise ConfigurationError("No targets configured")

    targets: List[Target] = []
    seen = set()
    for key, raw in entries:
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Target entry must be a table, got {type(raw).__name__}")
        try:
            entry = TargetConfig(**raw)
            target_id = key or entry.id or entry.url
            target = entry.to_target(target_id, default_interval_minutes)
        except ValidationError as e:
            label = key or raw.get("id") or raw.get("url") or "<unnamed>"
            raise ConfigurationError(f"[{label}]: invalid target: {e}") from e

        if target.target_id in seen:
            raise ConfigurationError(f"Duplicate target id: {target.target_id}")
        seen.add(target.target_id)
        targets.append(target)

    return targets
