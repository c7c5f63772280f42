"""
Test cases for patrol models.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from conftest import T0, make_target
from patrol.models import (
    ChangeEvent, CycleResult, CycleState, FingerprintRecord, RenderMode, Target, WaitPolicy
)

HASH_A = "a" * 64
HASH_B = "b" * 64


class TestTarget:
    """Test cases for Target model."""

    def test_valid_target(self):
        target = make_target(interval_seconds=90)

        assert target.mode == RenderMode.FULL
        assert target.wait.selector == "body"
        assert target.interval == timedelta(seconds=90)
        assert target.url_str == "https://example.com/"

    def test_target_is_immutable(self):
        target = make_target()
        with pytest.raises(ValidationError):
            target.interval_seconds = 5

    @pytest.mark.parametrize("interval", [0, -1])
    def test_interval_must_be_positive(self, interval):
        with pytest.raises(ValidationError):
            make_target(interval_seconds=interval)

    @pytest.mark.parametrize("interval", [float("inf"), float("nan"), 1e12])
    def test_interval_must_be_finite_and_bounded(self, interval):
        with pytest.raises(ValidationError):
            make_target(interval_seconds=interval)

    def test_invalid_url(self):
        with pytest.raises(ValidationError):
            Target(target_id="x", url="not a url", interval_seconds=60)

    def test_empty_selector_rejected(self):
        with pytest.raises(ValidationError):
            WaitPolicy(selector="")

    def test_negative_wait_rejected(self):
        with pytest.raises(ValidationError):
            WaitPolicy(wait_seconds=-1)


class TestFingerprintRecord:
    """Test cases for FingerprintRecord model."""

    def test_valid_record(self):
        record = FingerprintRecord(
            target_id="example",
            url="https://example.com/",
            fingerprint=HASH_A,
            last_checked_at=T0
        )
        assert record.last_changed_at is None

    @pytest.mark.parametrize("fingerprint", ["abc", "A" * 64, "g" * 64])
    def test_fingerprint_must_be_sha256_hex(self, fingerprint):
        with pytest.raises(ValidationError):
            FingerprintRecord(
                target_id="example",
                url="https://example.com/",
                fingerprint=fingerprint,
                last_checked_at=T0
            )


class TestChangeEvent:
    """Test cases for ChangeEvent model."""

    def test_event_ids_are_unique(self):
        kwargs = dict(
            target_id="example",
            url="https://example.com/",
            previous_fingerprint=HASH_A,
            new_fingerprint=HASH_B,
            detected_at=T0
        )
        assert ChangeEvent(**kwargs).event_id != ChangeEvent(**kwargs).event_id


class TestCycleResult:
    """Test cases for CycleResult model."""

    def test_duration_and_success(self):
        result = CycleResult(
            target_id="example",
            state=CycleState.SUCCEEDED,
            started_at=T0,
            finished_at=T0 + timedelta(seconds=2.5)
        )
        assert result.duration_seconds == 2.5
        assert result.succeeded is True

    def test_failed_result(self):
        result = CycleResult(target_id="example", state=CycleState.FAILED, started_at=T0, finished_at=T0)
        assert result.succeeded is False
