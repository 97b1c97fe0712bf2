"""Tests for time utilities."""

from datetime import datetime, timezone

import pytest

from wagate.infra.time import from_unix_timestamp, utc_now


class TestUtcNow:
    """Tests for utc_now()."""

    def test_returns_utc_datetime(self):
        now = utc_now()
        assert now.tzinfo == timezone.utc

    def test_returns_current_time(self):
        before = datetime.now(timezone.utc)
        now = utc_now()
        after = datetime.now(timezone.utc)

        assert before <= now <= after


class TestFromUnixTimestamp:
    def test_numeric_string(self):
        assert from_unix_timestamp("1767225600") == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_int(self):
        assert from_unix_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", "abc", "-5", "1.5", True, -1])
    def test_rejects_non_timestamps(self, value):
        with pytest.raises(ValueError):
            from_unix_timestamp(value)
