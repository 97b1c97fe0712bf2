"""Tests for delivery status reconciliation."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from wagate.domain.status import apply_status, is_advance, status_rank
from wagate.errors import MessageNotFound

TS = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestRank:
    @pytest.mark.parametrize(
        "current,new,expected",
        [
            ("sent", "delivered", True),
            ("delivered", "read", True),
            ("read", "failed", True),
            ("read", "delivered", False),
            ("delivered", "delivered", False),
            ("failed", "read", False),
            ("received", "sent", True),
            (None, "sent", True),
        ],
    )
    def test_is_advance(self, current, new, expected):
        assert is_advance(current, new) is expected

    def test_unknown_ranks_zero(self):
        assert status_rank("queued") == 0


@patch("wagate.domain.status.messages_repository")
class TestApplyStatus:
    def test_advance_updates_row(self, repo):
        repo.lock_by_provider_id.return_value = (7, "sent")
        cur = MagicMock()

        assert apply_status(cur, account_id="acc-1", provider_message_id="wamid.1", status="read", timestamp=TS)

        repo.update_status.assert_called_once_with(
            cur, 7, status="read", status_at=TS, error_code=None, error_message=None
        )

    def test_regression_is_ignored(self, repo):
        repo.lock_by_provider_id.return_value = (7, "read")

        applied = apply_status(
            MagicMock(), account_id="acc-1", provider_message_id="wamid.1", status="delivered", timestamp=TS
        )

        assert applied is False
        repo.update_status.assert_not_called()

    def test_duplicate_is_ignored(self, repo):
        repo.lock_by_provider_id.return_value = (7, "delivered")

        assert not apply_status(
            MagicMock(), account_id="acc-1", provider_message_id="wamid.1", status="delivered", timestamp=TS
        )

    def test_failed_records_error(self, repo):
        repo.lock_by_provider_id.return_value = (7, "sent")

        apply_status(
            MagicMock(),
            account_id="acc-1",
            provider_message_id="wamid.1",
            status="failed",
            timestamp=TS,
            error_code=131047,
            error_message="Re-engagement message",
        )

        kwargs = repo.update_status.call_args[1]
        assert kwargs["error_code"] == 131047
        assert kwargs["error_message"] == "Re-engagement message"

    def test_errors_ignored_for_non_failed(self, repo):
        repo.lock_by_provider_id.return_value = (7, "sent")

        apply_status(
            MagicMock(),
            account_id="acc-1",
            provider_message_id="wamid.1",
            status="delivered",
            timestamp=TS,
            error_code=1,
            error_message="x",
        )

        assert repo.update_status.call_args[1]["error_code"] is None

    def test_unknown_message(self, repo):
        repo.lock_by_provider_id.return_value = None

        with pytest.raises(MessageNotFound):
            apply_status(
                MagicMock(), account_id="acc-1", provider_message_id="wamid.X", status="read", timestamp=TS
            )

    def test_unknown_status_rejected(self, repo):
        with pytest.raises(ValueError):
            apply_status(
                MagicMock(), account_id="acc-1", provider_message_id="wamid.1", status="queued", timestamp=TS
            )
        repo.lock_by_provider_id.assert_not_called()
