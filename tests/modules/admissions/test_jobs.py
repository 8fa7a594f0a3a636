"""
Unit tests for admissions background jobs.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.modules.admissions import jobs


def _session_maker(db):
    """Stand-in for async_session_maker yielding the given session."""
    session_cm = MagicMock()
    session_cm.__aenter__ = AsyncMock(return_value=db)
    session_cm.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=session_cm)


def _with_edit_request(admission, created_at):
    admission.edit_request = {
        "sections": ["personal"],
        "fields": [],
        "notes": "",
        "status": "pending",
        "created_at": created_at.isoformat(),
        "resolved_at": None,
    }
    return admission


class TestExpireEditRequests:
    """Tests for the edit request expiry job."""

    @pytest.mark.asyncio
    async def test_expires_only_stale_requests(self, mock_db, sample_admission):
        stale = _with_edit_request(sample_admission, datetime.now(UTC) - timedelta(hours=80))

        with (
            patch("app.modules.admissions.jobs.async_session_maker", _session_maker(mock_db)),
            patch(
                "app.modules.admissions.repository.get_open_edit_requests",
                new_callable=AsyncMock,
                return_value=[stale],
            ),
            patch(
                "app.modules.admissions.repository.mark_edit_request_expired",
                new_callable=AsyncMock,
                return_value=True,
            ) as mock_expire,
        ):
            result = await jobs.expire_edit_requests()

        assert result["total_processed"] == 1
        assert result["expired"] == [str(stale.id)]
        mock_expire.assert_called_once()

    @pytest.mark.asyncio
    async def test_fresh_requests_are_kept(self, mock_db, sample_admission):
        fresh = _with_edit_request(sample_admission, datetime.now(UTC) - timedelta(hours=1))

        with (
            patch("app.modules.admissions.jobs.async_session_maker", _session_maker(mock_db)),
            patch(
                "app.modules.admissions.repository.get_open_edit_requests",
                new_callable=AsyncMock,
                return_value=[fresh],
            ),
            patch(
                "app.modules.admissions.repository.mark_edit_request_expired",
                new_callable=AsyncMock,
            ) as mock_expire,
        ):
            result = await jobs.expire_edit_requests()

        assert result["total_processed"] == 0
        mock_expire.assert_not_called()

    @pytest.mark.asyncio
    async def test_errors_are_counted(self, mock_db, sample_admission):
        stale = _with_edit_request(sample_admission, datetime.now(UTC) - timedelta(days=5))

        with (
            patch("app.modules.admissions.jobs.async_session_maker", _session_maker(mock_db)),
            patch(
                "app.modules.admissions.repository.get_open_edit_requests",
                new_callable=AsyncMock,
                return_value=[stale],
            ),
            patch(
                "app.modules.admissions.repository.mark_edit_request_expired",
                new_callable=AsyncMock,
                side_effect=RuntimeError("db down"),
            ),
        ):
            result = await jobs.expire_edit_requests()

        assert result["total_errors"] == 1
        assert result["total_processed"] == 0


class TestReapPendingSubmissions:
    """Tests for the pending submission reaper job."""

    @pytest.mark.asyncio
    async def test_reports_removed_count(self):
        store = MagicMock()
        store.reap_expired = AsyncMock(return_value=3)

        with patch(
            "app.modules.admissions.jobs.get_pending_store",
            new_callable=AsyncMock,
            return_value=store,
        ):
            result = await jobs.reap_pending_submissions()

        assert result == {"total_removed": 3}


def test_parse_created_at():
    assert jobs._parse_created_at(None) is None
    assert jobs._parse_created_at("garbage") is None
    assert jobs._parse_created_at("2025-01-01T10:00:00").tzinfo is UTC


def test_register_admission_jobs():
    with patch("app.modules.admissions.jobs.register_job") as mock_register:
        jobs.register_admission_jobs()

    registered = [call.args[0] for call in mock_register.call_args_list]
    assert registered == [jobs.JOB_ID_REAP_PENDING, jobs.JOB_ID_EXPIRE_EDIT_REQUESTS]
