"""
Unit tests for the pending submission store.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from app.modules.admissions.exceptions import (
    ChannelOrderViolationError,
    FinalizationInProgressError,
    InvalidOtpError,
    OtpAttemptsExceededError,
    OtpExpiredError,
    PendingSubmissionNotFoundError,
)
from app.modules.admissions.otp import otp_context
from app.modules.admissions.pending_store import PendingSubmissionStore, _utcnow
from app.modules.admissions.schemas import OtpChannel, PendingStatus


def _sent_codes(otp_senders):
    """Plaintext codes handed to the SMS and email senders."""
    sms, mail = otp_senders
    return sms.call_args.args[1], mail.call_args.kwargs["otp"]


class TestCreate:
    """Tests for creating pending submissions."""

    @pytest.mark.asyncio
    async def test_two_independent_codes_and_hashes_only(
        self, pending_store, codec, memory_kv, otp_senders, sample_payload
    ):
        """The stored entry holds two different hashes and never the plaintext codes."""
        with patch.object(codec, "generate", side_effect=["111111", "222222"]):
            entry = await pending_store.create(
                sample_payload, "9820000002", "ravi@example.com", "Ravi Kumar"
            )

        assert entry.id.startswith("p_")
        assert entry.mobile_otp_hash != entry.email_otp_hash
        assert entry.mobile_otp_hash == codec.hash("111111", otp_context(entry.id, "mobile"))
        assert entry.email_otp_hash == codec.hash("222222", otp_context(entry.id, "email"))
        assert entry.mobile_otp_hash != codec.hash("111111")
        assert entry.expires_at - entry.created_at == timedelta(minutes=15)
        assert entry.status == PendingStatus.PENDING

        raw = await memory_kv.get(f"pending:{entry.id}")
        assert "111111" not in raw
        assert "222222" not in raw

        sms_code, email_code = _sent_codes(otp_senders)
        assert sms_code == "111111"
        assert email_code == "222222"

    @pytest.mark.asyncio
    async def test_equal_codes_hash_differently_per_channel_and_entry(
        self, pending_store, codec, otp_senders, sample_payload
    ):
        """Hashes are bound to the pending id and channel, so equal codes do not collide."""
        with patch.object(codec, "generate", return_value="123456"):
            first = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")
            second = await pending_store.create(sample_payload, "9820000003", "asha@example.com")

        hashes = {
            first.mobile_otp_hash,
            first.email_otp_hash,
            second.mobile_otp_hash,
            second.email_otp_hash,
        }
        assert len(hashes) == 4

        await pending_store.verify(first.id, "123456", OtpChannel.MOBILE, AsyncMock())
        assert (await pending_store.get(first.id)).mobile_verified is True

    @pytest.mark.asyncio
    async def test_dispatch_failure_still_returns_entry(self, pending_store, otp_senders, sample_payload):
        sms, mail = otp_senders
        sms.return_value = False
        mail.return_value = False

        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")

        assert await pending_store.get(entry.id) is not None


class TestVerify:
    """Tests for OTP verification and finalization."""

    @pytest.mark.asyncio
    async def test_email_before_mobile_is_rejected(
        self, pending_store, otp_senders, sample_payload, finalized
    ):
        """Email OTP is refused until mobile is verified; nothing is finalized."""
        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")
        _, email_code = _sent_codes(otp_senders)
        finalize = AsyncMock(return_value=finalized)

        with pytest.raises(ChannelOrderViolationError):
            await pending_store.verify(entry.id, email_code, OtpChannel.EMAIL, finalize)

        finalize.assert_not_called()
        stored = await pending_store.get(entry.id)
        assert stored.email_verified is False
        assert stored.status == PendingStatus.PENDING

    @pytest.mark.asyncio
    async def test_full_flow_finalizes_once(self, pending_store, otp_senders, sample_payload, finalized):
        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")
        mobile_code, email_code = _sent_codes(otp_senders)
        finalize = AsyncMock(return_value=finalized)

        mobile = await pending_store.verify(entry.id, mobile_code, OtpChannel.MOBILE, finalize)
        assert mobile.step == "mobile-verified"
        assert mobile.next == "email"

        result = await pending_store.verify(entry.id, email_code, OtpChannel.EMAIL, finalize)

        assert result.step == "completed"
        assert result.id == finalized.admission_id
        assert result.pdf_url == finalized.primary_pdf_url
        finalize.assert_called_once()

        claimed = finalize.call_args.args[0]
        assert claimed.status == PendingStatus.FINALIZING
        assert claimed.payload == sample_payload

    @pytest.mark.asyncio
    async def test_finalized_entry_is_a_tombstone(
        self, pending_store, otp_senders, sample_payload, finalized
    ):
        """After finalization the draft and OTP hashes are gone."""
        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")
        mobile_code, email_code = _sent_codes(otp_senders)
        finalize = AsyncMock(return_value=finalized)

        await pending_store.verify(entry.id, mobile_code, OtpChannel.MOBILE, finalize)
        await pending_store.verify(entry.id, email_code, OtpChannel.EMAIL, finalize)

        stored = await pending_store.get(entry.id)
        assert stored.status == PendingStatus.FINALIZED
        assert stored.payload is None
        assert stored.mobile_otp_hash is None
        assert stored.email_otp_hash is None
        assert stored.final_admission_id == finalized.admission_id

    @pytest.mark.asyncio
    async def test_reverify_after_completion_is_idempotent(
        self, pending_store, otp_senders, sample_payload, finalized
    ):
        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")
        mobile_code, email_code = _sent_codes(otp_senders)
        finalize = AsyncMock(return_value=finalized)

        await pending_store.verify(entry.id, mobile_code, OtpChannel.MOBILE, finalize)
        first = await pending_store.verify(entry.id, email_code, OtpChannel.EMAIL, finalize)
        second = await pending_store.verify(entry.id, email_code, OtpChannel.EMAIL, finalize)

        assert second == first
        finalize.assert_called_once()

    @pytest.mark.asyncio
    async def test_mobile_reverify_is_idempotent(self, pending_store, otp_senders, sample_payload):
        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")
        mobile_code, _ = _sent_codes(otp_senders)
        finalize = AsyncMock()

        await pending_store.verify(entry.id, mobile_code, OtpChannel.MOBILE, finalize)
        again = await pending_store.verify(entry.id, "000000", OtpChannel.MOBILE, finalize)

        assert again.step == "mobile-verified"
        stored = await pending_store.get(entry.id)
        assert stored.attempts == 0

    @pytest.mark.asyncio
    async def test_concurrent_email_verifications_finalize_exactly_once(
        self, pending_store, otp_senders, sample_payload, finalized
    ):
        """Two simultaneous correct email verifications produce one admission."""
        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")
        mobile_code, email_code = _sent_codes(otp_senders)

        async def slow_finalize(claimed):
            await asyncio.sleep(0)
            return finalized

        finalize = AsyncMock(side_effect=slow_finalize)
        await pending_store.verify(entry.id, mobile_code, OtpChannel.MOBILE, finalize)

        results = await asyncio.gather(
            pending_store.verify(entry.id, email_code, OtpChannel.EMAIL, finalize),
            pending_store.verify(entry.id, email_code, OtpChannel.EMAIL, finalize),
            return_exceptions=True,
        )

        finalize.assert_called_once()
        completed = [r for r in results if not isinstance(r, Exception)]
        in_progress = [r for r in results if isinstance(r, FinalizationInProgressError)]
        assert len(completed) == 1
        assert len(in_progress) == 1
        assert completed[0].id == finalized.admission_id

    @pytest.mark.asyncio
    async def test_finalization_failure_releases_claim(
        self, pending_store, otp_senders, sample_payload, finalized
    ):
        """A failed finalization leaves the entry retryable."""
        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")
        mobile_code, email_code = _sent_codes(otp_senders)
        await pending_store.verify(entry.id, mobile_code, OtpChannel.MOBILE, AsyncMock())

        failing = AsyncMock(side_effect=RuntimeError("storage down"))
        with pytest.raises(RuntimeError):
            await pending_store.verify(entry.id, email_code, OtpChannel.EMAIL, failing)

        stored = await pending_store.get(entry.id)
        assert stored.status == PendingStatus.PENDING
        assert stored.email_verified is False
        assert stored.payload == sample_payload

        finalize = AsyncMock(return_value=finalized)
        result = await pending_store.verify(entry.id, email_code, OtpChannel.EMAIL, finalize)
        assert result.step == "completed"

    @pytest.mark.asyncio
    async def test_wrong_code_counts_attempt(self, pending_store, sample_payload):
        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")

        with pytest.raises(InvalidOtpError) as exc_info:
            await pending_store.verify(entry.id, "999999x", OtpChannel.MOBILE, AsyncMock())

        assert exc_info.value.channel == "mobile"
        assert exc_info.value.attempts_left == 4
        stored = await pending_store.get(entry.id)
        assert stored.attempts == 1

    @pytest.mark.asyncio
    async def test_attempts_exhausted_deletes_entry(self, pending_store, sample_payload):
        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")

        for _ in range(5):
            with pytest.raises(InvalidOtpError):
                await pending_store.verify(entry.id, "wrong", OtpChannel.MOBILE, AsyncMock())

        with pytest.raises(OtpAttemptsExceededError):
            await pending_store.verify(entry.id, "wrong", OtpChannel.MOBILE, AsyncMock())

        assert await pending_store.get(entry.id) is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_rejected_and_removed(self, pending_store, otp_senders, sample_payload):
        entry = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")
        mobile_code, _ = _sent_codes(otp_senders)
        later = _utcnow() + timedelta(minutes=16)

        with patch("app.modules.admissions.pending_store._utcnow", return_value=later):
            with pytest.raises(OtpExpiredError):
                await pending_store.verify(entry.id, mobile_code, OtpChannel.MOBILE, AsyncMock())

        assert await pending_store.get(entry.id) is None

    @pytest.mark.asyncio
    async def test_unknown_pending_id(self, pending_store):
        with pytest.raises(PendingSubmissionNotFoundError):
            await pending_store.verify("p_missing", "123456", OtpChannel.MOBILE, AsyncMock())

    @pytest.mark.asyncio
    async def test_master_code_accepted(self, memory_kv, codec, otp_senders, sample_payload, finalized):
        store = PendingSubmissionStore(memory_kv, codec, master_code="999000")
        entry = await store.create(sample_payload, "9820000002", "ravi@example.com")
        finalize = AsyncMock(return_value=finalized)

        await store.verify(entry.id, "999000", OtpChannel.MOBILE, finalize)
        result = await store.verify(entry.id, "999000", OtpChannel.EMAIL, finalize)

        assert result.step == "completed"


class TestReapExpired:
    """Tests for removing stale pending submissions."""

    @pytest.mark.asyncio
    async def test_removes_only_expired_entries(self, pending_store, sample_payload):
        stale = await pending_store.create(sample_payload, "9820000002", "ravi@example.com")
        later = _utcnow() + timedelta(minutes=16)

        with patch("app.modules.admissions.pending_store._utcnow", return_value=later):
            fresh = await pending_store.create(sample_payload, "9820000003", "asha@example.com")
            removed = await pending_store.reap_expired()

        assert removed == 1
        assert await pending_store.get(stale.id) is None
        assert await pending_store.get(fresh.id) is not None
