"""
Pending Submission Store

Holds intake drafts between form submission and OTP verification.

Flow:
1. create() issues an opaque pending id and two independent OTPs (mobile,
   email), stores only their HMAC hashes (each bound to the pending id and
   channel) and dispatches the codes.
2. verify(channel=mobile) marks the mobile channel verified.
3. verify(channel=email) is only accepted after mobile. A correct code
   claims the entry (pending -> finalizing) with a compare-and-swap so that
   exactly one caller runs finalization.
4. On success the entry becomes a finalized tombstone holding only the
   admission id and PDF URL until the original expiry. Re-verifying
   returns the same result.

Every flag change is a compare-and-swap against the exact stored JSON, so
concurrent verifications never overwrite each other.
"""

import logging
import secrets
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from app.core.config import settings
from app.core.email import send_otp_email
from app.core.kv import KeyValueStore, get_kv_store
from app.core.sms import send_otp_sms
from app.modules.admissions.exceptions import (
    AdmissionBusyError,
    ChannelOrderViolationError,
    FinalizationInProgressError,
    InvalidOtpError,
    OtpAttemptsExceededError,
    OtpExpiredError,
    PendingSubmissionNotFoundError,
)
from app.modules.admissions.otp import OtpCodec, get_otp_codec, otp_context
from app.modules.admissions.schemas import (
    FinalizedSubmission,
    OtpChannel,
    PendingStatus,
    PendingSubmission,
    VerifyResponse,
)

logger = logging.getLogger(__name__)

PENDING_KEY_PREFIX = "pending:"

# Re-read attempts when a concurrent writer changes the entry mid-verify
MAX_SWAP_RETRIES = 5

FinalizeFunc = Callable[[PendingSubmission], Awaitable[FinalizedSubmission]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _key(pending_id: str) -> str:
    return f"{PENDING_KEY_PREFIX}{pending_id}"


def _completed(entry: PendingSubmission) -> VerifyResponse:
    return VerifyResponse(
        step="completed",
        id=entry.final_admission_id,
        pdf_url=entry.primary_pdf_url,
    )


class PendingSubmissionStore:
    """OTP-gated ledger of drafts awaiting verification."""

    def __init__(
        self,
        kv: KeyValueStore,
        codec: OtpCodec,
        ttl_minutes: int = 15,
        max_attempts: int = 5,
        master_code: str | None = None,
    ):
        self.kv = kv
        self.codec = codec
        self.ttl = timedelta(minutes=ttl_minutes)
        self.max_attempts = max_attempts
        self._master_code = master_code

    def _ttl_seconds(self, entry: PendingSubmission) -> int:
        return max(1, int((entry.expires_at - _utcnow()).total_seconds()))

    async def get(self, pending_id: str) -> PendingSubmission | None:
        raw = await self.kv.get(_key(pending_id))
        if raw is None:
            return None
        return PendingSubmission.model_validate_json(raw)

    async def create(
        self,
        payload: dict[str, Any],
        mobile: str,
        email: str,
        student_name: str = "",
    ) -> PendingSubmission:
        """
        Store a draft and send both OTPs.

        Dispatch is best-effort: a failed SMS or email is logged and the
        entry is still returned so the student can ask for help.
        """
        now = _utcnow()
        mobile_otp = self.codec.generate()
        email_otp = self.codec.generate()

        pending_id = f"p_{secrets.token_urlsafe(16)}"

        entry = PendingSubmission(
            id=pending_id,
            payload=payload,
            mobile=mobile,
            email=email,
            mobile_otp_hash=self.codec.hash(mobile_otp, otp_context(pending_id, OtpChannel.MOBILE.value)),
            email_otp_hash=self.codec.hash(email_otp, otp_context(pending_id, OtpChannel.EMAIL.value)),
            created_at=now,
            expires_at=now + self.ttl,
        )
        await self.kv.set(_key(entry.id), entry.model_dump_json(), self._ttl_seconds(entry))
        logger.info(f"Pending submission {entry.id} created, expires at {entry.expires_at.isoformat()}")

        if settings.is_development and settings.sms_dummy:
            logger.info(f"[DEV] OTPs for {entry.id}: mobile={mobile_otp} email={email_otp}")

        sms_sent = await send_otp_sms(mobile, mobile_otp)
        if not sms_sent:
            logger.error(f"Mobile OTP could not be sent for pending submission {entry.id}")

        email_sent = await send_otp_email(
            to_email=email,
            student_name=student_name or "Student",
            otp=email_otp,
            ttl_minutes=int(self.ttl.total_seconds() // 60),
        )
        if not email_sent:
            logger.error(f"Email OTP could not be sent for pending submission {entry.id}")

        return entry

    def _matches(self, entry: PendingSubmission, channel: OtpChannel, otp: str) -> bool:
        if self._master_code and secrets.compare_digest(otp.strip(), self._master_code):
            logger.warning("OTP accepted via master override code")
            return True
        expected_hash = entry.mobile_otp_hash if channel == OtpChannel.MOBILE else entry.email_otp_hash
        return self.codec.verify(otp, expected_hash, otp_context(entry.id, channel.value))

    async def _record_failure(self, raw: str, entry: PendingSubmission) -> bool:
        """Increment the attempt counter. Returns False if the entry changed underneath."""
        failed = entry.model_copy(update={"attempts": entry.attempts + 1})
        return await self.kv.compare_and_swap(_key(entry.id), raw, failed.model_dump_json())

    async def verify(
        self,
        pending_id: str,
        otp: str,
        channel: OtpChannel,
        finalize: FinalizeFunc,
    ) -> VerifyResponse:
        """
        Verify one OTP channel.

        Raises:
            PendingSubmissionNotFoundError: Unknown or reaped id
            OtpExpiredError: The entry is past its expiry (entry is deleted)
            OtpAttemptsExceededError: Too many wrong codes (entry is deleted)
            ChannelOrderViolationError: Email verified before mobile
            InvalidOtpError: Wrong code (attempt counted)
            FinalizationInProgressError: Another request is finalizing this entry
        """
        key = _key(pending_id)

        for _ in range(MAX_SWAP_RETRIES):
            raw = await self.kv.get(key)
            if raw is None:
                raise PendingSubmissionNotFoundError()
            entry = PendingSubmission.model_validate_json(raw)

            if entry.status == PendingStatus.FINALIZED:
                return _completed(entry)

            if _utcnow() > entry.expires_at:
                await self.kv.delete(key)
                logger.info(f"Pending submission {pending_id} expired")
                raise OtpExpiredError()

            if entry.status == PendingStatus.FINALIZING:
                raise FinalizationInProgressError()

            if entry.attempts >= self.max_attempts:
                await self.kv.delete(key)
                logger.warning(f"Pending submission {pending_id} exceeded OTP attempts")
                raise OtpAttemptsExceededError()

            if channel == OtpChannel.MOBILE:
                if entry.mobile_verified:
                    return VerifyResponse(step="mobile-verified", next="email")

                if not self._matches(entry, OtpChannel.MOBILE, otp):
                    if not await self._record_failure(raw, entry):
                        continue
                    raise InvalidOtpError("mobile", self.max_attempts - entry.attempts - 1)

                verified = entry.model_copy(update={"mobile_verified": True})
                if not await self.kv.compare_and_swap(key, raw, verified.model_dump_json()):
                    continue
                logger.info(f"Mobile verified for pending submission {pending_id}")
                return VerifyResponse(step="mobile-verified", next="email")

            # Email channel
            if not entry.mobile_verified:
                raise ChannelOrderViolationError()

            if not self._matches(entry, OtpChannel.EMAIL, otp):
                if not await self._record_failure(raw, entry):
                    continue
                raise InvalidOtpError("email", self.max_attempts - entry.attempts - 1)

            claimed = entry.model_copy(
                update={"email_verified": True, "status": PendingStatus.FINALIZING}
            )
            claimed_raw = claimed.model_dump_json()
            if not await self.kv.compare_and_swap(key, raw, claimed_raw):
                continue

            return await self._finalize(key, raw, claimed, claimed_raw, finalize)

        raise AdmissionBusyError()

    async def _finalize(
        self,
        key: str,
        original_raw: str,
        claimed: PendingSubmission,
        claimed_raw: str,
        finalize: FinalizeFunc,
    ) -> VerifyResponse:
        try:
            result = await finalize(claimed)
        except Exception:
            # Release the claim so the student can retry the email code
            if not await self.kv.compare_and_swap(key, claimed_raw, original_raw):
                logger.warning(f"Could not release finalization claim on {claimed.id}")
            raise

        tombstone = claimed.model_copy(
            update={
                "status": PendingStatus.FINALIZED,
                "payload": None,
                "mobile_otp_hash": None,
                "email_otp_hash": None,
                "final_admission_id": result.admission_id,
                "primary_pdf_url": result.primary_pdf_url,
            }
        )
        if not await self.kv.compare_and_swap(key, claimed_raw, tombstone.model_dump_json()):
            logger.warning(f"Pending submission {claimed.id} vanished during finalization")

        logger.info(f"Pending submission {claimed.id} finalized as admission {result.admission_id}")
        return _completed(tombstone)

    async def reap_expired(self) -> int:
        """
        Delete entries past their expiry. Entries being finalized are left
        alone. Returns the number removed.
        """
        removed = await self.kv.purge_expired()
        now = _utcnow()

        for key in await self.kv.keys(PENDING_KEY_PREFIX):
            raw = await self.kv.get(key)
            if raw is None:
                continue
            entry = PendingSubmission.model_validate_json(raw)
            if entry.status == PendingStatus.FINALIZING or now <= entry.expires_at:
                continue
            if await self.kv.delete(key):
                removed += 1

        return removed


async def get_pending_store() -> PendingSubmissionStore:
    kv = await get_kv_store()
    return PendingSubmissionStore(
        kv=kv,
        codec=get_otp_codec(),
        ttl_minutes=settings.otp_ttl_minutes,
        max_attempts=settings.otp_max_attempts,
        master_code=settings.otp_master_code,
    )
