"""
OTP Codec

Numeric one-time codes for the mobile and email channels. Only keyed
HMAC-SHA256 hashes are ever stored; verification is constant-time.

Hashes can be bound to a context (the pending id and channel), so equal
codes never produce equal hashes across channels or entries.
"""

import hashlib
import hmac
import secrets

from app.core.config import settings


class OtpCodec:
    """Generate, hash and verify numeric OTPs."""

    def __init__(self, secret: str, length: int = 6, fixed_code: str | None = None):
        if length < 4:
            raise ValueError("OTP length must be at least 4 digits")
        self._secret = secret.encode()
        self.length = length
        self._fixed_code = fixed_code

    def generate(self) -> str:
        """Return a fresh zero-padded code (or the configured fixed dev code)."""
        if self._fixed_code:
            return self._fixed_code
        return str(secrets.randbelow(10**self.length)).zfill(self.length)

    def hash(self, code: str, context: str = "") -> str:
        message = f"{context}:{code.strip()}" if context else code.strip()
        return hmac.new(self._secret, message.encode(), hashlib.sha256).hexdigest()

    def verify(self, code: str, expected_hash: str | None, context: str = "") -> bool:
        if not code or not expected_hash:
            return False
        return hmac.compare_digest(self.hash(code, context), expected_hash)


def otp_context(pending_id: str, channel: str) -> str:
    return f"{pending_id}:{channel}"


def get_otp_codec() -> OtpCodec:
    fixed_code = settings.otp_fixed_code if not settings.is_production else None
    return OtpCodec(settings.otp_hash_secret, settings.otp_length, fixed_code)
