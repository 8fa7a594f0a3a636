"""
Unit tests for the OTP codec.
"""

import pytest

from app.modules.admissions.otp import OtpCodec, otp_context


class TestGenerate:
    """Tests for OTP generation."""

    def test_generates_six_digits(self, codec):
        """Codes are zero-padded numeric strings of the configured length."""
        for _ in range(50):
            code = codec.generate()
            assert len(code) == 6
            assert code.isdigit()

    def test_codes_vary(self, codec):
        """Independent generations are not all identical."""
        codes = {codec.generate() for _ in range(20)}
        assert len(codes) > 1

    def test_fixed_code_is_used_when_configured(self):
        """A fixed development code replaces random generation."""
        codec = OtpCodec(secret="s", length=6, fixed_code="123456")
        assert codec.generate() == "123456"

    def test_rejects_short_length(self):
        with pytest.raises(ValueError):
            OtpCodec(secret="s", length=3)


class TestHashAndVerify:
    """Tests for keyed hashing and verification."""

    def test_hash_is_hex_sha256(self, codec):
        digest = codec.hash("123456")
        assert len(digest) == 64
        int(digest, 16)

    def test_hash_is_deterministic(self, codec):
        assert codec.hash("123456") == codec.hash("123456")

    def test_hash_depends_on_secret(self, codec):
        other = OtpCodec(secret="another-secret")
        assert codec.hash("123456") != other.hash("123456")

    def test_hash_never_contains_code(self, codec):
        assert "654321" not in codec.hash("654321")

    def test_verify_accepts_matching_code(self, codec):
        assert codec.verify("123456", codec.hash("123456")) is True

    def test_verify_ignores_surrounding_whitespace(self, codec):
        assert codec.verify(" 123456 ", codec.hash("123456")) is True

    def test_verify_rejects_wrong_code(self, codec):
        assert codec.verify("000000", codec.hash("123456")) is False

    def test_verify_rejects_missing_values(self, codec):
        assert codec.verify("", codec.hash("123456")) is False
        assert codec.verify("123456", None) is False

    def test_context_changes_hash(self, codec):
        mobile = codec.hash("123456", otp_context("p_1", "mobile"))
        email = codec.hash("123456", otp_context("p_1", "email"))

        assert mobile != email
        assert mobile != codec.hash("123456", otp_context("p_2", "mobile"))

    def test_verify_requires_matching_context(self, codec):
        digest = codec.hash("123456", otp_context("p_1", "mobile"))

        assert codec.verify("123456", digest, otp_context("p_1", "mobile")) is True
        assert codec.verify("123456", digest, otp_context("p_1", "email")) is False
        assert codec.verify("123456", digest) is False
