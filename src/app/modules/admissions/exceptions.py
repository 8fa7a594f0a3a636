"""
Admissions Service Errors

Every error carries a machine-readable error_code and an HTTP status so the
routers can translate it into a response without knowing the error type.
Expired OTP sessions and expired edit links have their own codes so the
client can show a terminal "request a new one" state.
"""

from uuid import UUID


class AdmissionServiceError(Exception):
    """Base exception for admission workflow errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


# Validation


class ValidationFailedError(AdmissionServiceError):
    """Raised when a required business field is missing or malformed."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="VALIDATION_ERROR", status_code=400)


class InvalidFeeError(AdmissionServiceError):
    def __init__(self):
        super().__init__(
            message="Invalid fee amount. Enter a number greater than or equal to 0.",
            error_code="INVALID_FEE",
            status_code=400,
        )


class InvalidPaymentModeError(AdmissionServiceError):
    def __init__(self):
        super().__init__(
            message="Invalid payment mode. Choose cash or online.",
            error_code="INVALID_PAYMENT_MODE",
            status_code=400,
        )


class InvalidFieldKeyError(AdmissionServiceError):
    def __init__(self, keys: list[str]):
        self.keys = keys
        super().__init__(
            message=f"Unknown field key(s): {', '.join(keys)}",
            error_code="INVALID_FIELD_KEY",
            status_code=400,
        )


# OTP / pending submission


class PendingSubmissionNotFoundError(AdmissionServiceError):
    def __init__(self):
        super().__init__(
            message="Verification session not found. Please submit the form again.",
            error_code="PENDING_NOT_FOUND",
            status_code=404,
        )


class OtpExpiredError(AdmissionServiceError):
    def __init__(self):
        super().__init__(
            message="Your verification code has expired. Please submit the form again to get a new code.",
            error_code="OTP_EXPIRED",
            status_code=400,
        )


class InvalidOtpError(AdmissionServiceError):
    def __init__(self, channel: str, attempts_left: int):
        self.channel = channel
        self.attempts_left = attempts_left
        super().__init__(
            message=f"Invalid {channel} OTP. {attempts_left} attempt(s) left.",
            error_code="INVALID_OTP",
            status_code=400,
        )


class OtpAttemptsExceededError(AdmissionServiceError):
    def __init__(self):
        super().__init__(
            message="Too many incorrect codes. Please submit the form again.",
            error_code="OTP_ATTEMPTS_EXCEEDED",
            status_code=429,
        )


class ChannelOrderViolationError(AdmissionServiceError):
    def __init__(self):
        super().__init__(
            message="Please verify your mobile OTP first.",
            error_code="CHANNEL_ORDER_VIOLATION",
            status_code=400,
        )


class FinalizationInProgressError(AdmissionServiceError):
    def __init__(self):
        super().__init__(
            message="Your admission is already being submitted. Please wait a moment.",
            error_code="FINALIZATION_IN_PROGRESS",
            status_code=409,
        )


# Edit windows


class NoActiveGrantError(AdmissionServiceError):
    def __init__(self):
        super().__init__(
            message=(
                "This edit link has expired or is not active. "
                "Please contact your counselor for a new edit request."
            ),
            error_code="EDIT_LINK_EXPIRED",
            status_code=400,
        )


# Records and review


class AdmissionNotFoundError(AdmissionServiceError):
    def __init__(self, admission_id: UUID | str | None = None):
        message = f"Admission {admission_id} not found" if admission_id else "Admission not found"
        super().__init__(message=message, error_code="ADMISSION_NOT_FOUND", status_code=404)


class InvalidAdmissionStateError(AdmissionServiceError):
    def __init__(self, message: str):
        super().__init__(message=message, error_code="INVALID_ADMISSION_STATE", status_code=409)


class FeeSubmissionRequiredError(AdmissionServiceError):
    def __init__(self):
        super().__init__(
            message="Fees must be submitted by the counselor before this admission can be approved.",
            error_code="FEE_SUBMISSION_REQUIRED",
            status_code=409,
        )


class AdmissionBusyError(AdmissionServiceError):
    def __init__(self):
        super().__init__(
            message="This admission is being updated by another request. Please retry shortly.",
            error_code="ADMISSION_BUSY",
            status_code=409,
        )


# Artifacts


class ArtifactGenerationFailedError(AdmissionServiceError):
    def __init__(self, detail: str):
        super().__init__(
            message=f"Could not generate the admission PDF: {detail}",
            error_code="ARTIFACT_GENERATION_FAILED",
            status_code=500,
        )


class UploadFailedError(AdmissionServiceError):
    def __init__(self, document: str):
        super().__init__(
            message=f"Could not store the {document} upload. Please try again.",
            error_code="UPLOAD_FAILED",
            status_code=502,
        )
