"""
Admissions Module

Handles the student admission workflow:
1. Form intake with photo, document and signature uploads
2. Two-factor OTP verification (mobile, then email, 15-minute expiry)
3. Exactly-once finalization into an admission record with PDFs
4. Counselor review with field-level correction requests
5. Single-use student edit windows (72-hour expiry)
6. Counselor fee submission and admin approval

API Endpoints:
- POST /admissions/init - Submit the form
- POST /admissions/verify - Verify an OTP channel
- GET /admissions/{id}/edit-data - Prefill an open edit window
- POST /admissions/{id}/apply-edit - Apply student corrections
- GET /admissions/{id}/review - Counselor review page
- GET /admissions/{id}/admin-review - Admin review page
- POST /admissions/{id}/request-edit - Ask the student for corrections
- POST /admissions/{id}/request-edit-to-counselor - Send admin flags to the counselor
- POST /admissions/{id}/submit-to-admin - Submit fees for approval
- POST /admissions/{id}/approve - Approve

Background Jobs (via APScheduler):
- reap_pending_submissions: Every 5 minutes, drops expired OTP sessions
- expire_edit_requests: Hourly, marks lapsed edit requests expired
"""

from .jobs import register_admission_jobs
from .review_router import review_router
from .router import router

__all__ = ["router", "review_router", "register_admission_jobs"]
