"""
Admission Artifacts

Rendering and storage of admission PDFs, and regeneration after edits.

render_and_store() is the mandatory path used on finalize and approve: any
failure raises ArtifactGenerationFailedError. regenerate() runs after an
edit has already been committed, so it logs failures and never raises.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core import sheets
from app.core.pdf import PdfVariant, build_admission_pdf
from app.core.storage import upload_bytes
from app.modules.admissions import repository
from app.modules.admissions.exceptions import ArtifactGenerationFailedError
from app.modules.admissions.helpers import admission_to_document
from app.modules.admissions.models import Admission

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


@dataclass
class RenderedArtifact:
    variant: PdfVariant
    url: str
    content: bytes

    @property
    def filename(self) -> str:
        return f"admission-{self.variant.value}.pdf"


@dataclass
class RegeneratedArtifacts:
    student_pdf_url: str | None = None
    counselor_pdf_url: str | None = None


async def render_pdf(document: dict[str, Any], variant: PdfVariant) -> bytes:
    # reportlab is synchronous
    return await asyncio.to_thread(build_admission_pdf, document, variant)


async def render_and_store(
    admission_id: UUID | str,
    document: dict[str, Any],
    variant: PdfVariant,
) -> RenderedArtifact:
    """
    Render one PDF variant and upload it under a unique key.

    Raises:
        ArtifactGenerationFailedError: If rendering or upload fails
    """
    stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S%f")
    key = f"admissions/pdf/{admission_id}-{variant.value}-{stamp}.pdf"
    try:
        content = await render_pdf(document, variant)
        url = await upload_bytes(key, content, PDF_CONTENT_TYPE)
    except Exception as e:
        logger.error(f"Failed to generate {variant.value} PDF for admission {admission_id}: {e}")
        raise ArtifactGenerationFailedError(str(e)) from e

    return RenderedArtifact(variant=variant, url=url, content=content)


async def render_pending_pair(
    admission_id: UUID | str,
    document: dict[str, Any],
) -> tuple[RenderedArtifact, RenderedArtifact]:
    """Render the student and counselor copies of a pending admission."""
    student = await render_and_store(admission_id, document, PdfVariant.STUDENT)
    counselor = await render_and_store(admission_id, document, PdfVariant.COUNSELOR)
    return student, counselor


async def regenerate(db: AsyncSession, admission: Admission) -> RegeneratedArtifacts:
    """
    Refresh both pending PDFs and overwrite the admission's sheet row.

    Every failure is logged and swallowed; the caller's data change is
    already committed.
    """
    result = RegeneratedArtifacts()

    try:
        student, counselor = await render_pending_pair(admission.id, admission_to_document(admission))
        await repository.set_pdf_refs(db, admission, student.url, counselor.url)
        result.student_pdf_url = student.url
        result.counselor_pdf_url = counselor.url
        logger.info(f"Regenerated PDFs for admission {admission.id}")
    except Exception as e:
        logger.error(f"PDF regeneration failed for admission {admission.id}: {e}")

    try:
        await sheets.update_admission_row(admission_to_document(admission))
    except Exception as e:
        logger.error(f"Sheet row update failed for admission {admission.id}: {e}")

    return result
