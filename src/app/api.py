from fastapi import APIRouter

from app.modules.admissions import review_router as admissions_review_router
from app.modules.admissions import router as admissions_router

api_router = APIRouter()

api_router.include_router(admissions_router, prefix="/admissions", tags=["Admissions"])

api_router.include_router(
    admissions_review_router,
    prefix="/admissions",
    tags=["Admissions - Review"],
)
