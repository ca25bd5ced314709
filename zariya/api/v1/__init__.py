from fastapi import APIRouter

from zariya.api.v1.routers import (
    documents,
    health,
    loan_applications,
    loans,
    memberships,
    repayments,
    reports,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(memberships.router)
api_router.include_router(loan_applications.router)
api_router.include_router(loans.router)
api_router.include_router(repayments.router)
api_router.include_router(reports.router)
api_router.include_router(documents.router)

__all__ = ["api_router"]
