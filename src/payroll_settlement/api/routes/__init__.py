"""API routes."""

from payroll_settlement.api.routes.health import router as health_router
from payroll_settlement.api.routes.payment_hashes import router as payment_hashes_router
from payroll_settlement.api.routes.payment_requests import router as payment_requests_router
from payroll_settlement.api.routes.time_applications import router as time_applications_router
from payroll_settlement.api.routes.timestamps import router as timestamps_router

__all__ = [
    "health_router",
    "payment_hashes_router",
    "payment_requests_router",
    "time_applications_router",
    "timestamps_router",
]
