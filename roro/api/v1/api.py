from fastapi import APIRouter
from roro.api.v1.routes.bookings import router as bookings_router
from roro.api.v1.routes.workflow import router as workflow_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings_router)
api_router.include_router(workflow_router)
