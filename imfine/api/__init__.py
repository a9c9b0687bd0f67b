"""API routes for ImFine."""

from fastapi import APIRouter

from .checkins import router as checkins_router
from .contacts import router as contacts_router
from .me import router as me_router
from .monitor import router as monitor_router
from .notifications import router as notifications_router

# Main API router
api_router = APIRouter()

# Subject routes (/me/*)
api_router.include_router(me_router)

# Check-in state machine and trusted contacts
api_router.include_router(checkins_router)
api_router.include_router(contacts_router)
api_router.include_router(notifications_router)

# Scheduler-only (X-Cron-Secret)
api_router.include_router(monitor_router)

__all__ = ["api_router"]
