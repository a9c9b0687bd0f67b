"""Notification history routes."""

from fastapi import APIRouter, Query

from ..core import SessionDep, get_settings
from ..core.dependencies import CurrentSubjectDep
from ..schemas import HistoryEntryResponse
from ..services import get_notification_history

router = APIRouter(prefix="/notifications", tags=["notifications"])
settings = get_settings()


@router.get("/history", response_model=list[HistoryEntryResponse])
async def notification_history(
    current: CurrentSubjectDep,
    session: SessionDep,
    limit: int = Query(
        default=settings.notification_history_limit,
        ge=1,
        le=settings.notification_history_limit,
        description="Maximum rows, newest first",
    ),
):
    """Delivery outcomes of the caller's own alerts, newest first."""
    entries = await get_notification_history(session, current.id, limit=limit)
    return [HistoryEntryResponse.model_validate(e) for e in entries]
