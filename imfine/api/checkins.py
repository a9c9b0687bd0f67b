"""
Check-in API Routes.

Dispatch problems after a state change never fail these calls; they show up
in the returned report and in the notification history.
"""

from fastapi import APIRouter, HTTPException, status

from ..core.dependencies import CurrentSubjectDep
from ..core.errors import DispatchError, InvalidOperationError, NotFoundError
from ..schemas import CheckinResponse, DeliveryReportResponse
from ..services import CheckinResult
from .dependencies import CheckinEngineDep

router = APIRouter(prefix="/checkin", tags=["checkin"])


def build_checkin_response(result: CheckinResult) -> CheckinResponse:
    return CheckinResponse(
        state=result.state,
        last_confirmed_at=result.last_confirmed_at,
        due_at=result.due_at,
        grace_ends_at=result.grace_ends_at,
        next_reminder_at=result.next_reminder_at,
        transitioned=result.transitioned,
        notification=DeliveryReportResponse.from_report(result.report) if result.report else None,
    )


@router.post("", response_model=CheckinResponse)
async def check_in(current: CurrentSubjectDep, engine: CheckinEngineDep):
    """I'm fine: reset the check-in timer."""
    try:
        result = await engine.check_in(current.id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidOperationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return build_checkin_response(result)


@router.post("/panic", response_model=CheckinResponse)
async def panic(current: CurrentSubjectDep, engine: CheckinEngineDep):
    """I am NOT fine: escalate to trusted contacts now."""
    try:
        result = await engine.panic(current.id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidOperationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return build_checkin_response(result)


@router.post("/resolve", response_model=CheckinResponse)
async def resolve(current: CurrentSubjectDep, engine: CheckinEngineDep):
    """Stand contacts down after an escalation."""
    try:
        result = await engine.resolve_alert(current.id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidOperationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return build_checkin_response(result)


@router.post("/test-alert", response_model=DeliveryReportResponse)
async def test_alert(current: CurrentSubjectDep, engine: CheckinEngineDep):
    """Send a test alert to every confirmed contact."""
    try:
        report = await engine.send_test_alert(current.id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DispatchError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return DeliveryReportResponse.from_report(report)
