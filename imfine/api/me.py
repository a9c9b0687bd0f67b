"""Profile routes for the authenticated subject."""

from fastapi import APIRouter, HTTPException, status

from ..core.dependencies import CurrentSubjectDep
from ..core.errors import InvalidOperationError
from ..models import Subject, utcnow
from ..schemas import PushTokenRequest, SubjectResponse, UpdateProfileRequest
from ..services import ProfileUpdate
from .dependencies import SubjectServiceDep

router = APIRouter(prefix="/me", tags=["me"])


def build_subject_response(subject: Subject) -> SubjectResponse:
    return SubjectResponse(
        id=subject.id,
        email=subject.email,
        phone=subject.phone,
        display_name=subject.display_name,
        state=subject.state,
        last_confirmed_at=subject.last_confirmed_at,
        first_checkin_completed=subject.first_checkin_completed,
        checkin_interval_minutes=subject.checkin_interval_minutes,
        grace_period_minutes=subject.grace_period_minutes,
        vacation_mode=subject.vacation_mode,
        reminder_enabled=subject.reminder_enabled,
        reminder_offset_minutes=subject.reminder_offset_minutes,
        sound_enabled=subject.sound_enabled,
        sound_selection=subject.sound_selection,
        sound_volume=subject.sound_volume,
        timezone=subject.timezone,
        has_push_token=bool(subject.push_token),
        due_at=subject.due_at,
        grace_ends_at=subject.grace_ends_at,
        next_reminder_at=subject.next_reminder_at(utcnow()),
        created_at=subject.created_at,
    )


@router.get("", response_model=SubjectResponse)
async def get_me(current: CurrentSubjectDep):
    """Get the caller's profile and check-in schedule."""
    return build_subject_response(current.subject)


@router.patch("", response_model=SubjectResponse)
async def update_me(
    request: UpdateProfileRequest,
    current: CurrentSubjectDep,
    service: SubjectServiceDep,
):
    """Update check-in, reminder and sound settings."""
    try:
        subject = await service.update_profile(
            current.subject,
            ProfileUpdate(**request.model_dump(exclude_unset=True)),
        )
    except InvalidOperationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    return build_subject_response(subject)


@router.put("/push-token", response_model=SubjectResponse)
async def set_push_token(
    request: PushTokenRequest,
    current: CurrentSubjectDep,
    service: SubjectServiceDep,
):
    """Register (or clear) the device push token."""
    try:
        subject = await service.set_push_token(current.subject, request.push_token)
    except InvalidOperationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    return build_subject_response(subject)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_me(
    current: CurrentSubjectDep,
    service: SubjectServiceDep,
):
    """Delete the account and everything it owns."""
    await service.delete_account(current.subject)
