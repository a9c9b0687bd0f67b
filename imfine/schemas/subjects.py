"""Schemas for the subject profile and check-in actions."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ..models import SubjectState
from .base import SafetyBaseModel
from .notifications import DeliveryReportResponse


class SubjectResponse(SafetyBaseModel):
    """The caller's profile with its computed schedule."""

    id: UUID
    email: str | None
    phone: str | None
    display_name: str | None
    state: SubjectState
    last_confirmed_at: datetime | None
    first_checkin_completed: bool
    checkin_interval_minutes: int
    grace_period_minutes: int
    vacation_mode: bool
    reminder_enabled: bool
    reminder_offset_minutes: int
    sound_enabled: bool
    sound_selection: str
    sound_volume: float
    timezone: str | None
    has_push_token: bool
    due_at: datetime | None
    grace_ends_at: datetime | None
    next_reminder_at: datetime | None
    created_at: datetime


class UpdateProfileRequest(SafetyBaseModel):
    """Request to change profile settings. Omitted fields are unchanged."""

    display_name: str | None = Field(default=None, max_length=255)
    checkin_interval_minutes: int | None = Field(default=None, gt=0, le=7 * 24 * 60)
    grace_period_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    vacation_mode: bool | None = None
    reminder_enabled: bool | None = None
    reminder_offset_minutes: int | None = Field(default=None, ge=0)
    sound_enabled: bool | None = None
    sound_selection: str | None = Field(default=None, max_length=50)
    sound_volume: float | None = Field(default=None, ge=0.0, le=1.0)
    timezone: str | None = Field(default=None, max_length=64)


class PushTokenRequest(SafetyBaseModel):
    push_token: str | None = Field(default=None, max_length=255)


class CheckinResponse(SafetyBaseModel):
    """State after a check-in, panic or resolution."""

    state: SubjectState
    last_confirmed_at: datetime | None
    due_at: datetime | None
    grace_ends_at: datetime | None
    next_reminder_at: datetime | None
    transitioned: bool
    notification: DeliveryReportResponse | None = None
