"""
Check-in State Machine: safety state of each subject.

    ONBOARDING --check-in--> ACTIVE --due--> GRACE --grace over--> ESCALATED
                                ^              |                      |
                                +--resolve-----+-------resolve--------+

Every transition is a conditional UPDATE keyed by (subject id, expected
state). Only the caller whose UPDATE matched a row writes the StateEvent and
fires the dispatch, so overlapping scans and a panic racing a scan cannot
produce a second ESCALATION_ALERT.

Transitions are committed before any dispatch. A failed dispatch never rolls
back a persisted transition.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import InvalidOperationError, NotFoundError
from ..models import (
    NotificationType,
    StateEvent,
    Subject,
    SubjectState,
    as_utc,
    utcnow,
)
from .dispatch import DeliveryReport, DispatchEngine

logger = logging.getLogger(__name__)


REASON_WINDOW_ELAPSED = "check-in window elapsed"
REASON_GRACE_ELAPSED = "grace period elapsed"
REASON_FIRST_CHECKIN = "first check-in completed"
REASON_CHECKIN = "manual check-in"
REASON_PANIC = "manual panic triggered"
REASON_RESOLVED = "user resolved escalation"
REASON_GRACE_RESOLVED = "user resolved grace period"

# Attempts at a manual transition before giving up on a racing writer
MAX_CAS_ATTEMPTS = 3


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class TransitionStep:
    from_state: SubjectState
    to_state: SubjectState
    reason: str


@dataclass
class CheckinResult:
    """State of a subject after a manual action."""
    subject_id: UUID
    state: SubjectState
    last_confirmed_at: datetime | None
    due_at: datetime | None
    grace_ends_at: datetime | None
    next_reminder_at: datetime | None
    transitioned: bool = True
    report: DeliveryReport | None = None


@dataclass
class ScanResult:
    """Counts from one monitor scan."""
    scanned: int = 0
    to_grace: int = 0
    to_escalated: int = 0
    dispatch_failures: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def transitioned(self) -> int:
        return self.to_grace + self.to_escalated

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "to_grace": self.to_grace,
            "to_escalated": self.to_escalated,
            "transitioned": self.transitioned,
            "dispatch_failures": self.dispatch_failures,
            "errors": self.errors,
        }


# =============================================================================
# TRANSITION RULE
# =============================================================================


def compute_transition(subject: Subject, now: datetime) -> list[TransitionStep]:
    """
    Automatic transitions due for `subject` at `now`.

    Pure. A subject already past the end of its grace period while still
    ACTIVE gets both steps so a single scan reaches ESCALATED.
    """
    if subject.vacation_mode or subject.last_confirmed_at is None:
        return []

    due_at = subject.due_at
    grace_end = subject.grace_ends_at
    now = as_utc(now)

    steps: list[TransitionStep] = []
    state = subject.state
    if state == SubjectState.ACTIVE and now >= due_at:
        steps.append(TransitionStep(SubjectState.ACTIVE, SubjectState.GRACE, REASON_WINDOW_ELAPSED))
        state = SubjectState.GRACE
    if state == SubjectState.GRACE and now >= grace_end:
        steps.append(TransitionStep(SubjectState.GRACE, SubjectState.ESCALATED, REASON_GRACE_ELAPSED))
    return steps


# =============================================================================
# CHECK-IN ENGINE
# =============================================================================


class CheckinEngine:
    """Manual check-in actions and the periodic transition scan."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: DispatchEngine,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._dispatcher = dispatcher
        self._clock = clock

    # =========================================================================
    # MANUAL ACTIONS
    # =========================================================================

    async def check_in(self, subject_id: UUID) -> CheckinResult:
        """
        Confirm the subject is fine.

        From ESCALATED this is a resolution (contacts are told to stand down).
        """
        for _ in range(MAX_CAS_ATTEMPTS):
            subject = await self._load(subject_id)
            current = subject.state

            if current == SubjectState.ESCALATED:
                return await self.resolve_alert(subject_id)

            now = self._clock()
            values: dict[str, Any] = {"last_confirmed_at": now}
            if current == SubjectState.ONBOARDING or not subject.first_checkin_completed:
                values["first_checkin_completed"] = True
            reason = REASON_FIRST_CHECKIN if current == SubjectState.ONBOARDING else REASON_CHECKIN

            if await self._transition(subject_id, current, SubjectState.ACTIVE, reason, now, values):
                await self._session.commit()
                logger.info(f"Subject {subject_id} checked in ({current.value} -> ACTIVE)")
                return await self._result(subject_id)

        raise InvalidOperationError("Subject state changed concurrently, please retry")

    async def panic(self, subject_id: UUID) -> CheckinResult:
        """Escalate immediately, skipping GRACE."""
        for _ in range(MAX_CAS_ATTEMPTS):
            subject = await self._load(subject_id)
            current = subject.state

            if current == SubjectState.ESCALATED:
                return await self._result(subject_id, transitioned=False)

            now = self._clock()
            if await self._transition(subject_id, current, SubjectState.ESCALATED, REASON_PANIC, now):
                await self._session.commit()
                logger.warning(f"Subject {subject_id} triggered a manual panic ({current.value} -> ESCALATED)")
                report = await self._dispatch_after_transition(subject_id, NotificationType.ESCALATION_ALERT)
                return await self._result(subject_id, report=report)

        raise InvalidOperationError("Subject state changed concurrently, please retry")

    async def resolve_alert(self, subject_id: UUID) -> CheckinResult:
        """
        Return to ACTIVE from ESCALATED or GRACE.

        Only a resolved escalation notifies contacts; GRACE was never
        announced to them.
        """
        for _ in range(MAX_CAS_ATTEMPTS):
            subject = await self._load(subject_id)
            current = subject.state

            if current not in (SubjectState.ESCALATED, SubjectState.GRACE):
                raise InvalidOperationError(f"Nothing to resolve in state {current.value}")

            now = self._clock()
            reason = REASON_RESOLVED if current == SubjectState.ESCALATED else REASON_GRACE_RESOLVED
            won = await self._transition(
                subject_id, current, SubjectState.ACTIVE, reason, now,
                {"last_confirmed_at": now},
            )
            if not won:
                continue

            await self._session.commit()
            logger.info(f"Subject {subject_id} resolved {current.value}")

            report = None
            if current == SubjectState.ESCALATED:
                report = await self._dispatch_after_transition(subject_id, NotificationType.RESOLUTION_ALERT)
            return await self._result(subject_id, report=report)

        raise InvalidOperationError("Subject state changed concurrently, please retry")

    async def send_test_alert(self, subject_id: UUID) -> DeliveryReport:
        """Send a TEST_ALERT to every confirmed contact. No state change."""
        await self._load(subject_id)
        report = await self._dispatcher.dispatch(subject_id, NotificationType.TEST_ALERT)
        await self._session.commit()
        return report

    # =========================================================================
    # MONITOR SCAN
    # =========================================================================

    async def run_scan(self) -> ScanResult:
        """
        Apply due automatic transitions to every monitored subject.

        Safe to run concurrently with itself: a subject another scan already
        moved simply fails the conditional update here.
        """
        now = self._clock()
        result = ScanResult()

        rows = await self._session.execute(
            select(Subject)
            .where(
                Subject.state.in_([SubjectState.ACTIVE, SubjectState.GRACE]),
                Subject.vacation_mode.is_(False),
                Subject.last_confirmed_at.isnot(None),
            )
            .order_by(Subject.created_at.asc(), Subject.id.asc())
            .execution_options(populate_existing=True)
        )
        candidates = list(rows.scalars().all())
        result.scanned = len(candidates)

        # Decided up front: a rollback below expires every loaded row. The
        # confirmation time seen here guards each update, so a check-in that
        # lands mid-scan wins over the stale decision.
        due = [
            (c.id, c.last_confirmed_at, steps)
            for c in candidates
            if (steps := compute_transition(c, now))
        ]

        for subject_id, confirmed_at, steps in due:
            try:
                await self._apply_steps(subject_id, confirmed_at, steps, now, result)
            except SQLAlchemyError as e:
                await self._session.rollback()
                logger.error(f"Scan failed for subject {subject_id}: {e}")
                result.errors.append(f"{subject_id}: {e}")

        logger.info(
            f"Scan complete: {result.scanned} scanned, {result.to_grace} to GRACE, "
            f"{result.to_escalated} to ESCALATED, {result.dispatch_failures} dispatch failures"
        )
        return result

    async def _apply_steps(
        self,
        subject_id: UUID,
        confirmed_at: datetime,
        steps: list[TransitionStep],
        now: datetime,
        result: ScanResult,
    ) -> None:
        guard = [
            Subject.last_confirmed_at == confirmed_at,
            Subject.vacation_mode.is_(False),
        ]
        escalated = False
        for step in steps:
            won = await self._transition(
                subject_id, step.from_state, step.to_state, step.reason, now, guard=guard,
            )
            if not won:
                break
            if step.to_state == SubjectState.GRACE:
                result.to_grace += 1
            elif step.to_state == SubjectState.ESCALATED:
                result.to_escalated += 1
                escalated = True
        await self._session.commit()

        if escalated:
            logger.warning(f"Subject {subject_id} escalated: {REASON_GRACE_ELAPSED}")
            report = await self._dispatch_after_transition(subject_id, NotificationType.ESCALATION_ALERT)
            if report is None:
                result.dispatch_failures += 1

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _transition(
        self,
        subject_id: UUID,
        expected: SubjectState,
        to_state: SubjectState,
        reason: str,
        now: datetime,
        values: dict[str, Any] | None = None,
        guard: list[Any] | None = None,
    ) -> bool:
        """Conditional state update. True only for the caller that moved the row."""
        stmt = (
            update(Subject)
            .where(Subject.id == subject_id, Subject.state == expected, *(guard or []))
            .values(state=to_state, updated_at=now, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        outcome = await self._session.execute(stmt)
        if outcome.rowcount != 1:
            logger.info(
                f"Transition {expected.value} -> {to_state.value} for {subject_id} lost to a concurrent writer"
            )
            return False

        self._session.add(StateEvent(
            subject_id=subject_id,
            from_state=expected,
            to_state=to_state,
            reason=reason,
            created_at=now,
        ))
        await self._session.flush()
        return True

    async def _dispatch_after_transition(
        self,
        subject_id: UUID,
        notification_type: NotificationType,
    ) -> DeliveryReport | None:
        """Dispatch following a committed transition. Failures are logged, never raised."""
        try:
            report = await self._dispatcher.dispatch(subject_id, notification_type)
            await self._session.commit()
            return report
        except Exception as e:
            await self._session.rollback()
            logger.error(f"{notification_type.value} dispatch for subject {subject_id} failed: {e}")
            return None

    async def _load(self, subject_id: UUID) -> Subject:
        subject = await self._session.get(Subject, subject_id, populate_existing=True)
        if subject is None:
            raise NotFoundError(f"Subject {subject_id} not found")
        return subject

    async def _result(
        self,
        subject_id: UUID,
        transitioned: bool = True,
        report: DeliveryReport | None = None,
    ) -> CheckinResult:
        subject = await self._load(subject_id)
        return CheckinResult(
            subject_id=subject.id,
            state=subject.state,
            last_confirmed_at=as_utc(subject.last_confirmed_at) if subject.last_confirmed_at else None,
            due_at=subject.due_at,
            grace_ends_at=subject.grace_ends_at,
            next_reminder_at=subject.next_reminder_at(self._clock()),
            transitioned=transitioned,
            report=report,
        )
