from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError, ValidationError
from app.models import AssignmentStatus, Profile, Room, TileMasonAssignment, TileMasonProgress
from app.services.aggregate_ledger import ZERO, AggregateLedger, as_decimal, clamp_non_negative, sum_children
from app.services.references import ensure_row, reject_nulls

logger = structlog.get_logger(__name__)

CENT = Decimal('0.01')
ASSIGNMENT_FIELDS = ('status', 'rate_per_sqft', 'contracted_sqft')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class AssignmentView:
    assignment_id: int
    contracted_sqft: Decimal
    completed_sqft: Decimal
    remaining_sqft: Decimal
    total_value: Decimal
    earned_amount: Decimal


class AssignmentLedger(AggregateLedger[int, TileMasonAssignment, AssignmentView]):
    name = 'assignment_ledger'

    def recompute(self, db: Session, key: int) -> TileMasonAssignment | None:
        assignment = db.get(TileMasonAssignment, key)
        if assignment is None:
            return None
        assignment.completed_sqft = sum_children(
            db, TileMasonProgress.verified_sqft, TileMasonProgress.assignment_id == key
        )
        assignment.updated_at = _now()
        return assignment

    def project(self, parent: TileMasonAssignment) -> AssignmentView:
        rate = as_decimal(parent.rate_per_sqft)
        contracted = as_decimal(parent.contracted_sqft)
        completed = as_decimal(parent.completed_sqft)
        return AssignmentView(
            assignment_id=parent.id,
            contracted_sqft=contracted,
            completed_sqft=completed,
            remaining_sqft=clamp_non_negative(contracted - completed),
            total_value=(contracted * rate).quantize(CENT),
            earned_amount=(completed * rate).quantize(CENT),
        )


assignment_ledger = AssignmentLedger()


def assignment_to_dict(assignment: TileMasonAssignment, *, room_name: str | None = None) -> dict:
    view = assignment_ledger.project(assignment)
    return {
        'id': assignment.id,
        'site_id': assignment.site_id,
        'worker_id': assignment.worker_id,
        'room_id': assignment.room_id,
        'room_name': room_name,
        'surface_type': assignment.surface_type,
        'rate_per_sqft': assignment.rate_per_sqft,
        'status': assignment.status.value,
        'contracted_sqft': view.contracted_sqft,
        'completed_sqft': view.completed_sqft,
        'remaining_sqft': view.remaining_sqft,
        'total_value': view.total_value,
        'earned_amount': view.earned_amount,
    }


def create_assignment(
    db: Session,
    *,
    site_id: int,
    worker_id: int,
    room_id: int,
    surface_type: str,
    rate_per_sqft: Decimal,
    contracted_sqft: Decimal,
    status: AssignmentStatus | None = None,
) -> TileMasonAssignment:
    if rate_per_sqft is None or contracted_sqft is None:
        raise ValidationError('Rate and contracted area are required')
    if as_decimal(rate_per_sqft) < ZERO or as_decimal(contracted_sqft) < ZERO:
        raise ValidationError('Rate and contracted area cannot be negative')
    clean_surface = (surface_type or '').strip()
    if not clean_surface:
        raise ValidationError('Surface type is required')
    room = db.get(Room, room_id)
    if room is None or room.site_id != site_id:
        raise ValidationError('Room does not belong to the site')

    assignment = TileMasonAssignment(
        site_id=site_id,
        worker_id=worker_id,
        room_id=room_id,
        surface_type=clean_surface,
        rate_per_sqft=as_decimal(rate_per_sqft),
        contracted_sqft=as_decimal(contracted_sqft),
        completed_sqft=ZERO,
        status=status or AssignmentStatus.ASSIGNED,
    )
    db.add(assignment)
    db.flush()
    return assignment


def list_assignments(db: Session, *, site_id: int | None = None, worker_id: int | None = None) -> list[dict]:
    query = (
        select(TileMasonAssignment, Room.name)
        .join(Room, Room.id == TileMasonAssignment.room_id)
        .order_by(TileMasonAssignment.created_at.desc(), TileMasonAssignment.id.desc())
    )
    if site_id:
        query = query.where(TileMasonAssignment.site_id == site_id)
    if worker_id:
        query = query.where(TileMasonAssignment.worker_id == worker_id)
    return [assignment_to_dict(assignment, room_name=room_name) for assignment, room_name in db.execute(query).all()]


def _parse_assignment_status(raw) -> AssignmentStatus:
    if isinstance(raw, AssignmentStatus):
        return raw
    try:
        return AssignmentStatus(str(raw).strip().lower())
    except ValueError as exc:
        raise ValidationError(f'Invalid assignment status: {raw}') from exc


def update_assignment(db: Session, *, assignment_id: int, changes: dict) -> TileMasonAssignment:
    """Edit an assignment's status, rate or contracted area.

    ``completed_sqft`` is owned by the progress ledger and is never written
    here; the projected earnings follow the new rate on the next read.
    """
    unknown = set(changes) - set(ASSIGNMENT_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown assignment fields: {", ".join(sorted(unknown))}')
    if not changes:
        raise ValidationError('No fields to update')
    reject_nulls(changes, ASSIGNMENT_FIELDS)

    assignment = db.execute(
        select(TileMasonAssignment).where(TileMasonAssignment.id == assignment_id).with_for_update()
    ).scalar_one_or_none()
    if not assignment:
        raise NotFoundError('Assignment not found')

    for field, value in changes.items():
        if field == 'status':
            value = _parse_assignment_status(value)
        else:
            value = as_decimal(value)
            if value < ZERO:
                raise ValidationError('Rate and contracted area cannot be negative')
        setattr(assignment, field, value)
    assignment.updated_at = _now()
    db.flush()
    logger.info('assignment.updated', assignment_id=assignment.id, fields=sorted(changes))
    return assignment


def record_progress(
    db: Session,
    *,
    assignment_id: int,
    progress_date: date,
    verified_sqft: Decimal,
    note: str | None = None,
    verified_by: int | None = None,
) -> TileMasonProgress:
    if progress_date is None or verified_sqft is None:
        raise ValidationError('Date and verified area are required')
    area = as_decimal(verified_sqft)
    if area < ZERO:
        raise ValidationError('Verified area cannot be negative')
    ensure_row(db, Profile, verified_by, 'profile')

    assignment = db.execute(
        select(TileMasonAssignment).where(TileMasonAssignment.id == assignment_id).with_for_update()
    ).scalar_one_or_none()
    if not assignment:
        raise NotFoundError('Assignment not found')

    progress = TileMasonProgress(
        assignment_id=assignment.id,
        progress_date=progress_date,
        verified_sqft=area,
        note=note,
        verified_by=verified_by,
    )
    db.add(progress)
    db.flush()

    assignment_ledger.synchronize(db, assignment.id)
    logger.info(
        'progress.recorded',
        assignment_id=assignment.id,
        verified_sqft=str(area),
        completed_sqft=str(assignment.completed_sqft),
    )
    return progress


def list_progress(db: Session, *, assignment_id: int) -> list[dict]:
    if db.get(TileMasonAssignment, assignment_id) is None:
        raise NotFoundError('Assignment not found')
    rows = db.execute(
        select(TileMasonProgress)
        .where(TileMasonProgress.assignment_id == assignment_id)
        .order_by(TileMasonProgress.progress_date.desc(), TileMasonProgress.id.desc())
    ).scalars().all()
    return [
        {
            'id': row.id,
            'assignment_id': row.assignment_id,
            'date': row.progress_date,
            'verified_sqft': row.verified_sqft,
            'note': row.note,
            'verified_by': row.verified_by,
        }
        for row in rows
    ]
