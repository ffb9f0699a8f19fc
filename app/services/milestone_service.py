from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError, ValidationError
from app.models import GangContractMilestone, MilestoneStatus, NotificationType, Profile, Site
from app.services.aggregate_ledger import ZERO, as_decimal
from app.services.notification_service import Notifier
from app.services.references import ensure_row

MILESTONE_FIELDS = ('status', 'paid_date', 'paid_by', 'note')


def milestone_to_dict(milestone: GangContractMilestone) -> dict:
    return {
        'id': milestone.id,
        'site_id': milestone.site_id,
        'team_id': milestone.team_id,
        'milestone_name': milestone.milestone_name,
        'milestone_amount': milestone.milestone_amount,
        'due_date': milestone.due_date,
        'status': milestone.status.value,
        'paid_date': milestone.paid_date,
        'paid_by': milestone.paid_by,
        'note': milestone.note,
    }


def create_milestone(
    db: Session,
    *,
    site_id: int,
    team_id: int,
    milestone_name: str,
    milestone_amount: Decimal,
    due_date: date | None = None,
    note: str | None = None,
) -> GangContractMilestone:
    clean_name = (milestone_name or '').strip()
    if not clean_name:
        raise ValidationError('Milestone name is required')
    if milestone_amount is None or as_decimal(milestone_amount) < ZERO:
        raise ValidationError('Milestone amount cannot be negative')
    ensure_row(db, Site, site_id, 'site')

    milestone = GangContractMilestone(
        site_id=site_id,
        team_id=team_id,
        milestone_name=clean_name,
        milestone_amount=as_decimal(milestone_amount),
        due_date=due_date,
        status=MilestoneStatus.PENDING,
        note=note,
    )
    db.add(milestone)
    db.flush()
    return milestone


def list_milestones(db: Session, *, site_id: int | None = None, team_id: int | None = None) -> list[dict]:
    query = select(GangContractMilestone).order_by(GangContractMilestone.created_at.asc(), GangContractMilestone.id.asc())
    if site_id:
        query = query.where(GangContractMilestone.site_id == site_id)
    if team_id:
        query = query.where(GangContractMilestone.team_id == team_id)
    return [milestone_to_dict(row) for row in db.execute(query).scalars().all()]


def update_milestone(
    db: Session,
    *,
    milestone_id: int,
    changes: dict,
    notifier: Notifier,
) -> GangContractMilestone:
    unknown = set(changes) - set(MILESTONE_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown milestone fields: {", ".join(sorted(unknown))}')
    if not changes:
        raise ValidationError('No fields to update')
    if 'paid_by' in changes:
        ensure_row(db, Profile, changes['paid_by'], 'profile')

    milestone = db.get(GangContractMilestone, milestone_id)
    if not milestone:
        raise NotFoundError('Milestone not found')

    previous = milestone.status
    for field, value in changes.items():
        if field == 'status':
            try:
                value = MilestoneStatus(value)
            except ValueError as exc:
                raise ValidationError(f'Invalid milestone status: {value}') from exc
        setattr(milestone, field, value)
    db.flush()

    if milestone.status == MilestoneStatus.PAID and previous != MilestoneStatus.PAID:
        notifier.notify_recipients(
            db,
            title='Milestone Paid',
            body='A gang milestone was marked as paid',
            type=NotificationType.MILESTONE_PAID,
            reference_id=milestone.id,
        )
    return milestone
