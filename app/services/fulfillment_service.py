"""Routing of quantity-producing events onto room/tile requirements.

Two producers grow ``received_qty``:

* a purchase line item tagged with a tile, matched against the requirements of
  the expense's site;
* a shortage request moving into ``received``, keyed by its exact room and tile.

Both only ever add. A purchase with no matching requirement is still a valid
purchase: it is stored, and owners are told it has no room assignment.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import NotFoundError, ValidationError
from app.models import (
    ExpenseLineItem,
    MaterialShortageRequest,
    NotificationType,
    Profile,
    Room,
    RoomTileRequirement,
    ShortageStatus,
    Tile,
)
from app.services.aggregate_ledger import ZERO, as_decimal
from app.services.notification_service import Notifier, StaticRecipientResolver
from app.services.payment_ledger_service import get_expense
from app.services.references import ensure_row
from app.services.requirement_ledger_service import get_requirement, requirement_ledger

logger = structlog.get_logger(__name__)

FANOUT_POLICIES = ('first_match',)


class FulfillmentOutcome(str, Enum):
    APPLIED = 'applied'
    AMBIGUOUS_FIRST_MATCH = 'ambiguous_first_match'
    UNASSIGNED = 'unassigned'
    NOT_TAGGED = 'not_tagged'
    MISSING_REQUIREMENT = 'missing_requirement'
    ALREADY_RECEIVED = 'already_received'
    NOT_RECEIVED = 'not_received'


@dataclass(frozen=True)
class FulfillmentResult:
    outcome: FulfillmentOutcome
    requirement_id: int | None = None
    delta: Decimal = ZERO
    candidate_count: int = 0

    @property
    def applied(self) -> bool:
        return self.outcome in (FulfillmentOutcome.APPLIED, FulfillmentOutcome.AMBIGUOUS_FIRST_MATCH)

    def as_dict(self) -> dict:
        return {
            'outcome': self.outcome.value,
            'requirement_id': self.requirement_id,
            'delta': self.delta,
            'candidate_count': self.candidate_count,
        }


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _matching_requirement_ids(db: Session, *, site_id: int, tile_id: int, room_id: int | None) -> list[int]:
    query = (
        select(RoomTileRequirement.id)
        .join(Room, Room.id == RoomTileRequirement.room_id)
        .where(Room.site_id == site_id, RoomTileRequirement.tile_id == tile_id)
        .order_by(RoomTileRequirement.id.asc())
    )
    if room_id is not None:
        query = query.where(RoomTileRequirement.room_id == room_id)
    return list(db.execute(query).scalars().all())


def route_tagged_purchase(
    db: Session,
    *,
    line_item: ExpenseLineItem,
    site_id: int,
    notifier: Notifier,
    owner_user_id: int | None = None,
) -> FulfillmentResult:
    if line_item.tile_id is None:
        return FulfillmentResult(outcome=FulfillmentOutcome.NOT_TAGGED)

    policy = settings.fulfillment_fanout_policy.strip().lower()
    if policy not in FANOUT_POLICIES:
        raise ValidationError(f'Unsupported fulfillment fan-out policy: {policy}')

    candidates = _matching_requirement_ids(db, site_id=site_id, tile_id=line_item.tile_id, room_id=line_item.room_id)
    if not candidates:
        logger.warning(
            'fulfillment.unassigned_purchase',
            expense_id=line_item.expense_id,
            line_item_id=line_item.id,
            site_id=site_id,
            tile_id=line_item.tile_id,
            room_id=line_item.room_id,
        )
        notifier.notify_recipients(
            db,
            title='Tile purchased but not room-assigned',
            body='A tile was purchased but has no room assignment in this site.',
            type=NotificationType.TILE_PURCHASED_UNASSIGNED,
            reference_id=line_item.expense_id,
            recipients=StaticRecipientResolver([owner_user_id]) if owner_user_id else None,
        )
        return FulfillmentResult(outcome=FulfillmentOutcome.UNASSIGNED)

    target_id = candidates[0]
    delta = as_decimal(line_item.quantity)
    requirement_ledger.increment_received(db, requirement_id=target_id, delta=delta)

    outcome = FulfillmentOutcome.APPLIED
    if len(candidates) > 1:
        outcome = FulfillmentOutcome.AMBIGUOUS_FIRST_MATCH
        logger.warning(
            'fulfillment.ambiguous_target',
            line_item_id=line_item.id,
            tile_id=line_item.tile_id,
            candidate_requirement_ids=candidates,
            chosen_requirement_id=target_id,
        )
    logger.info(
        'fulfillment.applied',
        producer='tagged_purchase',
        line_item_id=line_item.id,
        requirement_id=target_id,
        delta=str(delta),
    )
    return FulfillmentResult(outcome=outcome, requirement_id=target_id, delta=delta, candidate_count=len(candidates))


def add_line_item(
    db: Session,
    *,
    expense_id: int,
    description: str,
    quantity: Decimal,
    rate: Decimal,
    amount: Decimal,
    notifier: Notifier,
    tile_id: int | None = None,
    room_id: int | None = None,
    unit: str | None = None,
    sort_order: int = 0,
    owner_user_id: int | None = None,
) -> tuple[ExpenseLineItem, FulfillmentResult]:
    clean_description = (description or '').strip()
    if not clean_description:
        raise ValidationError('Description is required')
    if quantity is None or rate is None or amount is None:
        raise ValidationError('Quantity, rate and amount are required')
    qty = as_decimal(quantity)
    if qty <= ZERO:
        raise ValidationError('Quantity must be greater than zero')
    if tile_id is not None and db.get(Tile, tile_id) is None:
        raise ValidationError(f'Unknown tile {tile_id}')
    if room_id is not None and tile_id is None:
        raise ValidationError('A room can only be given for a tile-tagged line item')

    expense = get_expense(db, expense_id=expense_id)
    if room_id is not None:
        room = db.get(Room, room_id)
        if room is None or room.site_id != expense.site_id:
            raise ValidationError('Room does not belong to the expense site')

    line_item = ExpenseLineItem(
        expense_id=expense.id,
        tile_id=tile_id,
        room_id=room_id,
        description=clean_description,
        quantity=qty,
        unit=unit,
        rate=as_decimal(rate),
        amount=as_decimal(amount),
        sort_order=sort_order or 0,
    )
    db.add(line_item)
    db.flush()

    result = route_tagged_purchase(
        db,
        line_item=line_item,
        site_id=expense.site_id,
        notifier=notifier,
        owner_user_id=owner_user_id,
    )
    return line_item, result


def line_item_to_dict(line_item: ExpenseLineItem) -> dict:
    return {
        'id': line_item.id,
        'expense_id': line_item.expense_id,
        'tile_id': line_item.tile_id,
        'room_id': line_item.room_id,
        'description': line_item.description,
        'quantity': line_item.quantity,
        'unit': line_item.unit,
        'rate': line_item.rate,
        'amount': line_item.amount,
        'sort_order': line_item.sort_order,
    }


def shortage_to_dict(shortage: MaterialShortageRequest, *, extra: dict | None = None) -> dict:
    row = {
        'id': shortage.id,
        'site_id': shortage.site_id,
        'room_id': shortage.room_id,
        'tile_id': shortage.tile_id,
        'requested_qty': shortage.requested_qty,
        'urgency': shortage.urgency,
        'status': shortage.status.value,
        'note': shortage.note,
        'requested_by': shortage.requested_by,
        'approved_by': shortage.approved_by,
        'created_at': shortage.created_at,
        'updated_at': shortage.updated_at,
    }
    if extra:
        row.update(extra)
    return row


def create_shortage_request(
    db: Session,
    *,
    site_id: int,
    room_id: int,
    tile_id: int,
    requested_qty: Decimal,
    notifier: Notifier,
    urgency: str | None = None,
    note: str | None = None,
    requested_by: int | None = None,
) -> MaterialShortageRequest:
    if requested_qty is None:
        raise ValidationError('Requested quantity is required')
    qty = as_decimal(requested_qty)
    if qty <= ZERO:
        raise ValidationError('Requested quantity must be greater than zero')
    room = db.get(Room, room_id)
    if room is None or room.site_id != site_id:
        raise ValidationError('Room does not belong to the site')
    if db.get(Tile, tile_id) is None:
        raise ValidationError(f'Unknown tile {tile_id}')
    ensure_row(db, Profile, requested_by, 'profile')

    shortage = MaterialShortageRequest(
        site_id=site_id,
        room_id=room_id,
        tile_id=tile_id,
        requested_qty=qty,
        urgency=(urgency or 'normal').strip() or 'normal',
        status=ShortageStatus.PENDING,
        note=note,
        requested_by=requested_by,
    )
    db.add(shortage)
    db.flush()

    notifier.notify_recipients(
        db,
        title='Tile Shortage Request',
        body='A tile mason raised a material shortage request',
        type=NotificationType.SHORTAGE_REQUEST,
        reference_id=shortage.id,
    )
    return shortage


def _parse_status(raw) -> ShortageStatus:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ValidationError('Status is required')
    if isinstance(raw, ShortageStatus):
        return raw
    try:
        return ShortageStatus(str(raw).strip().lower())
    except ValueError as exc:
        raise ValidationError(f'Invalid shortage status: {raw}') from exc


def update_shortage_status(
    db: Session,
    *,
    shortage_id: int,
    status,
    approved_by: int | None = None,
) -> tuple[MaterialShortageRequest, FulfillmentResult]:
    new_status = _parse_status(status)
    ensure_row(db, Profile, approved_by, 'profile')

    shortage = db.execute(
        select(MaterialShortageRequest).where(MaterialShortageRequest.id == shortage_id).with_for_update()
    ).scalar_one_or_none()
    if not shortage:
        raise NotFoundError('Shortage request not found')

    previous = shortage.status
    if previous == ShortageStatus.RECEIVED and new_status != ShortageStatus.RECEIVED:
        raise ValidationError('A received shortage request cannot be reopened')

    shortage.status = new_status
    if approved_by is not None:
        shortage.approved_by = approved_by
    shortage.updated_at = _now()
    db.flush()

    if new_status != ShortageStatus.RECEIVED:
        return shortage, FulfillmentResult(outcome=FulfillmentOutcome.NOT_RECEIVED)
    if previous == ShortageStatus.RECEIVED:
        return shortage, FulfillmentResult(outcome=FulfillmentOutcome.ALREADY_RECEIVED)

    requirement = get_requirement(db, room_id=shortage.room_id, tile_id=shortage.tile_id)
    if requirement is None:
        logger.info(
            'fulfillment.missing_requirement',
            shortage_id=shortage.id,
            room_id=shortage.room_id,
            tile_id=shortage.tile_id,
        )
        return shortage, FulfillmentResult(outcome=FulfillmentOutcome.MISSING_REQUIREMENT)

    delta = as_decimal(shortage.requested_qty)
    requirement_ledger.increment_received(db, requirement_id=requirement.id, delta=delta)
    logger.info(
        'fulfillment.applied',
        producer='shortage_received',
        shortage_id=shortage.id,
        requirement_id=requirement.id,
        delta=str(delta),
    )
    return shortage, FulfillmentResult(
        outcome=FulfillmentOutcome.APPLIED,
        requirement_id=requirement.id,
        delta=delta,
        candidate_count=1,
    )


def list_shortage_requests(db: Session, *, site_id: int | None = None) -> list[dict]:
    query = (
        select(MaterialShortageRequest, Room.name, Tile.brand, Tile.size_label)
        .join(Room, Room.id == MaterialShortageRequest.room_id)
        .join(Tile, Tile.id == MaterialShortageRequest.tile_id)
        .order_by(MaterialShortageRequest.created_at.desc(), MaterialShortageRequest.id.desc())
    )
    if site_id:
        query = query.where(MaterialShortageRequest.site_id == site_id)
    return [
        shortage_to_dict(shortage, extra={'room_name': room_name, 'brand': brand, 'size_label': size_label})
        for shortage, room_name, brand, size_label in db.execute(query).all()
    ]
