from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.db import dialect_name
from app.errors import ConsistencyFailure, NotFoundError, ValidationError
from app.models import RequirementStatus, Room, RoomTileRequirement, RoomTileZone, Tile
from app.services.aggregate_ledger import ZERO, AggregateLedger, as_decimal, clamp_non_negative, sum_children
from app.services.references import ensure_row, reject_nulls

logger = structlog.get_logger(__name__)

ZONE_FIELDS = ('zone_name', 'tile_id', 'area_sqft', 'wastage_pct', 'required_qty', 'sort_order')
NON_NULL_ZONE_FIELDS = ('zone_name', 'wastage_pct', 'required_qty', 'sort_order')


@dataclass(frozen=True)
class RequirementView:
    id: int
    room_id: int
    tile_id: int
    required_qty: Decimal
    received_qty: Decimal
    shortage_qty: Decimal
    status: RequirementStatus
    last_updated: datetime | None


def shortage_for(required_qty, received_qty) -> Decimal:
    # Over-delivery reads as zero shortage, never negative.
    return clamp_non_negative(as_decimal(required_qty) - as_decimal(received_qty))


def _upsert_required_qty(db: Session, *, room_id: int, tile_id: int, required_qty: Decimal) -> None:
    dialect = dialect_name(db)
    if dialect in ('postgresql', 'sqlite'):
        insert_fn = pg_insert if dialect == 'postgresql' else sqlite_insert
        stmt = insert_fn(RoomTileRequirement).values(
            room_id=room_id,
            tile_id=tile_id,
            required_qty=required_qty,
            received_qty=ZERO,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['room_id', 'tile_id'],
            set_={'required_qty': stmt.excluded.required_qty, 'last_updated': func.now()},
        )
        db.execute(stmt)
        return

    existing = db.execute(
        select(RoomTileRequirement)
        .where(RoomTileRequirement.room_id == room_id, RoomTileRequirement.tile_id == tile_id)
        .with_for_update()
    ).scalar_one_or_none()
    if existing:
        existing.required_qty = required_qty
        existing.last_updated = func.now()
    else:
        db.add(RoomTileRequirement(room_id=room_id, tile_id=tile_id, required_qty=required_qty, received_qty=ZERO))


class RequirementLedger(AggregateLedger[tuple[int, int], RoomTileRequirement, RequirementView]):
    """Room/tile requirement: ``required_qty`` summed from zones, ``received_qty`` grown by fulfillment.

    ``recompute`` only ever writes ``required_qty``; ``received_qty`` is owned by
    ``increment_received``. Shortage is a read-time projection and is never stored.
    """

    name = 'requirement_ledger'

    def recompute(self, db: Session, key: tuple[int, int]) -> RoomTileRequirement | None:
        room_id, tile_id = key
        total = sum_children(
            db,
            RoomTileZone.required_qty,
            RoomTileZone.room_id == room_id,
            RoomTileZone.tile_id == tile_id,
        )
        _upsert_required_qty(db, room_id=room_id, tile_id=tile_id, required_qty=total)
        db.flush()
        requirement = db.execute(
            select(RoomTileRequirement)
            .where(RoomTileRequirement.room_id == room_id, RoomTileRequirement.tile_id == tile_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        logger.info('requirement.synced', room_id=room_id, tile_id=tile_id, required_qty=str(total))
        return requirement

    def project(self, parent: RoomTileRequirement) -> RequirementView:
        shortage = shortage_for(parent.required_qty, parent.received_qty)
        return RequirementView(
            id=parent.id,
            room_id=parent.room_id,
            tile_id=parent.tile_id,
            required_qty=as_decimal(parent.required_qty),
            received_qty=as_decimal(parent.received_qty),
            shortage_qty=shortage,
            status=RequirementStatus.FULFILLED if shortage == ZERO else RequirementStatus.SHORTAGE,
            last_updated=parent.last_updated,
        )

    def increment_received(self, db: Session, *, requirement_id: int, delta: Decimal) -> None:
        """Add ``delta`` to ``received_qty`` with a relative UPDATE so concurrent producers never lose writes."""
        if delta < ZERO:
            raise ValidationError('Received quantity can only grow')
        try:
            db.execute(
                update(RoomTileRequirement)
                .where(RoomTileRequirement.id == requirement_id)
                .values(received_qty=RoomTileRequirement.received_qty + delta, last_updated=func.now())
                .execution_options(synchronize_session=False)
            )
            db.flush()
        except SQLAlchemyError as exc:
            logger.error('ledger.sync_failed', ledger=self.name, key=requirement_id, exc_info=True)
            raise ConsistencyFailure(self.name, requirement_id) from exc


requirement_ledger = RequirementLedger()


def requirement_to_dict(requirement: RoomTileRequirement, *, extra: dict | None = None) -> dict:
    view = requirement_ledger.project(requirement)
    row = {
        'id': view.id,
        'room_id': view.room_id,
        'tile_id': view.tile_id,
        'required_qty': view.required_qty,
        'received_qty': view.received_qty,
        'shortage_qty': view.shortage_qty,
        'status': view.status.value,
        'last_updated': view.last_updated,
    }
    if extra:
        row.update(extra)
    return row


def _get_room(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if not room:
        raise NotFoundError('Room not found')
    return room


def _ensure_tile(db: Session, tile_id: int | None) -> None:
    ensure_row(db, Tile, tile_id, 'tile')


def _clean_qty(value, *, field: str) -> Decimal:
    qty = as_decimal(value)
    if qty < ZERO:
        raise ValidationError(f'{field} cannot be negative')
    return qty


def zone_to_dict(zone: RoomTileZone) -> dict:
    return {
        'id': zone.id,
        'room_id': zone.room_id,
        'zone_name': zone.zone_name,
        'tile_id': zone.tile_id,
        'area_sqft': zone.area_sqft,
        'wastage_pct': zone.wastage_pct,
        'required_qty': zone.required_qty,
        'sort_order': zone.sort_order,
    }


def list_zones(db: Session, *, room_id: int) -> list[dict]:
    _get_room(db, room_id)
    zones = db.execute(
        select(RoomTileZone)
        .where(RoomTileZone.room_id == room_id)
        .order_by(RoomTileZone.sort_order.asc(), RoomTileZone.id.asc())
    ).scalars().all()
    return [zone_to_dict(zone) for zone in zones]


def create_zone(
    db: Session,
    *,
    room_id: int,
    zone_name: str,
    tile_id: int | None = None,
    area_sqft: Decimal | None = None,
    wastage_pct: Decimal | None = None,
    required_qty: Decimal | None = None,
    sort_order: int = 0,
) -> RoomTileZone:
    clean_name = (zone_name or '').strip()
    if not clean_name:
        raise ValidationError('Zone name is required')
    _get_room(db, room_id)
    _ensure_tile(db, tile_id)

    zone = RoomTileZone(
        room_id=room_id,
        zone_name=clean_name,
        tile_id=tile_id,
        area_sqft=area_sqft,
        wastage_pct=wastage_pct if wastage_pct is not None else Decimal('10'),
        required_qty=_clean_qty(required_qty, field='Required quantity'),
        sort_order=sort_order or 0,
    )
    db.add(zone)
    db.flush()

    if zone.tile_id is not None:
        requirement_ledger.synchronize(db, (room_id, zone.tile_id))
    return zone


def update_zone(db: Session, *, room_id: int, zone_id: int, changes: dict) -> RoomTileZone:
    unknown = set(changes) - set(ZONE_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown zone fields: {", ".join(sorted(unknown))}')
    if not changes:
        raise ValidationError('No fields to update')
    reject_nulls(changes, NON_NULL_ZONE_FIELDS)

    zone = db.execute(
        select(RoomTileZone).where(RoomTileZone.id == zone_id, RoomTileZone.room_id == room_id)
    ).scalar_one_or_none()
    if not zone:
        raise NotFoundError('Zone not found')

    previous_tile_id = zone.tile_id
    for field, value in changes.items():
        if field == 'zone_name':
            value = (value or '').strip()
            if not value:
                raise ValidationError('Zone name is required')
        elif field == 'tile_id':
            _ensure_tile(db, value)
        elif field == 'required_qty':
            value = _clean_qty(value, field='Required quantity')
        setattr(zone, field, value)
    db.flush()

    if zone.tile_id is not None:
        requirement_ledger.synchronize(db, (room_id, zone.tile_id))
    if (
        previous_tile_id is not None
        and previous_tile_id != zone.tile_id
        and settings.resync_previous_tile_on_reassign
    ):
        requirement_ledger.synchronize(db, (room_id, previous_tile_id))
    return zone


def delete_zone(db: Session, *, room_id: int, zone_id: int) -> None:
    zone = db.execute(
        select(RoomTileZone).where(RoomTileZone.id == zone_id, RoomTileZone.room_id == room_id)
    ).scalar_one_or_none()
    if not zone:
        raise NotFoundError('Zone not found')

    tile_id = zone.tile_id
    db.delete(zone)
    db.flush()
    if tile_id is not None:
        requirement_ledger.synchronize(db, (room_id, tile_id))


def get_requirement(db: Session, *, room_id: int, tile_id: int) -> RoomTileRequirement | None:
    return db.execute(
        select(RoomTileRequirement)
        .where(RoomTileRequirement.room_id == room_id, RoomTileRequirement.tile_id == tile_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def list_room_requirements(db: Session, *, room_id: int) -> list[dict]:
    _get_room(db, room_id)
    rows = db.execute(
        select(RoomTileRequirement, Tile.brand, Tile.size_label)
        .join(Tile, Tile.id == RoomTileRequirement.tile_id)
        .where(RoomTileRequirement.room_id == room_id)
        .order_by(Tile.brand.asc(), RoomTileRequirement.id.asc())
        .execution_options(populate_existing=True)
    ).all()
    return [
        requirement_to_dict(requirement, extra={'brand': brand, 'size_label': size_label})
        for requirement, brand, size_label in rows
    ]


def site_tile_report(db: Session, *, site_id: int) -> list[dict]:
    rows = db.execute(
        select(RoomTileRequirement, Room.name, Tile.brand, Tile.size_label, Tile.tile_type)
        .join(Room, Room.id == RoomTileRequirement.room_id)
        .join(Tile, Tile.id == RoomTileRequirement.tile_id)
        .where(Room.site_id == site_id)
        .order_by(Room.name.asc(), Tile.brand.asc(), RoomTileRequirement.id.asc())
        .execution_options(populate_existing=True)
    ).all()
    return [
        requirement_to_dict(
            requirement,
            extra={
                'room_name': room_name,
                'tile_brand': brand,
                'tile_size': size_label,
                'tile_type': tile_type,
            },
        )
        for requirement, room_name, brand, size_label, tile_type in rows
    ]
