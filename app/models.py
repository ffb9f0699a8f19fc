from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only auto-increments INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class PaymentStatus(str, Enum):
    UNPAID = 'unpaid'
    PARTIAL = 'partial'
    PAID = 'paid'


class ShortageStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    RECEIVED = 'received'


class RequirementStatus(str, Enum):
    FULFILLED = 'fulfilled'
    SHORTAGE = 'shortage'


class MilestoneStatus(str, Enum):
    PENDING = 'pending'
    PAID = 'paid'


class AssignmentStatus(str, Enum):
    ASSIGNED = 'assigned'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


class NotificationType(str, Enum):
    TILE_PURCHASED_UNASSIGNED = 'tile_purchased_unassigned'
    SHORTAGE_REQUEST = 'shortage_request'
    MILESTONE_PAID = 'milestone_paid'


class Site(Base):
    __tablename__ = 'sites'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Profile(Base):
    __tablename__ = 'profiles'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Vendor(Base):
    __tablename__ = 'vendors'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Tile(Base):
    __tablename__ = 'tile_master'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    brand: Mapped[str] = mapped_column(Text, nullable=False)
    size_label: Mapped[str | None] = mapped_column(Text)
    tile_type: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')


class Expense(Base):
    __tablename__ = 'expenses'
    __table_args__ = (
        CheckConstraint('total_amount >= 0', name='expenses_total_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    site_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sites.id'), nullable=False, index=True)
    expense_date: Mapped[date] = mapped_column('date', Date, nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    vendor_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('vendors.id'), index=True)
    invoice_number: Mapped[str | None] = mapped_column(Text)
    invoice_date: Mapped[date | None] = mapped_column(Date)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    gst_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, 'payment_status'),
        nullable=False,
        default=PaymentStatus.UNPAID,
        server_default=PaymentStatus.UNPAID.value,
        index=True,
    )
    note: Mapped[str | None] = mapped_column(Text)
    recorded_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('profiles.id'))
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ExpensePayment(Base):
    __tablename__ = 'expense_payments'
    __table_args__ = (
        CheckConstraint('amount > 0', name='expense_payments_amount_positive_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    expense_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('expenses.id', ondelete='CASCADE'), nullable=False, index=True
    )
    payment_date: Mapped[date] = mapped_column('date', Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    mode: Mapped[str | None] = mapped_column(String(32))
    reference: Mapped[str | None] = mapped_column(Text)
    note: Mapped[str | None] = mapped_column(Text)
    recorded_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('profiles.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ExpenseLineItem(Base):
    __tablename__ = 'expense_line_items'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    expense_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('expenses.id', ondelete='CASCADE'), nullable=False, index=True
    )
    tile_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('tile_master.id'), index=True)
    room_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('rooms.id'))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(32))
    rate: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Room(Base):
    __tablename__ = 'rooms'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    site_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sites.id'), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    surface_type: Mapped[str] = mapped_column(String(32), nullable=False, default='floor', server_default='floor')
    length_ft: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    width_ft: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default='planned', server_default='planned')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RoomTileZone(Base):
    __tablename__ = 'room_tile_zones'
    __table_args__ = (
        CheckConstraint('required_qty >= 0', name='room_tile_zones_required_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    room_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('rooms.id', ondelete='CASCADE'), nullable=False, index=True)
    zone_name: Mapped[str] = mapped_column(Text, nullable=False)
    tile_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('tile_master.id'))
    area_sqft: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    wastage_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('10'), server_default='10')
    required_qty: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal('0'), server_default='0')
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')


class RoomTileRequirement(Base):
    __tablename__ = 'room_tile_requirements'
    __table_args__ = (
        UniqueConstraint('room_id', 'tile_id', name='room_tile_requirements_room_tile_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    room_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('rooms.id', ondelete='CASCADE'), nullable=False)
    tile_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('tile_master.id'), nullable=False)
    required_qty: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal('0'), server_default='0')
    received_qty: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal('0'), server_default='0')
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class MaterialShortageRequest(Base):
    __tablename__ = 'material_shortage_requests'
    __table_args__ = (
        CheckConstraint('requested_qty > 0', name='material_shortage_requests_qty_positive_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    site_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sites.id'), nullable=False, index=True)
    room_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('rooms.id', ondelete='CASCADE'), nullable=False)
    tile_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('tile_master.id'), nullable=False)
    requested_qty: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    urgency: Mapped[str] = mapped_column(String(16), nullable=False, default='normal', server_default='normal')
    status: Mapped[ShortageStatus] = mapped_column(
        _enum(ShortageStatus, 'shortage_status'),
        nullable=False,
        default=ShortageStatus.PENDING,
        server_default=ShortageStatus.PENDING.value,
    )
    note: Mapped[str | None] = mapped_column(Text)
    requested_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('profiles.id'))
    approved_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('profiles.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Notification(Base):
    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(Text)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class GangContractMilestone(Base):
    __tablename__ = 'gang_contract_milestones'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    site_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sites.id'), nullable=False, index=True)
    team_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    milestone_name: Mapped[str] = mapped_column(Text, nullable=False)
    milestone_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[MilestoneStatus] = mapped_column(
        _enum(MilestoneStatus, 'milestone_status'),
        nullable=False,
        default=MilestoneStatus.PENDING,
        server_default=MilestoneStatus.PENDING.value,
    )
    paid_date: Mapped[date | None] = mapped_column(Date)
    paid_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('profiles.id'))
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TileMasonAssignment(Base):
    __tablename__ = 'tile_mason_assignments'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    site_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sites.id'), nullable=False, index=True)
    worker_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    room_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('rooms.id', ondelete='CASCADE'), nullable=False)
    surface_type: Mapped[str] = mapped_column(String(32), nullable=False)
    rate_per_sqft: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    contracted_sqft: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    completed_sqft: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'), server_default='0')
    status: Mapped[AssignmentStatus] = mapped_column(
        _enum(AssignmentStatus, 'assignment_status'),
        nullable=False,
        default=AssignmentStatus.ASSIGNED,
        server_default=AssignmentStatus.ASSIGNED.value,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TileMasonProgress(Base):
    __tablename__ = 'tile_mason_progress'
    __table_args__ = (
        CheckConstraint('verified_sqft >= 0', name='tile_mason_progress_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    assignment_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('tile_mason_assignments.id', ondelete='CASCADE'), nullable=False, index=True
    )
    progress_date: Mapped[date] = mapped_column('date', Date, nullable=False)
    verified_sqft: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    note: Mapped[str | None] = mapped_column(Text)
    verified_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('profiles.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
