from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError, ValidationError
from app.models import Expense, ExpenseLineItem, ExpensePayment, PaymentStatus, Profile, Site, Vendor
from app.services.aggregate_ledger import ZERO, AggregateLedger, as_decimal, clamp_non_negative, sum_children
from app.services.references import ensure_row, reject_nulls

logger = structlog.get_logger(__name__)

CENT = Decimal('0.01')

EXPENSE_HEADER_FIELDS = (
    'expense_date',
    'type',
    'vendor_id',
    'invoice_number',
    'invoice_date',
    'total_amount',
    'gst_amount',
    'note',
)
NON_NULL_HEADER_FIELDS = ('expense_date', 'type', 'total_amount')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _money(value) -> Decimal:
    return as_decimal(value).quantize(CENT)


def payment_status_for(paid_amount: Decimal, total_amount: Decimal) -> PaymentStatus:
    if paid_amount <= ZERO:
        return PaymentStatus.UNPAID
    if paid_amount < total_amount:
        return PaymentStatus.PARTIAL
    return PaymentStatus.PAID


@dataclass(frozen=True)
class PaymentView:
    expense_id: int
    total_amount: Decimal
    paid_amount: Decimal
    balance_due: Decimal
    payment_status: PaymentStatus


class PaymentLedger(AggregateLedger[int, Expense, PaymentView]):
    """Expense ``paid_amount``/``payment_status`` derived from its payments at write time."""

    name = 'payment_ledger'

    def recompute(self, db: Session, key: int) -> Expense | None:
        expense = db.get(Expense, key)
        if expense is None:
            return None
        paid = _money(sum_children(db, ExpensePayment.amount, ExpensePayment.expense_id == key))
        expense.paid_amount = paid
        expense.payment_status = payment_status_for(paid, _money(expense.total_amount))
        expense.updated_at = _now()
        return expense

    def project(self, parent: Expense) -> PaymentView:
        total = _money(parent.total_amount)
        paid = _money(parent.paid_amount)
        return PaymentView(
            expense_id=parent.id,
            total_amount=total,
            paid_amount=paid,
            balance_due=clamp_non_negative(total - paid),
            payment_status=parent.payment_status,
        )


payment_ledger = PaymentLedger()


def _lock_expense(db: Session, expense_id: int) -> Expense:
    # Row lock serializes concurrent payment writers on the same expense.
    expense = db.execute(
        select(Expense).where(Expense.id == expense_id, Expense.is_deleted.is_(False)).with_for_update()
    ).scalar_one_or_none()
    if not expense:
        raise NotFoundError('Expense not found')
    return expense


def expense_to_dict(expense: Expense) -> dict:
    view = payment_ledger.project(expense)
    return {
        'id': expense.id,
        'site_id': expense.site_id,
        'date': expense.expense_date,
        'type': expense.type,
        'vendor_id': expense.vendor_id,
        'invoice_number': expense.invoice_number,
        'invoice_date': expense.invoice_date,
        'total_amount': view.total_amount,
        'gst_amount': expense.gst_amount,
        'paid_amount': view.paid_amount,
        'balance_due': view.balance_due,
        'payment_status': view.payment_status.value,
        'note': expense.note,
        'recorded_by': expense.recorded_by,
        'created_at': expense.created_at,
        'updated_at': expense.updated_at,
    }


def payment_to_dict(payment: ExpensePayment) -> dict:
    return {
        'id': payment.id,
        'expense_id': payment.expense_id,
        'date': payment.payment_date,
        'amount': payment.amount,
        'mode': payment.mode,
        'reference': payment.reference,
        'note': payment.note,
        'recorded_by': payment.recorded_by,
    }


def create_expense(
    db: Session,
    *,
    site_id: int,
    expense_date: date,
    expense_type: str,
    total_amount: Decimal,
    vendor_id: int | None = None,
    invoice_number: str | None = None,
    invoice_date: date | None = None,
    gst_amount: Decimal | None = None,
    note: str | None = None,
    recorded_by: int | None = None,
) -> Expense:
    if expense_date is None:
        raise ValidationError('Expense date is required')
    clean_type = (expense_type or '').strip()
    if not clean_type:
        raise ValidationError('Expense type is required')
    total = _money(total_amount)
    if total < ZERO:
        raise ValidationError('Total amount cannot be negative')
    ensure_row(db, Site, site_id, 'site')
    ensure_row(db, Vendor, vendor_id, 'vendor')
    ensure_row(db, Profile, recorded_by, 'profile')

    expense = Expense(
        site_id=site_id,
        expense_date=expense_date,
        type=clean_type,
        vendor_id=vendor_id,
        invoice_number=invoice_number,
        invoice_date=invoice_date,
        total_amount=total,
        gst_amount=_money(gst_amount or ZERO),
        paid_amount=Decimal('0.00'),
        payment_status=PaymentStatus.UNPAID,
        note=note,
        recorded_by=recorded_by,
    )
    db.add(expense)
    db.flush()
    return expense


def get_expense(db: Session, *, expense_id: int) -> Expense:
    expense = db.execute(
        select(Expense).where(Expense.id == expense_id, Expense.is_deleted.is_(False))
    ).scalar_one_or_none()
    if not expense:
        raise NotFoundError('Expense not found')
    return expense


def get_expense_detail(db: Session, *, expense_id: int) -> dict:
    expense = get_expense(db, expense_id=expense_id)
    line_items = db.execute(
        select(ExpenseLineItem)
        .where(ExpenseLineItem.expense_id == expense_id)
        .order_by(ExpenseLineItem.sort_order.asc(), ExpenseLineItem.id.asc())
    ).scalars().all()
    detail = expense_to_dict(expense)
    detail['line_items'] = [
        {
            'id': item.id,
            'description': item.description,
            'tile_id': item.tile_id,
            'room_id': item.room_id,
            'quantity': item.quantity,
            'unit': item.unit,
            'rate': item.rate,
            'amount': item.amount,
            'sort_order': item.sort_order,
        }
        for item in line_items
    ]
    detail['payments'] = list_payments(db, expense_id=expense_id)
    return detail


def list_expenses(db: Session, *, site_id: int | None = None) -> list[dict]:
    query = (
        select(Expense)
        .where(Expense.is_deleted.is_(False))
        .order_by(Expense.expense_date.desc(), Expense.created_at.desc(), Expense.id.desc())
    )
    if site_id:
        query = query.where(Expense.site_id == site_id)
    return [expense_to_dict(expense) for expense in db.execute(query).scalars().all()]


def update_expense_header(db: Session, *, expense_id: int, changes: dict) -> Expense:
    unknown = set(changes) - set(EXPENSE_HEADER_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown expense fields: {", ".join(sorted(unknown))}')
    if not changes:
        raise ValidationError('No fields to update')
    reject_nulls(changes, NON_NULL_HEADER_FIELDS)
    if 'vendor_id' in changes:
        ensure_row(db, Vendor, changes['vendor_id'], 'vendor')

    expense = _lock_expense(db, expense_id)
    for field, value in changes.items():
        if field == 'type':
            value = value.strip()
            if not value:
                raise ValidationError('Expense type is required')
        if field == 'total_amount':
            if value is None or _money(value) < ZERO:
                raise ValidationError('Total amount cannot be negative')
            value = _money(value)
        if field == 'gst_amount':
            value = _money(value or ZERO)
        setattr(expense, field, value)
    expense.updated_at = _now()
    db.flush()

    # Same paid amount may now sit on the other side of a threshold.
    if 'total_amount' in changes:
        payment_ledger.synchronize(db, expense.id)
    return expense


def soft_delete_expense(db: Session, *, expense_id: int) -> None:
    expense = _lock_expense(db, expense_id)
    expense.is_deleted = True
    expense.updated_at = _now()
    db.flush()


def list_payments(db: Session, *, expense_id: int) -> list[dict]:
    payments = db.execute(
        select(ExpensePayment)
        .where(ExpensePayment.expense_id == expense_id)
        .order_by(ExpensePayment.payment_date.desc(), ExpensePayment.id.desc())
    ).scalars().all()
    return [payment_to_dict(payment) for payment in payments]


def record_payment(
    db: Session,
    *,
    expense_id: int,
    payment_date: date,
    amount: Decimal,
    mode: str | None = None,
    reference: str | None = None,
    note: str | None = None,
    recorded_by: int | None = None,
) -> ExpensePayment:
    if payment_date is None:
        raise ValidationError('Payment date is required')
    if amount is None:
        raise ValidationError('Payment amount is required')
    clean_amount = _money(amount)
    if clean_amount <= ZERO:
        raise ValidationError('Payment amount must be greater than zero')
    ensure_row(db, Profile, recorded_by, 'profile')

    expense = _lock_expense(db, expense_id)
    payment = ExpensePayment(
        expense_id=expense.id,
        payment_date=payment_date,
        amount=clean_amount,
        mode=mode,
        reference=reference,
        note=note,
        recorded_by=recorded_by,
    )
    db.add(payment)
    db.flush()

    payment_ledger.synchronize(db, expense.id)
    logger.info(
        'payment.recorded',
        expense_id=expense.id,
        payment_id=payment.id,
        amount=str(clean_amount),
        paid_amount=str(expense.paid_amount),
        payment_status=expense.payment_status.value,
    )
    return payment


def delete_payment(db: Session, *, expense_id: int, payment_id: int) -> Expense:
    expense = _lock_expense(db, expense_id)
    payment = db.execute(
        select(ExpensePayment).where(ExpensePayment.id == payment_id, ExpensePayment.expense_id == expense.id)
    ).scalar_one_or_none()
    if not payment:
        raise NotFoundError('Payment not found')

    db.delete(payment)
    db.flush()
    payment_ledger.synchronize(db, expense.id)
    logger.info('payment.deleted', expense_id=expense.id, payment_id=payment_id, paid_amount=str(expense.paid_amount))
    return expense


def vendor_payment_report(
    db: Session,
    *,
    from_date: date,
    to_date: date,
    vendor_id: int | None = None,
) -> list[dict]:
    if from_date > to_date:
        raise ValidationError('from date must not be after to date')

    query = (
        select(Expense, Vendor.name, Vendor.phone)
        .join(Vendor, Vendor.id == Expense.vendor_id)
        .where(
            Expense.is_deleted.is_(False),
            Expense.expense_date >= from_date,
            Expense.expense_date <= to_date,
        )
        .order_by(Vendor.name.asc(), Expense.expense_date.asc(), Expense.id.asc())
    )
    if vendor_id:
        query = query.where(Expense.vendor_id == vendor_id)

    rows = []
    for expense, vendor_name, vendor_phone in db.execute(query).all():
        view = payment_ledger.project(expense)
        rows.append(
            {
                'vendor_id': expense.vendor_id,
                'vendor_name': vendor_name,
                'phone': vendor_phone,
                'expense_id': expense.id,
                'date': expense.expense_date,
                'invoice_number': expense.invoice_number,
                'total_amount': view.total_amount,
                'paid_amount': view.paid_amount,
                'balance_due': view.balance_due,
                'payment_status': view.payment_status.value,
            }
        )
    return rows
