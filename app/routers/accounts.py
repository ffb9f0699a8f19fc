from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.dependencies import translate_service_errors
from app.schemas import ExpenseCreate, ExpenseUpdate, LineItemCreate, MilestoneCreate, MilestoneUpdate, PaymentCreate
from app.services.fulfillment_service import add_line_item, line_item_to_dict
from app.services.milestone_service import create_milestone, list_milestones, milestone_to_dict, update_milestone
from app.services.notification_service import (
    Notifier,
    list_notifications,
    mark_notification_read,
    notification_to_dict,
)
from app.services.payment_ledger_service import (
    create_expense,
    delete_payment,
    expense_to_dict,
    get_expense_detail,
    list_expenses,
    list_payments,
    payment_to_dict,
    record_payment,
    soft_delete_expense,
    update_expense_header,
    vendor_payment_report,
)
from app.services.provider_factory import get_notifier

router = APIRouter(prefix='/accounts', tags=['accounts'])


@router.get('/expenses')
def expenses_list(site_id: int | None = None, db: Session = Depends(get_db)):
    return list_expenses(db, site_id=site_id)


@router.post('/expenses', status_code=201)
def expenses_create(payload: ExpenseCreate, db: Session = Depends(get_db)):
    with translate_service_errors('Expense could not be created'):
        expense = create_expense(
            db,
            site_id=payload.site_id,
            expense_date=payload.date,
            expense_type=payload.type,
            total_amount=payload.total_amount,
            vendor_id=payload.vendor_id,
            invoice_number=payload.invoice_number,
            invoice_date=payload.invoice_date,
            gst_amount=payload.gst_amount,
            note=payload.note,
            recorded_by=payload.recorded_by,
        )
    db.commit()
    return expense_to_dict(expense)


@router.get('/expenses/{expense_id}')
def expenses_detail(expense_id: int, db: Session = Depends(get_db)):
    with translate_service_errors('Expense could not be loaded'):
        return get_expense_detail(db, expense_id=expense_id)


@router.patch('/expenses/{expense_id}')
def expenses_update(expense_id: int, payload: ExpenseUpdate, db: Session = Depends(get_db)):
    with translate_service_errors('Expense could not be updated'):
        expense = update_expense_header(db, expense_id=expense_id, changes=payload.changes())
    db.commit()
    return expense_to_dict(expense)


@router.delete('/expenses/{expense_id}')
def expenses_delete(expense_id: int, db: Session = Depends(get_db)):
    with translate_service_errors('Expense could not be deleted'):
        soft_delete_expense(db, expense_id=expense_id)
    db.commit()
    return {'ok': True}


@router.get('/expenses/{expense_id}/payments')
def payments_list(expense_id: int, db: Session = Depends(get_db)):
    return list_payments(db, expense_id=expense_id)


@router.post('/expenses/{expense_id}/payments', status_code=201)
def payments_create(expense_id: int, payload: PaymentCreate, db: Session = Depends(get_db)):
    with translate_service_errors('Payment could not be recorded'):
        payment = record_payment(
            db,
            expense_id=expense_id,
            payment_date=payload.date,
            amount=payload.amount,
            mode=payload.mode,
            reference=payload.reference,
            note=payload.note,
            recorded_by=payload.recorded_by,
        )
    db.commit()
    return payment_to_dict(payment)


@router.delete('/expenses/{expense_id}/payments/{payment_id}')
def payments_delete(expense_id: int, payment_id: int, db: Session = Depends(get_db)):
    with translate_service_errors('Payment could not be deleted'):
        expense = delete_payment(db, expense_id=expense_id, payment_id=payment_id)
    db.commit()
    return expense_to_dict(expense)


@router.post('/expenses/{expense_id}/line-items', status_code=201)
def line_items_create(
    expense_id: int,
    payload: LineItemCreate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    with translate_service_errors('Line item could not be recorded'):
        line_item, result = add_line_item(
            db,
            expense_id=expense_id,
            description=payload.description,
            quantity=payload.quantity,
            rate=payload.rate,
            amount=payload.amount,
            notifier=notifier,
            tile_id=payload.tile_id,
            room_id=payload.room_id,
            unit=payload.unit,
            sort_order=payload.sort_order,
            owner_user_id=payload.owner_user_id,
        )
    db.commit()
    return {**line_item_to_dict(line_item), 'fulfillment': result.as_dict()}


@router.get('/milestones')
def milestones_list(
    site_id: int | None = None,
    team_id: int | None = None,
    db: Session = Depends(get_db),
):
    return list_milestones(db, site_id=site_id, team_id=team_id)


@router.post('/milestones', status_code=201)
def milestones_create(payload: MilestoneCreate, db: Session = Depends(get_db)):
    with translate_service_errors('Milestone could not be created'):
        milestone = create_milestone(
            db,
            site_id=payload.site_id,
            team_id=payload.team_id,
            milestone_name=payload.milestone_name,
            milestone_amount=payload.milestone_amount,
            due_date=payload.due_date,
            note=payload.note,
        )
    db.commit()
    return milestone_to_dict(milestone)


@router.patch('/milestones/{milestone_id}')
def milestones_update(
    milestone_id: int,
    payload: MilestoneUpdate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    with translate_service_errors('Milestone could not be updated'):
        milestone = update_milestone(db, milestone_id=milestone_id, changes=payload.changes(), notifier=notifier)
    db.commit()
    return milestone_to_dict(milestone)


@router.get('/notifications')
def notifications_list(user_id: int, db: Session = Depends(get_db)):
    return list_notifications(db, user_id=user_id, limit=settings.notification_list_limit)


@router.patch('/notifications/{notification_id}/read')
def notifications_mark_read(notification_id: int, db: Session = Depends(get_db)):
    with translate_service_errors('Notification could not be updated'):
        notification = mark_notification_read(db, notification_id=notification_id)
    db.commit()
    return notification_to_dict(notification)


@router.get('/reports/vendor-payments')
def vendor_payments_report(
    from_date: date = Query(..., alias='from'),
    to_date: date = Query(..., alias='to'),
    vendor_id: int | None = None,
    db: Session = Depends(get_db),
):
    with translate_service_errors('Report could not be built'):
        return vendor_payment_report(db, from_date=from_date, to_date=to_date, vendor_id=vendor_id)
