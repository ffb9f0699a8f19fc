from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class ExpenseCreate(BaseModel):
    site_id: int
    date: dt.date
    type: str = Field(..., max_length=64)
    total_amount: Decimal
    vendor_id: int | None = None
    invoice_number: str | None = None
    invoice_date: dt.date | None = None
    gst_amount: Decimal | None = None
    note: str | None = None
    recorded_by: int | None = None


class ExpenseUpdate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    date: dt.date | None = None
    type: str | None = Field(None, max_length=64)
    vendor_id: int | None = None
    invoice_number: str | None = None
    invoice_date: dt.date | None = None
    total_amount: Decimal | None = None
    gst_amount: Decimal | None = None
    note: str | None = None

    def changes(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        if 'date' in data:
            data['expense_date'] = data.pop('date')
        return data


class PaymentCreate(BaseModel):
    # Left optional so a missing value is reported by the ledger as a 400.
    date: dt.date | None = None
    amount: Decimal | None = None
    mode: str | None = Field(None, max_length=32)
    reference: str | None = None
    note: str | None = None
    recorded_by: int | None = None


class LineItemCreate(BaseModel):
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal
    tile_id: int | None = None
    room_id: int | None = None
    unit: str | None = Field(None, max_length=32)
    sort_order: int = 0
    owner_user_id: int | None = None


class ZoneCreate(BaseModel):
    zone_name: str
    tile_id: int | None = None
    area_sqft: Decimal | None = None
    wastage_pct: Decimal | None = None
    required_qty: Decimal = Decimal('0')
    sort_order: int = 0


class ZoneUpdate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    zone_name: str | None = None
    tile_id: int | None = None
    area_sqft: Decimal | None = None
    wastage_pct: Decimal | None = None
    required_qty: Decimal | None = None
    sort_order: int | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class ShortageCreate(BaseModel):
    site_id: int
    room_id: int
    tile_id: int
    requested_qty: Decimal
    urgency: str | None = Field(None, max_length=16)
    note: str | None = None
    requested_by: int | None = None


class ShortageStatusUpdate(BaseModel):
    status: str | None = None
    approved_by: int | None = None


class MilestoneCreate(BaseModel):
    site_id: int
    team_id: int
    milestone_name: str
    milestone_amount: Decimal
    due_date: dt.date | None = None
    note: str | None = None


class MilestoneUpdate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    status: str | None = None
    paid_date: dt.date | None = None
    paid_by: int | None = None
    note: str | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class AssignmentCreate(BaseModel):
    site_id: int
    worker_id: int
    room_id: int
    surface_type: str = Field(..., max_length=32)
    rate_per_sqft: Decimal
    contracted_sqft: Decimal


class AssignmentUpdate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    status: str | None = None
    rate_per_sqft: Decimal | None = None
    contracted_sqft: Decimal | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class ProgressCreate(BaseModel):
    date: dt.date | None = None
    verified_sqft: Decimal | None = None
    note: str | None = None
    verified_by: int | None = None
