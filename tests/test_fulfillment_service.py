from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from app.db import build_engine, create_schema, make_session_factory
from app.errors import NotFoundError, ValidationError
from app.models import (
    ExpenseLineItem,
    Notification,
    NotificationType,
    Profile,
    Room,
    RoomTileRequirement,
    ShortageStatus,
    Site,
    Tile,
)
from app.services.fulfillment_service import (
    FulfillmentOutcome,
    add_line_item,
    create_shortage_request,
    list_shortage_requests,
    update_shortage_status,
)
from app.services.notification_service import Notifier, RoleRecipientResolver
from app.services.payment_ledger_service import create_expense, soft_delete_expense
from app.services.requirement_ledger_service import create_zone, get_requirement, requirement_to_dict


class FulfillmentServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine('sqlite://')
        create_schema(self.engine)
        self.db = make_session_factory(self.engine)()
        self.notifier = Notifier(RoleRecipientResolver())

        self.site = Site(name='Site A')
        self.other_site = Site(name='Site B')
        self.db.add_all([self.site, self.other_site])
        self.db.flush()
        self.owner = Profile(full_name='Owner', role='owner')
        self.room = Room(site_id=self.site.id, name='Living Room')
        self.tile = Tile(brand='Kajaria', size_label='600x600')
        self.unplanned_tile = Tile(brand='Nitco', size_label='800x800')
        self.db.add_all([self.owner, self.room, self.tile, self.unplanned_tile])
        self.db.flush()

        create_zone(self.db, room_id=self.room.id, zone_name='Floor', tile_id=self.tile.id, required_qty=Decimal('50'))
        create_zone(self.db, room_id=self.room.id, zone_name='Skirting', tile_id=self.tile.id, required_qty=Decimal('30'))
        self.expense = create_expense(
            self.db,
            site_id=self.site.id,
            expense_date=date(2024, 5, 1),
            expense_type='material',
            total_amount=Decimal('50000'),
        )

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _requirement(self, room_id: int | None = None) -> RoomTileRequirement:
        return get_requirement(self.db, room_id=room_id or self.room.id, tile_id=self.tile.id)

    def _buy(self, qty: str, tile_id: int | None = None, room_id: int | None = None):
        return add_line_item(
            self.db,
            expense_id=self.expense.id,
            description='Tiles',
            quantity=Decimal(qty),
            rate=Decimal('45'),
            amount=Decimal(qty) * Decimal('45'),
            notifier=self.notifier,
            tile_id=self.tile.id if tile_id is None else tile_id,
            room_id=room_id,
        )

    def _shortage(self, qty: str, room_id: int | None = None):
        return create_shortage_request(
            self.db,
            site_id=self.site.id,
            room_id=room_id or self.room.id,
            tile_id=self.tile.id,
            requested_qty=Decimal(qty),
            notifier=self.notifier,
        )

    def _notifications(self, kind: NotificationType) -> list[Notification]:
        return self.db.execute(select(Notification).where(Notification.type == kind.value)).scalars().all()

    def test_received_shortage_then_tagged_purchase_fulfills_requirement(self) -> None:
        shortage = self._shortage('20')
        _, result = update_shortage_status(self.db, shortage_id=shortage.id, status='received')

        self.assertEqual(result.outcome, FulfillmentOutcome.APPLIED)
        view = requirement_to_dict(self._requirement())
        self.assertEqual(view['received_qty'], Decimal('20'))
        self.assertEqual(view['shortage_qty'], Decimal('60'))

        _, result = self._buy('60')

        self.assertEqual(result.outcome, FulfillmentOutcome.APPLIED)
        view = requirement_to_dict(self._requirement())
        self.assertEqual(view['received_qty'], Decimal('80'))
        self.assertEqual(view['shortage_qty'], Decimal('0'))
        self.assertEqual(view['status'], 'fulfilled')

    def test_unassigned_purchase_notifies_once_and_mutates_nothing(self) -> None:
        before = {row.id: row.received_qty for row in self.db.execute(select(RoomTileRequirement)).scalars()}

        line_item, result = self._buy('10', tile_id=self.unplanned_tile.id)

        self.assertEqual(result.outcome, FulfillmentOutcome.UNASSIGNED)
        self.assertIsNotNone(self.db.get(ExpenseLineItem, line_item.id))
        after = {
            row.id: row.received_qty
            for row in self.db.execute(
                select(RoomTileRequirement).execution_options(populate_existing=True)
            ).scalars()
        }
        self.assertEqual(before, after)
        notifications = self._notifications(NotificationType.TILE_PURCHASED_UNASSIGNED)
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0].user_id, self.owner.id)
        self.assertEqual(notifications[0].reference_id, str(self.expense.id))

    def test_untagged_line_item_is_not_routed(self) -> None:
        line_item, result = add_line_item(
            self.db,
            expense_id=self.expense.id,
            description='Cement',
            quantity=Decimal('5'),
            rate=Decimal('400'),
            amount=Decimal('2000'),
            notifier=self.notifier,
        )

        self.assertEqual(result.outcome, FulfillmentOutcome.NOT_TAGGED)
        self.assertIsNone(line_item.tile_id)
        self.assertEqual(self._requirement().received_qty, Decimal('0'))

    def test_ambiguous_purchase_goes_to_lowest_requirement(self) -> None:
        second_room = Room(site_id=self.site.id, name='Bedroom')
        self.db.add(second_room)
        self.db.flush()
        create_zone(self.db, room_id=second_room.id, zone_name='Floor', tile_id=self.tile.id, required_qty=Decimal('40'))

        _, result = self._buy('15')

        self.assertEqual(result.outcome, FulfillmentOutcome.AMBIGUOUS_FIRST_MATCH)
        self.assertEqual(result.candidate_count, 2)
        self.assertEqual(result.requirement_id, self._requirement().id)
        self.assertEqual(self._requirement().received_qty, Decimal('15'))
        self.assertEqual(self._requirement(second_room.id).received_qty, Decimal('0'))

    def test_explicit_room_targets_that_room(self) -> None:
        second_room = Room(site_id=self.site.id, name='Bedroom')
        self.db.add(second_room)
        self.db.flush()
        create_zone(self.db, room_id=second_room.id, zone_name='Floor', tile_id=self.tile.id, required_qty=Decimal('40'))

        _, result = self._buy('15', room_id=second_room.id)

        self.assertEqual(result.outcome, FulfillmentOutcome.APPLIED)
        self.assertEqual(self._requirement(second_room.id).received_qty, Decimal('15'))
        self.assertEqual(self._requirement().received_qty, Decimal('0'))

    def test_room_from_another_site_is_rejected(self) -> None:
        foreign_room = Room(site_id=self.other_site.id, name='Elsewhere')
        self.db.add(foreign_room)
        self.db.flush()

        with self.assertRaises(ValidationError):
            self._buy('5', room_id=foreign_room.id)

    def test_purchase_on_deleted_expense_is_not_found(self) -> None:
        soft_delete_expense(self.db, expense_id=self.expense.id)
        with self.assertRaises(NotFoundError):
            self._buy('5')

    def test_purchase_requires_positive_quantity(self) -> None:
        with self.assertRaises(ValidationError):
            self._buy('0')

    def test_repeat_received_is_noop(self) -> None:
        shortage = self._shortage('20')
        update_shortage_status(self.db, shortage_id=shortage.id, status='received')

        _, result = update_shortage_status(self.db, shortage_id=shortage.id, status='received')

        self.assertEqual(result.outcome, FulfillmentOutcome.ALREADY_RECEIVED)
        self.assertEqual(self._requirement().received_qty, Decimal('20'))

    def test_received_request_cannot_be_reopened(self) -> None:
        shortage = self._shortage('20')
        update_shortage_status(self.db, shortage_id=shortage.id, status='received')

        with self.assertRaises(ValidationError):
            update_shortage_status(self.db, shortage_id=shortage.id, status='approved')
        self.assertEqual(shortage.status, ShortageStatus.RECEIVED)

    def test_status_is_required(self) -> None:
        shortage = self._shortage('20')

        with self.assertRaises(ValidationError):
            update_shortage_status(self.db, shortage_id=shortage.id, status=None)
        with self.assertRaises(ValidationError):
            update_shortage_status(self.db, shortage_id=shortage.id, status='lost')
        self.assertEqual(shortage.status, ShortageStatus.PENDING)
        self.assertEqual(self._requirement().received_qty, Decimal('0'))

    def test_approval_does_not_touch_requirement(self) -> None:
        shortage = self._shortage('20')

        _, result = update_shortage_status(self.db, shortage_id=shortage.id, status='approved', approved_by=self.owner.id)

        self.assertEqual(result.outcome, FulfillmentOutcome.NOT_RECEIVED)
        self.assertEqual(shortage.approved_by, self.owner.id)
        self.assertEqual(self._requirement().received_qty, Decimal('0'))

    def test_received_without_requirement_is_logged_noop(self) -> None:
        bare_room = Room(site_id=self.site.id, name='Balcony')
        self.db.add(bare_room)
        self.db.flush()
        shortage = self._shortage('5', room_id=bare_room.id)

        _, result = update_shortage_status(self.db, shortage_id=shortage.id, status='received')

        self.assertEqual(result.outcome, FulfillmentOutcome.MISSING_REQUIREMENT)
        self.assertEqual(shortage.status, ShortageStatus.RECEIVED)
        self.assertIsNone(self._requirement(bare_room.id))

    def test_unknown_profiles_are_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            create_shortage_request(
                self.db,
                site_id=self.site.id,
                room_id=self.room.id,
                tile_id=self.tile.id,
                requested_qty=Decimal('5'),
                notifier=self.notifier,
                requested_by=9999,
            )
        shortage = self._shortage('5')
        with self.assertRaises(ValidationError):
            update_shortage_status(self.db, shortage_id=shortage.id, status='received', approved_by=9999)
        self.assertEqual(shortage.status, ShortageStatus.PENDING)
        self.assertEqual(self._requirement().received_qty, Decimal('0'))

    def test_unknown_shortage_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            update_shortage_status(self.db, shortage_id=999, status='received')

    def test_received_quantity_never_decreases(self) -> None:
        observed = [self._requirement().received_qty]
        for qty in ('5', '12.5', '3'):
            self._buy(qty)
            observed.append(self._requirement().received_qty)
        shortage = self._shortage('7')
        update_shortage_status(self.db, shortage_id=shortage.id, status='received')
        observed.append(self._requirement().received_qty)

        self.assertEqual(observed, sorted(observed))
        self.assertEqual(observed[-1], Decimal('27.5'))

    def test_shortage_intake_notifies_owner(self) -> None:
        shortage = self._shortage('20')

        notifications = self._notifications(NotificationType.SHORTAGE_REQUEST)
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0].reference_id, str(shortage.id))
        rows = list_shortage_requests(self.db, site_id=self.site.id)
        self.assertEqual([row['id'] for row in rows], [shortage.id])
        self.assertEqual(rows[0]['urgency'], 'normal')


if __name__ == '__main__':
    unittest.main()
