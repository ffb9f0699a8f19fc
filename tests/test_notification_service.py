from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import select

from app.db import build_engine, create_schema, make_session_factory
from app.errors import NotFoundError
from app.models import MaterialShortageRequest, Notification, NotificationType, Profile, Room, Site, Tile
from app.services.fulfillment_service import create_shortage_request
from app.services.notification_service import (
    Notifier,
    RoleRecipientResolver,
    StaticRecipientResolver,
    list_notifications,
    mark_notification_read,
)


class FailingResolver:
    def resolve(self, db) -> list[int]:
        raise ValueError('recipient directory unavailable')


class NotificationServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine('sqlite://')
        create_schema(self.engine)
        self.db = make_session_factory(self.engine)()
        self.first_owner = Profile(full_name='Owner One', role='owner')
        self.second_owner = Profile(full_name='Owner Two', role='owner')
        self.retired_owner = Profile(full_name='Owner Three', role='owner', active=False)
        self.engineer = Profile(full_name='Site Engineer', role='engineer')
        self.db.add_all([self.first_owner, self.second_owner, self.retired_owner, self.engineer])
        self.db.flush()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_all_policy_addresses_every_active_owner(self) -> None:
        resolver = RoleRecipientResolver(role='owner', policy='all')
        self.assertEqual(resolver.resolve(self.db), [self.first_owner.id, self.second_owner.id])

    def test_first_policy_keeps_lowest_id(self) -> None:
        resolver = RoleRecipientResolver(role='owner', policy='first')
        self.assertEqual(resolver.resolve(self.db), [self.first_owner.id])

    def test_unknown_policy_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            RoleRecipientResolver(policy='random')

    def test_notify_recipients_writes_one_row_per_recipient(self) -> None:
        notifier = Notifier(RoleRecipientResolver())

        sent = notifier.notify_recipients(
            self.db,
            title='Milestone Paid',
            body='A gang milestone was marked as paid',
            type=NotificationType.MILESTONE_PAID,
            reference_id=7,
        )

        self.assertEqual(sorted(n.user_id for n in sent), [self.first_owner.id, self.second_owner.id])
        self.assertTrue(all(n.type == 'milestone_paid' and n.reference_id == '7' for n in sent))

    def test_no_recipients_sends_nothing(self) -> None:
        notifier = Notifier(RoleRecipientResolver(role='accountant'))
        sent = notifier.notify_recipients(self.db, title='t', body='b', type=NotificationType.SHORTAGE_REQUEST)
        self.assertEqual(sent, [])

    def test_failed_notification_is_swallowed(self) -> None:
        notifier = Notifier(StaticRecipientResolver([self.first_owner.id, 9999]))

        sent = notifier.notify_recipients(self.db, title='t', body='b', type=NotificationType.SHORTAGE_REQUEST)

        self.assertEqual([n.user_id for n in sent], [self.first_owner.id])
        rows = self.db.execute(select(Notification)).scalars().all()
        self.assertEqual([n.user_id for n in rows], [self.first_owner.id])

    def test_notifier_failure_keeps_primary_write(self) -> None:
        site = Site(name='Site A')
        self.db.add(site)
        self.db.flush()
        room = Room(site_id=site.id, name='Kitchen')
        tile = Tile(brand='Kajaria')
        self.db.add_all([room, tile])
        self.db.flush()
        broken = Notifier(StaticRecipientResolver([9999]))

        shortage = create_shortage_request(
            self.db,
            site_id=site.id,
            room_id=room.id,
            tile_id=tile.id,
            requested_qty=Decimal('4'),
            notifier=broken,
        )
        self.db.commit()

        self.assertIsNotNone(self.db.get(MaterialShortageRequest, shortage.id))
        self.assertEqual(self.db.execute(select(Notification)).scalars().all(), [])

    def test_failing_resolver_sends_nothing(self) -> None:
        notifier = Notifier(FailingResolver())

        sent = notifier.notify_recipients(self.db, title='t', body='b', type=NotificationType.SHORTAGE_REQUEST)

        self.assertEqual(sent, [])
        self.assertEqual(self.db.execute(select(Notification)).scalars().all(), [])

    def test_failing_resolver_keeps_primary_write(self) -> None:
        site = Site(name='Site A')
        self.db.add(site)
        self.db.flush()
        room = Room(site_id=site.id, name='Kitchen')
        tile = Tile(brand='Kajaria')
        self.db.add_all([room, tile])
        self.db.flush()
        notifier = Notifier(FailingResolver())

        shortage = create_shortage_request(
            self.db,
            site_id=site.id,
            room_id=room.id,
            tile_id=tile.id,
            requested_qty=Decimal('4'),
            notifier=notifier,
        )
        self.db.commit()

        self.assertIsNotNone(self.db.get(MaterialShortageRequest, shortage.id))

    def test_logs_carry_plain_notification_type(self) -> None:
        notifier = Notifier(RoleRecipientResolver(role='accountant'))

        with patch('app.services.notification_service.logger') as logger:
            notifier.notify_recipients(self.db, title='t', body='b', type=NotificationType.SHORTAGE_REQUEST)

        self.assertEqual(logger.info.call_args.args[0], 'notification.no_recipients')
        self.assertEqual(logger.info.call_args.kwargs['type'], 'shortage_request')

    def test_list_and_mark_read(self) -> None:
        notifier = Notifier(StaticRecipientResolver([self.first_owner.id]))
        older = notifier.notify(self.db, user_id=self.first_owner.id, title='a', body='a', type='shortage_request')
        newer = notifier.notify(self.db, user_id=self.first_owner.id, title='b', body='b', type='shortage_request')

        rows = list_notifications(self.db, user_id=self.first_owner.id)
        self.assertEqual([row['id'] for row in rows], [newer.id, older.id])
        self.assertEqual(len(list_notifications(self.db, user_id=self.first_owner.id, limit=1)), 1)

        mark_notification_read(self.db, notification_id=older.id)
        self.assertTrue(self.db.get(Notification, older.id).is_read)

    def test_mark_unknown_notification_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            mark_notification_read(self.db, notification_id=404)


if __name__ == '__main__':
    unittest.main()
