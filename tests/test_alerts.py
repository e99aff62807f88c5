import unittest
from datetime import date
from unittest import mock

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ledger_fixtures import make_settings, make_store, seed_clinic
from supply_ledger.models.alert import LowStockAlert
from supply_ledger.services.alert_service import (
    PENDING_REASON,
    alert_already_sent,
    format_message,
    notify_low_stock,
)
from supply_ledger.services.movement_service import MovementEngine

PHONES = "+1 555 0001, +1 555 0002"


class LowStockAlertTest(unittest.TestCase):
    def setUp(self):
        self.settings = make_settings(LOW_STOCK_ALERT_PHONES=PHONES)
        self.store = make_store(self.settings)
        self.engine = MovementEngine(self.store, self.settings)
        self.clinic = seed_clinic(self.store, self.settings)
        self.engine.correct(self.clinic.actor, self.clinic.gauze, self.clinic.room_a, 2, low_stock_threshold=5)
        self.engine.correct(self.clinic.actor, self.clinic.gloves, self.clinic.room_a, 20, low_stock_threshold=5)

    def tearDown(self):
        self.store.dispose()

    def alerts(self):
        with self.store.read_session() as session:
            return list(session.execute(select(LowStockAlert).order_by(LowStockAlert.id)).scalars())

    def test_alert_dedup(self):
        with mock.patch("supply_ledger.services.notification_service.send_whatsapp") as send:
            first = notify_low_stock(self.store, self.settings, self.clinic.account_id)
            second = notify_low_stock(self.store, self.settings, self.clinic.account_id)

        self.assertEqual((first["candidates"], first["alerts"], first["delivered"]), (1, 2, 2))
        self.assertEqual((second["alerts"], second["skipped"]), (0, 2))
        self.assertEqual(send.call_count, 2)
        with self.store.read_session() as session:
            self.assertTrue(
                alert_already_sent(session, date.today(), self.clinic.gauze, self.clinic.room_a, "+1 555 0001")
            )

    def test_transient_commit_failure_does_not_resend(self):
        real_commit = Session.commit
        commits = []

        def flaky_commit(session):
            commits.append(session)
            if len(commits) == 1:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            return real_commit(session)

        with mock.patch.object(Session, "commit", autospec=True, side_effect=flaky_commit), mock.patch(
            "supply_ledger.services.notification_service.send_whatsapp"
        ) as send:
            stats = notify_low_stock(self.store, self.settings, self.clinic.account_id)

        self.assertEqual(send.call_count, 2)
        self.assertEqual((stats["alerts"], stats["delivered"]), (2, 2))
        self.assertNotIn("error", stats)
        recorded = self.alerts()
        self.assertEqual(len(recorded), 2)
        self.assertTrue(all(alert.delivered for alert in recorded))
        self.assertTrue(all(alert.failure_reason is None for alert in recorded))

    def test_reservation_is_committed_before_sending(self):
        seen = []

        def check_reserved(message, phone, settings):
            with self.store.read_session() as session:
                alert = session.execute(
                    select(LowStockAlert).where(LowStockAlert.phone_number == phone)
                ).scalar_one()
                seen.append((alert.delivered, alert.failure_reason))

        with mock.patch(
            "supply_ledger.services.notification_service.send_whatsapp",
            side_effect=check_reserved,
        ):
            notify_low_stock(self.store, self.settings, self.clinic.account_id)

        self.assertEqual(seen, [(False, PENDING_REASON), (False, PENDING_REASON)])
        self.assertTrue(all(alert.delivered for alert in self.alerts()))

    def test_delivery_failure_is_recorded_not_raised(self):
        stats = notify_low_stock(self.store, self.settings, self.clinic.account_id)

        self.assertEqual((stats["alerts"], stats["delivered"]), (2, 0))
        recorded = self.alerts()
        self.assertEqual([alert.phone_number for alert in recorded], ["+1 555 0001", "+1 555 0002"])
        self.assertFalse(recorded[0].delivered)
        self.assertIn("WHATSAPP_API_URL", recorded[0].failure_reason)

    def test_keys_limit_the_rows_checked(self):
        stats = notify_low_stock(
            self.store,
            self.settings,
            self.clinic.account_id,
            keys=[(self.clinic.gloves, self.clinic.room_a)],
            send_notifications=False,
        )
        self.assertEqual((stats["candidates"], stats["alerts"]), (0, 0))

    def test_no_recipients_means_no_work(self):
        stats = notify_low_stock(self.store, make_settings(), self.clinic.account_id)
        self.assertEqual(stats["alerts"], 0)
        self.assertEqual(self.alerts(), [])

    def test_message_mentions_item_location_and_supplier(self):
        message = format_message(
            {
                "item_name": "Gauze",
                "location_name": "Room A",
                "quantity": 2,
                "unit": "piece(s)",
                "low_stock_threshold": 5,
                "supplier": {"name": "Patterson", "phone": "+1 555 0100", "email": None},
            },
            date(2026, 1, 5),
        )
        self.assertIn("Gauze", message)
        self.assertIn("Room A", message)
        self.assertIn("Patterson (+1 555 0100)", message)


if __name__ == "__main__":
    unittest.main()
