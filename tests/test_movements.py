import unittest
from decimal import Decimal

from sqlalchemy import func, select

from ledger_fixtures import make_settings, make_store, quantity_of, seed_clinic, stock_row
from supply_ledger.core.constants import Direction, MovementKind
from supply_ledger.core.errors import (
    CrossAccountReference,
    InsufficientStock,
    NotFound,
    ValidationFailed,
)
from supply_ledger.models.catalog import Item
from supply_ledger.models.movement_log import MovementLogEntry
from supply_ledger.services import catalog_service, query_service
from supply_ledger.services.movement_service import MovementEngine


class MovementTestCase(unittest.TestCase):
    def setUp(self):
        self.settings = make_settings()
        self.store = make_store(self.settings)
        self.engine = MovementEngine(self.store, self.settings)
        self.clinic = seed_clinic(self.store, self.settings)
        self.actor = self.clinic.actor

    def tearDown(self):
        self.store.dispose()

    def log_count(self):
        with self.store.read_session() as session:
            return session.execute(select(func.count(MovementLogEntry.id))).scalar_one()


class ReceiveTest(MovementTestCase):
    def test_receive_creates_row_and_logs_catalog_cost(self):
        result = self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 10)

        self.assertEqual(result.quantities, {self.clinic.room_a: 10})
        self.assertEqual(quantity_of(self.store, self.clinic.gauze, self.clinic.room_a), 10)
        entry = result.entry
        self.assertEqual(entry.kind, MovementKind.RECEIVE)
        self.assertEqual(entry.direction, Direction.INCREASE)
        self.assertEqual(entry.quantity, 10)
        self.assertEqual(entry.unit_cost, Decimal("2.50"))
        self.assertEqual(entry.total_cost, Decimal("25.00"))
        self.assertEqual(entry.actor_id, "dr.lee@example.com")
        self.assertEqual(entry.item_name, "Gauze")

    def test_receive_accumulates_into_existing_row(self):
        self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 10)
        result = self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 5)

        self.assertEqual(result.quantities[self.clinic.room_a], 15)
        self.assertEqual(self.log_count(), 2)

    def test_explicit_unit_cost_is_logged_without_changing_catalog(self):
        result = self.engine.receive(
            self.actor,
            self.clinic.gauze,
            self.clinic.room_a,
            4,
            unit_cost="3.125",
            cause_type="purchase_order",
            cause_id="PO-7",
        )

        self.assertEqual(result.entry.total_cost, Decimal("12.5000"))
        self.assertEqual(result.entry.cause_type, "purchase_order")
        self.assertEqual(result.entry.cause_id, "PO-7")
        with self.store.read_session() as session:
            self.assertEqual(session.get(Item, self.clinic.gauze).cost_per_unit, Decimal("2.50"))

    def test_rejects_non_positive_and_non_integer_quantities(self):
        for quantity in (0, -3, 1.5, True, "4"):
            with self.subTest(quantity=quantity):
                with self.assertRaises(ValidationFailed):
                    self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, quantity)
        self.assertEqual(self.log_count(), 0)

    def test_rejects_negative_unit_cost(self):
        with self.assertRaises(ValidationFailed):
            self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 1, unit_cost="-1")
        self.assertIsNone(quantity_of(self.store, self.clinic.gauze, self.clinic.room_a))


class ConsumeTest(MovementTestCase):
    def setUp(self):
        super().setUp()
        self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 10)

    def test_consume_decrements_and_logs_decrease(self):
        result = self.engine.consume(
            self.actor,
            self.clinic.gauze,
            self.clinic.room_a,
            4,
            cause_type="procedure",
            cause_id="42",
        )

        self.assertEqual(result.quantities[self.clinic.room_a], 6)
        self.assertEqual(result.entry.direction, Direction.DECREASE)
        self.assertEqual(result.entry.signed_delta, -4)
        self.assertEqual(result.entry.total_cost, Decimal("10.00"))

    def test_insufficient_stock_leaves_row_and_log_untouched(self):
        with self.assertRaises(InsufficientStock) as ctx:
            self.engine.consume(self.actor, self.clinic.gauze, self.clinic.room_a, 11)

        self.assertEqual(ctx.exception.current, 10)
        self.assertEqual(ctx.exception.requested, 11)
        self.assertEqual(ctx.exception.details["location_id"], self.clinic.room_a)
        self.assertEqual(quantity_of(self.store, self.clinic.gauze, self.clinic.room_a), 10)
        self.assertEqual(self.log_count(), 1)

    def test_consume_without_row_reports_zero_available(self):
        with self.assertRaises(InsufficientStock) as ctx:
            self.engine.consume(self.actor, self.clinic.gauze, self.clinic.room_b, 1)
        self.assertEqual(ctx.exception.current, 0)

    def test_row_consumed_to_zero_is_retained(self):
        self.engine.consume(self.actor, self.clinic.gauze, self.clinic.room_a, 10)
        self.assertEqual(quantity_of(self.store, self.clinic.gauze, self.clinic.room_a), 0)

    def test_cost_is_read_at_movement_time(self):
        self.store.run_in_transaction(
            lambda session: catalog_service.update_item_cost(session, self.clinic.account_id, self.clinic.gauze, "4.00")
        )
        result = self.engine.consume(self.actor, self.clinic.gauze, self.clinic.room_a, 2)
        self.assertEqual(result.entry.total_cost, Decimal("8.00"))


class TransferTest(MovementTestCase):
    def setUp(self):
        super().setUp()
        self.engine.receive(self.actor, self.clinic.gauze, self.clinic.default_id, 20)

    def test_transfer_conserves_total_and_creates_destination(self):
        result = self.engine.transfer(
            self.actor,
            self.clinic.gauze,
            self.clinic.default_id,
            self.clinic.room_b,
            7,
        )

        self.assertEqual(result.quantities, {self.clinic.default_id: 13, self.clinic.room_b: 7})
        self.assertEqual(result.entry.kind, MovementKind.TRANSFER)
        self.assertEqual(result.entry.direction, Direction.INCREASE)
        self.assertEqual(result.entry.source_location_id, self.clinic.default_id)
        self.assertEqual(result.entry.location_id, self.clinic.room_b)
        with self.store.read_session() as session:
            total = query_service.item_total(session, self.clinic.account_id, self.clinic.gauze)
        self.assertEqual(total["total"], 20)

    def test_transfer_into_existing_row_accumulates(self):
        self.engine.transfer(self.actor, self.clinic.gauze, self.clinic.default_id, self.clinic.room_b, 5)
        result = self.engine.transfer(self.actor, self.clinic.gauze, self.clinic.default_id, self.clinic.room_b, 5)
        self.assertEqual(result.quantities[self.clinic.room_b], 10)

    def test_same_source_and_destination_is_rejected(self):
        with self.assertRaises(ValidationFailed):
            self.engine.transfer(self.actor, self.clinic.gauze, self.clinic.room_a, self.clinic.room_a, 1)

    def test_insufficient_source_changes_nothing(self):
        with self.assertRaises(InsufficientStock):
            self.engine.transfer(self.actor, self.clinic.gauze, self.clinic.default_id, self.clinic.room_b, 21)
        self.assertEqual(quantity_of(self.store, self.clinic.gauze, self.clinic.default_id), 20)
        self.assertIsNone(quantity_of(self.store, self.clinic.gauze, self.clinic.room_b))

    def test_assign_moves_from_default_location(self):
        result = self.engine.assign_to_sub_location(self.actor, self.clinic.gauze, self.clinic.room_a, 8)

        self.assertEqual(result.entry.kind, MovementKind.ASSIGN)
        self.assertEqual(result.quantities, {self.clinic.default_id: 12, self.clinic.room_a: 8})

    def test_assign_to_default_location_is_rejected(self):
        with self.assertRaises(ValidationFailed):
            self.engine.assign_to_sub_location(self.actor, self.clinic.gauze, self.clinic.default_id, 1)


class CorrectionTest(MovementTestCase):
    def test_correction_logs_signed_difference(self):
        self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 10)

        down = self.engine.correct(self.actor, self.clinic.gauze, self.clinic.room_a, 7, note="recount")
        self.assertEqual(down.entry.kind, MovementKind.CORRECT)
        self.assertEqual(down.entry.direction, Direction.DECREASE)
        self.assertEqual(down.entry.quantity, 3)
        self.assertEqual(down.entry.note, "recount")

        up = self.engine.correct(self.actor, self.clinic.gauze, self.clinic.room_a, 12)
        self.assertEqual(up.entry.direction, Direction.INCREASE)
        self.assertEqual(up.entry.quantity, 5)
        self.assertEqual(quantity_of(self.store, self.clinic.gauze, self.clinic.room_a), 12)

    def test_unchanged_count_writes_no_log_entry(self):
        self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 10)
        result = self.engine.correct(self.actor, self.clinic.gauze, self.clinic.room_a, 10, low_stock_threshold=4)

        self.assertIsNone(result.entry)
        self.assertEqual(self.log_count(), 1)
        self.assertEqual(stock_row(self.store, self.clinic.gauze, self.clinic.room_a).low_stock_threshold, 4)

    def test_correction_creates_missing_row(self):
        result = self.engine.correct(self.actor, self.clinic.gloves, self.clinic.room_b, 3)
        self.assertEqual(result.quantities[self.clinic.room_b], 3)
        self.assertEqual(result.entry.direction, Direction.INCREASE)

    def test_negative_count_is_rejected(self):
        with self.assertRaises(ValidationFailed):
            self.engine.correct(self.actor, self.clinic.gauze, self.clinic.room_a, -1)


class RowMaintenanceTest(MovementTestCase):
    def test_set_threshold_requires_existing_row(self):
        with self.assertRaises(NotFound):
            self.engine.set_threshold(self.actor, self.clinic.gauze, self.clinic.room_a, 5)

    def test_set_and_clear_threshold(self):
        self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 3)
        row = self.engine.set_threshold(self.actor, self.clinic.gauze, self.clinic.room_a, 5)
        self.assertEqual(row.low_stock_threshold, 5)

        self.engine.set_threshold(self.actor, self.clinic.gauze, self.clinic.room_a, None)
        self.assertIsNone(stock_row(self.store, self.clinic.gauze, self.clinic.room_a).low_stock_threshold)
        self.assertEqual(self.log_count(), 1)

    def test_remove_stock_row_only_when_empty(self):
        self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 2)
        with self.assertRaises(ValidationFailed):
            self.engine.remove_stock_row(self.actor, self.clinic.gauze, self.clinic.room_a)

        self.engine.consume(self.actor, self.clinic.gauze, self.clinic.room_a, 2)
        self.engine.remove_stock_row(self.actor, self.clinic.gauze, self.clinic.room_a)
        self.assertIsNone(stock_row(self.store, self.clinic.gauze, self.clinic.room_a))

    def test_remove_missing_row_is_not_found(self):
        with self.assertRaises(NotFound):
            self.engine.remove_stock_row(self.actor, self.clinic.gauze, self.clinic.room_b)


class OwnershipTest(MovementTestCase):
    def test_other_accounts_location_is_rejected(self):
        other = seed_clinic(self.store, self.settings, name="Other Practice")
        with self.assertRaises(CrossAccountReference):
            self.engine.receive(self.actor, self.clinic.gauze, other.room_a, 1)
        with self.assertRaises(CrossAccountReference):
            self.engine.receive(self.actor, other.gauze, self.clinic.room_a, 1)
        self.assertEqual(self.log_count(), 0)

    def test_unknown_item_is_not_found(self):
        with self.assertRaises(NotFound):
            self.engine.receive(self.actor, 9999, self.clinic.room_a, 1)


class GauzeScenarioTest(MovementTestCase):
    def test_consume_fail_transfer_then_below_threshold(self):
        gauze, room_a, room_b = self.clinic.gauze, self.clinic.room_a, self.clinic.room_b
        self.engine.correct(self.actor, gauze, room_a, 10, low_stock_threshold=5)

        first = self.engine.consume(self.actor, gauze, room_a, 4)
        self.assertEqual(first.quantities[room_a], 6)
        self.assertEqual(first.entry.signed_delta, -4)

        with self.assertRaises(InsufficientStock) as ctx:
            self.engine.consume(self.actor, gauze, room_a, 10)
        self.assertEqual((ctx.exception.current, ctx.exception.requested), (6, 10))
        self.assertEqual(quantity_of(self.store, gauze, room_a), 6)

        moved = self.engine.transfer(self.actor, gauze, room_a, room_b, 6)
        self.assertEqual(moved.quantities, {room_a: 0, room_b: 6})

        with self.store.read_session() as session:
            rows = query_service.below_threshold(session, self.clinic.account_id, location_id=room_a)
        self.assertEqual([(row["item_name"], row["quantity"]) for row in rows], [("Gauze", 0)])


if __name__ == "__main__":
    unittest.main()
