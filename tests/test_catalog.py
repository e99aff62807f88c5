import unittest
from decimal import Decimal
from unittest import mock

from ledger_fixtures import make_settings, make_store, quantity_of, seed_clinic
from supply_ledger.core.errors import CrossAccountReference, DuplicateIdentifier, ValidationFailed
from supply_ledger.services import catalog_service
from supply_ledger.services.movement_service import MovementEngine


class CatalogServiceTest(unittest.TestCase):
    def setUp(self):
        self.settings = make_settings()
        self.store = make_store(self.settings)
        self.engine = MovementEngine(self.store, self.settings)
        self.clinic = seed_clinic(self.store, self.settings)

    def tearDown(self):
        self.store.dispose()

    def tx(self, body):
        return self.store.run_in_transaction(body)

    def test_account_gets_protected_default_location(self):
        with self.store.read_session() as session:
            default = catalog_service.get_default_location(session, self.clinic.account_id)
        self.assertEqual(default.name, "Common Area")
        self.assertTrue(default.is_protected_default)

    def test_default_location_cannot_be_deleted(self):
        with self.assertRaises(ValidationFailed):
            self.tx(lambda s: catalog_service.delete_location(s, self.clinic.account_id, self.clinic.default_id))

    def test_location_with_stock_cannot_be_deleted(self):
        self.engine.receive(self.clinic.actor, self.clinic.gauze, self.clinic.room_a, 1)
        with self.assertRaises(ValidationFailed):
            self.tx(lambda s: catalog_service.delete_location(s, self.clinic.account_id, self.clinic.room_a))

        self.engine.consume(self.clinic.actor, self.clinic.gauze, self.clinic.room_a, 1)
        self.tx(lambda s: catalog_service.delete_location(s, self.clinic.account_id, self.clinic.room_a))
        with self.store.read_session() as session:
            names = [location.name for location in catalog_service.list_locations(session, self.clinic.account_id)]
        self.assertEqual(names, ["Common Area", "Room B"])

    def test_duplicate_location_name(self):
        with self.assertRaises(DuplicateIdentifier):
            self.tx(lambda s: catalog_service.create_location(s, self.clinic.account_id, "Room A"))

    def test_scan_code_is_unique_per_account(self):
        with self.assertRaises(DuplicateIdentifier):
            self.tx(lambda s: catalog_service.create_item(s, self.clinic.account_id, name="Other", scan_code="GZ-1"))

        other = seed_clinic(self.store, self.settings, name="Second Office")
        self.assertNotEqual(other.gauze, self.clinic.gauze)

    def test_item_cost_validation_and_update(self):
        with self.assertRaises(ValidationFailed):
            self.tx(lambda s: catalog_service.update_item_cost(s, self.clinic.account_id, self.clinic.gauze, "-2"))
        with self.assertRaises(ValidationFailed):
            self.tx(lambda s: catalog_service.update_item_cost(s, self.clinic.account_id, self.clinic.gauze, "abc"))

        item = self.tx(lambda s: catalog_service.update_item_cost(s, self.clinic.account_id, self.clinic.gauze, "3.1"))
        self.assertEqual(item.cost_per_unit, Decimal("3.1"))

    def test_item_must_use_own_accounts_supplier(self):
        other = seed_clinic(self.store, self.settings, name="Second Office")
        with self.assertRaises(CrossAccountReference):
            self.tx(
                lambda s: catalog_service.create_item(
                    s, self.clinic.account_id, name="Bibs", supplier_id=other.supplier_id
                )
            )

    def test_delete_item_requires_no_stock(self):
        self.engine.receive(self.clinic.actor, self.clinic.gloves, self.clinic.room_b, 2)
        with self.assertRaises(ValidationFailed):
            self.tx(lambda s: catalog_service.delete_item(s, self.clinic.account_id, self.clinic.gloves))

        self.engine.consume(self.clinic.actor, self.clinic.gloves, self.clinic.room_b, 2)
        self.tx(lambda s: catalog_service.delete_item(s, self.clinic.account_id, self.clinic.gloves))
        with self.store.read_session() as session:
            self.assertIsNone(catalog_service.find_item_by_scan_code(session, self.clinic.account_id, "GL-1"))

    def test_stock_arriving_after_the_check_is_never_deleted(self):
        self.engine.receive(self.clinic.actor, self.clinic.gauze, self.clinic.room_a, 5)

        with mock.patch.object(catalog_service, "_lock_stock_rows", return_value=0):
            with self.assertRaises(ValidationFailed):
                self.tx(lambda s: catalog_service.delete_location(s, self.clinic.account_id, self.clinic.room_a))
            with self.assertRaises(ValidationFailed):
                self.tx(lambda s: catalog_service.delete_item(s, self.clinic.account_id, self.clinic.gauze))

        self.assertEqual(quantity_of(self.store, self.clinic.gauze, self.clinic.room_a), 5)
        with self.store.read_session() as session:
            self.assertIsNotNone(catalog_service.resolve_location(session, self.clinic.account_id, self.clinic.room_a))

    def test_empty_rows_are_removed_with_their_location(self):
        self.engine.receive(self.clinic.actor, self.clinic.gauze, self.clinic.room_b, 3)
        self.engine.consume(self.clinic.actor, self.clinic.gauze, self.clinic.room_b, 3)

        self.tx(lambda s: catalog_service.delete_location(s, self.clinic.account_id, self.clinic.room_b))
        self.assertIsNone(quantity_of(self.store, self.clinic.gauze, self.clinic.room_b))


if __name__ == "__main__":
    unittest.main()
