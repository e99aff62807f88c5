import os
import tempfile
import threading
import unittest

from sqlalchemy import func, select

from ledger_fixtures import make_settings, make_store, quantity_of, seed_clinic
from supply_ledger.core.errors import InsufficientStock
from supply_ledger.models.movement_log import MovementLogEntry
from supply_ledger.services.movement_service import MovementEngine


def run_threads(count, target):
    outcomes = []
    lock = threading.Lock()
    start = threading.Barrier(count)

    def worker(index):
        start.wait()
        try:
            result = target(index)
        except Exception as exc:  # collected for assertions
            result = exc
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


class ConcurrentMovementTest(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        url = "sqlite:///{}".format(os.path.join(self.tmpdir.name, "ledger.db"))
        self.settings = make_settings(DATABASE_URL=url, DB_POOL_SIZE=8, DB_MAX_OVERFLOW=8)
        self.store = make_store(self.settings, url=url)
        self.engine = MovementEngine(self.store, self.settings)
        self.clinic = seed_clinic(self.store, self.settings)
        self.actor = self.clinic.actor

    def tearDown(self):
        self.store.dispose()
        self.tmpdir.cleanup()

    def log_count(self):
        with self.store.read_session() as session:
            return session.execute(select(func.count(MovementLogEntry.id))).scalar_one()

    def test_concurrent_consumes_never_go_negative(self):
        self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 10)

        outcomes = run_threads(
            16,
            lambda _index: self.engine.consume(self.actor, self.clinic.gauze, self.clinic.room_a, 1),
        )

        failures = [item for item in outcomes if isinstance(item, Exception)]
        self.assertEqual(len(outcomes) - len(failures), 10)
        self.assertTrue(all(isinstance(item, InsufficientStock) for item in failures), failures)
        self.assertEqual(quantity_of(self.store, self.clinic.gauze, self.clinic.room_a), 0)
        self.assertEqual(self.log_count(), 11)

    def test_concurrent_receives_into_new_row_accumulate(self):
        outcomes = run_threads(
            8,
            lambda _index: self.engine.receive(self.actor, self.clinic.gloves, self.clinic.room_b, 3),
        )

        self.assertFalse([item for item in outcomes if isinstance(item, Exception)])
        self.assertEqual(quantity_of(self.store, self.clinic.gloves, self.clinic.room_b), 24)

    def test_opposing_transfers_conserve_total(self):
        self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_a, 20)
        self.engine.receive(self.actor, self.clinic.gauze, self.clinic.room_b, 20)

        def move(index):
            if index % 2:
                return self.engine.transfer(self.actor, self.clinic.gauze, self.clinic.room_a, self.clinic.room_b, 2)
            return self.engine.transfer(self.actor, self.clinic.gauze, self.clinic.room_b, self.clinic.room_a, 3)

        outcomes = run_threads(10, move)

        self.assertFalse([item for item in outcomes if isinstance(item, Exception)])
        room_a = quantity_of(self.store, self.clinic.gauze, self.clinic.room_a)
        room_b = quantity_of(self.store, self.clinic.gauze, self.clinic.room_b)
        self.assertEqual(room_a + room_b, 40)
        self.assertEqual((room_a, room_b), (25, 15))


if __name__ == "__main__":
    unittest.main()
