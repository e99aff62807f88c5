import argparse
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running this script directly.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from sqlalchemy import select

from supply_ledger.config import get_settings
from supply_ledger.core.logging import setup_logging
from supply_ledger.core.security import Actor, issue_token
from supply_ledger.database import Base, create_store
from supply_ledger.models.account import Account
from supply_ledger.services import catalog_service
from supply_ledger.services.movement_service import MovementEngine

DEMO_ACCOUNT = "Demo Dental"


def parse_args():
    parser = argparse.ArgumentParser(description="Seed a demo account with locations, items and stock.")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop and recreate every table before seeding.",
    )
    return parser.parse_args()


def _seed_catalog(session, settings):
    account = catalog_service.setup_account(
        session,
        DEMO_ACCOUNT,
        default_location_name=settings.DEFAULT_LOCATION_NAME,
    )
    operatories = [
        catalog_service.create_location(session, account.id, "Operatory 1"),
        catalog_service.create_location(session, account.id, "Operatory 2"),
    ]
    supplier = catalog_service.create_supplier(
        session,
        account.id,
        name="Henry Schein",
        contact_name="Order Desk",
        phone="+1 800 472 4346",
    )
    category = catalog_service.create_category(session, account.id, "Disposables")
    items = [
        catalog_service.create_item(
            session,
            account.id,
            name="Gauze",
            unit="pack(s)",
            cost_per_unit="2.50",
            scan_code="GZ-100",
            category_id=category.id,
            supplier_id=supplier.id,
        ),
        catalog_service.create_item(
            session,
            account.id,
            name="Nitrile Gloves",
            unit="box(es)",
            cost_per_unit="8.75",
            scan_code="GL-200",
            category_id=category.id,
            supplier_id=supplier.id,
        ),
    ]
    return account.id, [location.id for location in operatories], [item.id for item in items]


def main():
    setup_logging()
    args = parse_args()
    settings = get_settings()
    store = create_store(settings)
    try:
        if args.reset:
            Base.metadata.drop_all(bind=store.engine)
        store.create_schema()

        with store.read_session() as session:
            existing = session.execute(select(Account.id).where(Account.name == DEMO_ACCOUNT)).first()
        if existing:
            print("Seed skipped: demo account already exists.")
            return

        account_id, operatory_ids, item_ids = store.run_in_transaction(
            lambda session: _seed_catalog(session, settings),
            label="seed_catalog",
        )

        actor = Actor(account_id=account_id, identity="seed-script")
        engine = MovementEngine(store, settings)
        for item_id in item_ids:
            engine.receive(actor, item_id, _default_location_id(store, account_id), 100, cause_type="seed")
            engine.assign_to_sub_location(actor, item_id, operatory_ids[0], 20, cause_type="seed")
            engine.set_threshold(actor, item_id, operatory_ids[0], 5)

        print("Seed data created for account {}.".format(account_id))
        if settings.JWT_SECRET:
            print("Token: {}".format(issue_token(settings, account_id=account_id, identity="demo@example.com")))
    finally:
        store.dispose()


def _default_location_id(store, account_id):
    with store.read_session() as session:
        return catalog_service.get_default_location(session, account_id).id


if __name__ == "__main__":
    main()
