import argparse
import logging
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running this script directly.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from sqlalchemy import select

from supply_ledger.config import get_settings
from supply_ledger.core.logging import setup_logging
from supply_ledger.database import create_store
from supply_ledger.models.account import Account
from supply_ledger.services.alert_service import notify_low_stock

logger = logging.getLogger(__name__)


def parse_args():
    parser = argparse.ArgumentParser(description="Send low-stock alerts for below-threshold stock rows.")
    parser.add_argument("--account-id", type=int, default=None, help="Only this account (default: all).")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Record alerts without sending WhatsApp messages.",
    )
    return parser.parse_args()


def main():
    setup_logging()
    args = parse_args()
    settings = get_settings()
    if not settings.alert_phones():
        logger.info("No LOW_STOCK_ALERT_PHONES configured; nothing to send.")
        return

    store = create_store(settings)
    try:
        if args.account_id is not None:
            account_ids = [args.account_id]
        else:
            with store.read_session() as session:
                account_ids = list(session.execute(select(Account.id).order_by(Account.id)).scalars())

        for account_id in account_ids:
            stats = notify_low_stock(
                store,
                settings,
                account_id,
                send_notifications=not args.dry_run,
            )
            print(
                f"account {account_id}: {stats['candidates']} below threshold, "
                f"{stats['alerts']} alerts recorded, {stats['delivered']} delivered, "
                f"{stats['skipped']} already sent today"
            )
    finally:
        store.dispose()


if __name__ == "__main__":
    main()
