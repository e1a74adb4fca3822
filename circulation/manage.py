"""
Small maintenance utilities.

    python -m circulation.manage initdb
    python -m circulation.manage seed
    python -m circulation.manage check-stock [--fix]
"""
import argparse

from circulation.core.config import configure_logging
from circulation.core.database import Base, SessionLocal, engine
from circulation.models.models import Asset, AssetStatus, User
from circulation.services import ledger

logger = configure_logging()


def seed(db):
    # quick idempotent seed
    if db.query(User).count() == 0:
        db.add_all([
            User(name='Alice Admin', email='alice@example.com', role='Admin'),
            User(name='Tom Technician', email='tom@example.com', role='Technician'),
            User(name='Bob Borrower', email='bob@example.com', role='Staff'),
        ])
    if db.query(Asset).count() == 0:
        db.add_all([
            Asset(asset_code='NB-0001', name='Notebook 14"', total_stock=1, current_stock=1,
                  status=AssetStatus.AVAILABLE),
            Asset(asset_code='PJ-0001', name='Projector', total_stock=1, current_stock=1,
                  status=AssetStatus.AVAILABLE),
            Asset(asset_code='HDMI-CBL', name='HDMI cable', total_stock=20, current_stock=20,
                  status=AssetStatus.AVAILABLE),
        ])
    db.commit()
    logger.info('Seeded sample data')


def check_stock(db, fix=False):
    if fix:
        found = ledger.repair_inconsistent_assets(db)
        db.commit()
    else:
        found = ledger.find_inconsistent_assets(db)
    for asset, reason in found:
        print(f"- [{asset.asset_code}] {asset.name} | status={asset.status.value} "
              f"stock={asset.current_stock}/{asset.total_stock} | {reason}{' (fixed)' if fix else ''}")
    print(f"{len(found)} inconsistent asset(s)")
    return found


def main(argv=None):
    parser = argparse.ArgumentParser(description='Asset circulation utilities')
    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('initdb', help='Create tables')
    sub.add_parser('seed', help='Seed sample data')
    check = sub.add_parser('check-stock', help='Report unique assets whose stock and status disagree')
    check.add_argument('--fix', action='store_true', help='Repair what is found')
    args = parser.parse_args(argv)

    Base.metadata.create_all(bind=engine)
    if args.command == 'initdb':
        print('Done')
        return 0
    db = SessionLocal()
    try:
        if args.command == 'seed':
            seed(db)
        elif args.command == 'check-stock':
            check_stock(db, fix=args.fix)
    finally:
        db.close()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
