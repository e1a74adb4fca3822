from circulation import manage
from circulation.models.models import Asset, AssetStatus, User


def test_seed_is_idempotent(db):
    manage.seed(db)
    manage.seed(db)
    assert db.query(User).count() == 3
    assert db.query(Asset).count() == 3
    db.commit()


def test_check_stock_reports_then_fixes(db, make_asset, state, capsys):
    stuck = make_asset(status=AssetStatus.RESERVED, current_stock=0)

    found = manage.check_stock(db)
    db.commit()
    assert [(asset.id, reason) for asset, reason in found] == [(stuck, "stuck")]
    assert state(stuck) == (0, AssetStatus.RESERVED)

    manage.check_stock(db, fix=True)
    assert state(stuck) == (1, AssetStatus.AVAILABLE)
    assert "(fixed)" in capsys.readouterr().out
