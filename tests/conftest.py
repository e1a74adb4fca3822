from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from circulation.core.database import Base, get_db, make_engine, make_session_factory
from circulation.core.unit_of_work import UnitOfWork
from circulation.main import app
from circulation.models import models
from circulation.services import assignments


@pytest.fixture
def engine(tmp_path):
    # file database so worker threads see the same data
    engine = make_engine(f"sqlite:///{tmp_path / 'circulation.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def people(db):
    users = {
        "admin": models.User(name="Ada Admin", email="ada@example.com", role="Admin"),
        "tech": models.User(name="Tim Tech", email="tim@example.com", role="Technician"),
        "staff": models.User(name="Sam Staff", email="sam@example.com", role="Staff"),
        "borrower": models.User(name="Bea Borrower", email="bea@example.com", role="Staff"),
    }
    db.add_all(users.values())
    db.flush()
    ids = {key: user.id for key, user in users.items()}
    db.commit()
    return SimpleNamespace(**ids)


@pytest.fixture
def make_asset(db):
    counter = {"n": 0}

    def _make(total_stock=1, code=None, name=None, status=models.AssetStatus.AVAILABLE, current_stock=None):
        counter["n"] += 1
        asset = models.Asset(
            asset_code=code or f"AST-{counter['n']:03d}",
            name=name or f"Asset {counter['n']}",
            total_stock=total_stock,
            current_stock=total_stock if current_stock is None else current_stock,
            status=status,
        )
        db.add(asset)
        db.flush()
        asset_id = asset.id
        db.commit()
        return asset_id

    return _make


@pytest.fixture
def assignment(db, people):
    with UnitOfWork(db, actor_id=people.staff) as uow:
        assignment_id = assignments.open_assignment(uow, people.borrower, "2024-2025", 1).id
    return assignment_id


def asset_state(db, asset_id):
    """(current_stock, status) straight from the database; leaves no transaction open."""
    asset = db.get(models.Asset, asset_id, populate_existing=True)
    state = (asset.current_stock, asset.status)
    db.commit()
    return state


@pytest.fixture
def state(db):
    return lambda asset_id: asset_state(db, asset_id)
