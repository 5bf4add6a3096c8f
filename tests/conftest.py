# tests/conftest.py

from datetime import datetime, timedelta

import pytest

from tips import create_app, db
from tips.models.domain import Category, Cycle, Item
from tips.services.local_cache import LocalCache
from tips.services.notifications import NotificationCenter
from tips.services.remote import MemoryTree
from tips.services.store import StateStore

ROOM = "ROOM-TEST"


class FakeClock:
    """Reloj controlable: ``clock()`` devuelve ``clock.now``."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 15, 10, 0, 0))


@pytest.fixture
def app(tmp_path, clock):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "WTF_CSRF_ENABLED": False,
        "TIPS_REMOTE_URL": "",
        "TIPS_TIMER_CACHE": str(tmp_path / "treatmentTimerEnd.cache"),
        "TIPS_START_WORKERS": False,
        "TIPS_CLOCK": clock,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def tree():
    return MemoryTree()


@pytest.fixture
def make_store(app, tree, clock, tmp_path):
    def _make(remote=None):
        return StateStore(
            remote=remote or tree,
            cache=LocalCache(str(tmp_path / "treatmentTimerEnd.cache")),
            notifications=NotificationCenter(clock),
            clock=clock,
            app=app,
        )
    return _make


@pytest.fixture
def store(make_store):
    return make_store()


@pytest.fixture
def admin_store(store):
    """Store en la sala de pruebas con un admin ya unido."""
    store.set_room_code(ROOM)
    assert store.join("Ana", is_admin=True) is not None
    return store


@pytest.fixture
def cycle(admin_store):
    c = Cycle(number=1, patient_name="Leo", start_date=datetime(2024, 1, 1).date(),
              food_challenge_date=datetime(2024, 3, 25).date())
    assert admin_store.add_cycle(c)
    return c


@pytest.fixture
def treatment_items(admin_store, cycle):
    a = Item(name="Peanut", category=Category.TREATMENT, dose=1.0, unit="g")
    b = Item(name="Almond", category=Category.TREATMENT, weekly_doses={1: 0.5, 3: 2.0}, unit="g")
    assert admin_store.add_item(a, cycle.id)
    assert admin_store.add_item(b, cycle.id)
    return a, b
