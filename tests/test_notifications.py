# tests/test_notifications.py

from datetime import datetime, time, timedelta

import pytest

from tips.models.domain import Category, User
from tips.services.notifications import (
    DISMISS_ACTION,
    REMINDER_CATEGORY,
    TREATMENT_TIMER,
    NotificationCenter,
    NotificationRequest,
    next_occurrence,
    reminder_id,
)


@pytest.fixture
def center(app, clock):
    return NotificationCenter(clock)


def _req(id, fire_at, category=REMINDER_CATEGORY):
    return NotificationRequest(id=id, category=category, title="t", body="b", fire_at=fire_at)


def test_unknown_category_rejected(center, clock):
    with pytest.raises(ValueError):
        center.schedule(_req("x", clock(), category="MARKETING"))


def test_reschedule_same_id_replaces(center, clock):
    center.schedule(_req("r1", clock() + timedelta(hours=1)))
    center.schedule(_req("r1", clock() + timedelta(hours=2)))
    pending = center.pending()
    assert len(pending) == 1
    assert pending[0].fire_at == clock() + timedelta(hours=2)


def test_deliver_due_only_past(center, clock):
    center.schedule(_req("early", clock() - timedelta(minutes=1), category=TREATMENT_TIMER))
    center.schedule(_req("late", clock() + timedelta(minutes=1), category=TREATMENT_TIMER))
    delivered = center.deliver_due()
    assert [d["id"] for d in delivered] == ["early"]
    assert [n.id for n in center.pending()] == ["late"]
    assert center.deliver_due() == []


def test_dismiss_cancels(center, clock):
    center.schedule(_req("r1", clock() + timedelta(hours=1)))
    assert center.respond("r1", "SNOOZE") is False
    assert center.is_pending("r1")
    assert center.respond("r1", DISMISS_ACTION) is True
    assert not center.is_pending("r1")


def test_cancel_returns_count(center, clock):
    center.schedule(_req("a", clock()))
    assert center.cancel([]) == 0
    assert center.cancel(["a", "b"]) == 1


def test_next_occurrence():
    now = datetime(2024, 1, 15, 10, 0)
    assert next_occurrence(time(20, 0), now) == datetime(2024, 1, 15, 20, 0)
    assert next_occurrence(time(8, 30), now) == datetime(2024, 1, 16, 8, 30)
    assert next_occurrence(time(10, 0), now) == datetime(2024, 1, 16, 10, 0)


def test_daily_reminders(center, clock):
    center.schedule(_req(reminder_id(Category.RECOMMENDED), clock() + timedelta(hours=3)))
    user = User(
        name="Ana",
        reminders_enabled={Category.MEDICINE: True, Category.TREATMENT: True, Category.MAINTENANCE: False},
        reminder_times={Category.MEDICINE: time(8, 30), Category.TREATMENT: time(20, 0),
                        Category.MAINTENANCE: time(9, 0)},
    )
    ids = center.schedule_daily_reminders(user)
    assert ids == ["reminder_medicine", "reminder_treatment"]

    by_id = {n.id: n for n in center.pending()}
    assert set(by_id) == {"reminder_medicine", "reminder_treatment"}
    med = by_id["reminder_medicine"]
    assert med.fire_at == datetime(2024, 1, 16, 8, 30)
    assert med.title == "Time for Medicine (AM)"
    assert med.body == "Don't forget your medicine items today."
    assert by_id["reminder_treatment"].title == "Time for Treatment (PM)"
    assert by_id["reminder_treatment"].fire_at == datetime(2024, 1, 15, 20, 0)


def test_daily_reminder_rearms_after_delivery(center, clock):
    user = User(
        name="Ana",
        reminders_enabled={Category.MEDICINE: True},
        reminder_times={Category.MEDICINE: time(9, 0)},
    )
    center.schedule_daily_reminders(user)

    clock.now = datetime(2024, 1, 16, 9, 0, 5)
    assert [d["id"] for d in center.deliver_due()] == ["reminder_medicine"]
    pending = center.pending()
    assert [n.id for n in pending] == ["reminder_medicine"]
    assert pending[0].fire_at == datetime(2024, 1, 17, 9, 0)

    clock.now = datetime(2024, 1, 17, 9, 0, 5)
    assert [d["id"] for d in center.deliver_due()] == ["reminder_medicine"]
    assert center.pending()[0].fire_at == datetime(2024, 1, 18, 9, 0)


def test_missed_days_rearm_to_next_future_occurrence(center, clock):
    center.schedule(_req("reminder_treatment", datetime(2024, 1, 10, 20, 0)))
    assert len(center.deliver_due()) == 1
    assert center.pending()[0].fire_at == datetime(2024, 1, 15, 20, 0)
