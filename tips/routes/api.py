# tips/routes/api.py

from flask import Blueprint, jsonify

from tips.models.domain import Category
from tips.services.store import get_store
from tips.utils import schedule
from tips.utils.timeutil import format_day, to_iso

api = Blueprint("api", __name__, url_prefix="/api")


# -----------------------------------------------------------------------------#
# Helpers
# -----------------------------------------------------------------------------#
def _timer_to_dict(store):
    end = store.treatment_timer_end
    return {
        "enabled": store.timer.enabled,
        "running": store.timer.is_running,
        "end": to_iso(end) if end else None,
        "remaining": store.timer.remaining(),
        "id": store.treatment_timer_id,
    }


def _today(store):
    """Vista del día: ciclo actual, semana/día y categorías con sus items."""
    now = store.clock()
    today = now.date()
    cycle = store.current_cycle()
    if cycle is None:
        return {
            "date": format_day(today),
            "cycle": None,
            "categories": [],
            "nextCycle": _defaults_to_dict(schedule.next_cycle_defaults(None, today)),
            "timer": _timer_to_dict(store),
            "syncError": store.sync_error,
            "isLoading": store.is_loading,
        }

    week = schedule.week_number(cycle, today)
    week_start, week_end = schedule.week_range(cycle, today)
    items = store.items_for(cycle.id)
    categories = []
    for category in Category:
        rows = []
        for it in (i for i in items if i.category is category):
            logs = store.logs_for(cycle.id, it.id)
            count = schedule.weekly_dose_count(logs, week_start)
            row = {
                "id": it.id,
                "name": it.name,
                "text": schedule.item_display_text(it, week),
                "checked": schedule.is_logged_on(logs, today),
                "weeklyCount": count,
                "order": it.sort_key,
            }
            if category is Category.RECOMMENDED:
                row["progress"] = schedule.weekly_progress(count)
            rows.append(row)
        categories.append({
            "category": category.value,
            "timeOfDay": category.time_of_day,
            "complete": store.is_category_complete(category),
            "collapsed": store.is_collapsed(category),
            "items": rows,
        })

    past_due = schedule.is_cycle_past_due(cycle, today)
    return {
        "date": format_day(today),
        "cycle": cycle.to_dict(with_id=True),
        "week": week,
        "day": schedule.day_of_week(cycle, today),
        "totalWeeks": schedule.total_weeks(cycle),
        "weekRange": [format_day(week_start), format_day(week_end)],
        "pastDue": past_due,
        "nextCycle": _defaults_to_dict(schedule.next_cycle_defaults(cycle, today)) if past_due else None,
        "categories": categories,
        "timer": _timer_to_dict(store),
        "syncError": store.sync_error,
        "isLoading": store.is_loading,
    }


def _defaults_to_dict(d):
    return {
        "number": d["number"],
        "patientName": d["patient_name"],
        "startDate": format_day(d["start_date"]),
        "foodChallengeDate": format_day(d["food_challenge_date"]),
    }


# -----------------------------------------------------------------------------#
# Endpoints
# -----------------------------------------------------------------------------#
@api.get("/state")
def state():
    """Estado completo en formato del árbol remoto."""
    return jsonify({"data": get_store().snapshot()})


@api.get("/today")
def today():
    store = get_store()
    return jsonify({"data": store.run(_today, store)})


@api.get("/timer")
def timer_status():
    store = get_store()
    return jsonify({"data": store.run(_timer_to_dict, store)})


@api.post("/timer/stop")
def timer_stop():
    store = get_store()
    store.run(store.timer.stop)
    return jsonify({"data": store.run(_timer_to_dict, store)})
