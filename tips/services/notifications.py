# tips/services/notifications.py
"""
Registro local de notificaciones programadas (de un solo disparo).

Dos categorías, cada una con una única acción ``DISMISS``:
- TREATMENT_TIMER: fin del temporizador de treatment food.
- REMINDER_CATEGORY: recordatorio diario por categoría.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from tips import db
from tips.models.cache import PendingNotification
from tips.models.domain import Category, User

logger = logging.getLogger(__name__)

TREATMENT_TIMER = "TREATMENT_TIMER"
REMINDER_CATEGORY = "REMINDER_CATEGORY"
DISMISS_ACTION = "DISMISS"

# categoría -> acciones disponibles
CATEGORY_ACTIONS = {
    TREATMENT_TIMER: (DISMISS_ACTION,),
    REMINDER_CATEGORY: (DISMISS_ACTION,),
}


@dataclass
class NotificationRequest:
    id: str
    category: str
    title: str
    body: str
    fire_at: datetime


def reminder_id(category: Category) -> str:
    return f"reminder_{category.value.lower()}"


def next_occurrence(at, now: datetime) -> datetime:
    """Siguiente instante (hoy o mañana) con la hora ``at``."""
    candidate = now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class NotificationCenter:
    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock

    def schedule(self, request: NotificationRequest) -> None:
        """Programa (o reprograma, mismo id) una notificación."""
        if request.category not in CATEGORY_ACTIONS:
            raise ValueError(f"categoría de notificación desconocida: {request.category}")
        db.session.merge(PendingNotification(
            id=request.id,
            category=request.category,
            title=request.title,
            body=request.body,
            fire_at=request.fire_at,
        ))
        db.session.commit()
        logger.info("[notify] programada %s para %s", request.id, request.fire_at)

    def cancel(self, ids: Iterable[str]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        n = PendingNotification.query.filter(PendingNotification.id.in_(ids)).delete(synchronize_session=False)
        db.session.commit()
        if n:
            logger.info("[notify] canceladas: %s", ", ".join(ids))
        return n

    def pending(self) -> List[PendingNotification]:
        return PendingNotification.query.order_by(PendingNotification.fire_at.asc()).all()

    def is_pending(self, notification_id: str) -> bool:
        return db.session.get(PendingNotification, notification_id) is not None

    def deliver_due(self, now: Optional[datetime] = None) -> List[dict]:
        """
        Entrega (registra en log) las que ya tocan. Las del temporizador se
        eliminan; los recordatorios diarios se rearman para el día siguiente.
        """
        now = now or self.clock()
        due = (
            PendingNotification.query
            .filter(PendingNotification.fire_at <= now)
            .order_by(PendingNotification.fire_at.asc())
            .all()
        )
        delivered = []
        for n in due:
            logger.info("[notify] %s | %s: %s", n.category, n.title, n.body)
            delivered.append(n.to_dict())
            if n.category == REMINDER_CATEGORY:
                fire_at = n.fire_at
                while fire_at <= now:
                    fire_at += timedelta(days=1)
                n.fire_at = fire_at
                logger.info("[notify] %s rearmado para %s", n.id, fire_at)
            else:
                db.session.delete(n)
        if due:
            db.session.commit()
        return delivered

    def respond(self, notification_id: str, action: str) -> bool:
        """Acción del usuario sobre una notificación; solo existe DISMISS."""
        if action != DISMISS_ACTION:
            logger.warning("[notify] acción desconocida %s sobre %s", action, notification_id)
            return False
        logger.info("[notify] el usuario descarta %s", notification_id)
        self.cancel([notification_id])
        return True

    def schedule_daily_reminders(self, user: User, now: Optional[datetime] = None) -> List[str]:
        """
        Programa el próximo recordatorio de cada categoría activada y cancela
        los de las desactivadas. Devuelve los ids programados.
        """
        now = now or self.clock()
        scheduled, cancelled = [], []
        for category in Category:
            rid = reminder_id(category)
            at = user.reminder_times.get(category)
            if user.reminders_enabled.get(category) and at is not None:
                self.schedule(NotificationRequest(
                    id=rid,
                    category=REMINDER_CATEGORY,
                    title=f"Time for {category.value} {category.time_of_day}",
                    body=f"Don't forget your {category.value.lower()} items today.",
                    fire_at=next_occurrence(at, now),
                ))
                scheduled.append(rid)
            else:
                cancelled.append(rid)
        self.cancel(cancelled)
        return scheduled
