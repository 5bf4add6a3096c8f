# tips/services/timer.py
"""
Temporizador de treatment food: Idle <-> Running(end).

- start: al marcar un treatment con la categoría aún incompleta y la función
  activada. Programa una notificación y persiste el fin en el store.
- stop: al vencer, al completarse la categoría o al desmarcar.
- resume: al arrancar, si hay un fin futuro persistido; reprograma la
  notificación (mismo id) si se perdió.
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from tips.models.domain import Category, new_id
from tips.services.notifications import TREATMENT_TIMER, NotificationRequest

if TYPE_CHECKING:
    from tips.services.store import StateStore

logger = logging.getLogger(__name__)

TIMER_ID_PREFIX = "treatment_timer_"


def new_timer_id() -> str:
    return f"{TIMER_ID_PREFIX}{new_id()}"


def timer_notification(timer_id: str, fire_at: datetime, duration: float) -> NotificationRequest:
    return NotificationRequest(
        id=timer_id,
        category=TREATMENT_TIMER,
        title="Time for the next treatment food",
        body=f"Your {int(duration // 60)} minute treatment food timer has ended.",
        fire_at=fire_at,
    )


class TimerController:
    def __init__(self, store: "StateStore"):
        self.store = store
        store.on_change(self._on_change)

    @property
    def enabled(self) -> bool:
        user = self.store.current_user
        return bool(user and user.treatment_food_timer_enabled)

    def duration(self) -> float:
        user = self.store.current_user
        return float(user.treatment_timer_duration) if user else self.store.default_timer_seconds

    @property
    def is_running(self) -> bool:
        end = self.store.treatment_timer_end
        return end is not None and end > self.store.clock()

    def remaining(self, now: Optional[datetime] = None) -> Optional[float]:
        end = self.store.treatment_timer_end
        if end is None:
            return None
        now = now or self.store.clock()
        return max(0.0, (end - now).total_seconds())

    def start(self) -> Optional[datetime]:
        store = self.store
        if not self.enabled:
            return None
        if store.is_category_complete(Category.TREATMENT):
            self.stop()
            return None
        self.stop()

        duration = self.duration()
        end = store.clock() + timedelta(seconds=duration)
        timer_id = new_timer_id()
        store.set_treatment_timer_end(end)
        store.set_treatment_timer_id(timer_id)
        store.notifications.schedule(timer_notification(timer_id, end, duration))
        logger.info("[timer] iniciado: fin=%s (%ss), id=%s", end, duration, timer_id)
        return end

    def stop(self) -> None:
        store = self.store
        timer_id = store.treatment_timer_id
        if store.treatment_timer_end is None and timer_id is None:
            return
        store.set_treatment_timer_end(None)
        store.set_treatment_timer_id(None)
        if timer_id:
            store.notifications.cancel([timer_id])
        logger.info("[timer] detenido (id=%s)", timer_id)

    def resume(self) -> Optional[float]:
        """Reanuda un temporizador persistido; devuelve los segundos restantes."""
        store = self.store
        now = store.clock()
        end = store.treatment_timer_end
        if end is None or end <= now:
            self.stop()
            return None
        remaining = (end - now).total_seconds()
        timer_id = store.treatment_timer_id or new_timer_id()
        store.set_treatment_timer_id(timer_id)
        if store.notifications.is_pending(timer_id):
            logger.info("[timer] %s sigue pendiente, no hace falta reprogramar", timer_id)
        else:
            fire_at = now + timedelta(seconds=max(remaining, 1))
            store.notifications.schedule(timer_notification(timer_id, fire_at, self.duration()))
            logger.info("[timer] notificación %s reprogramada para %s", timer_id, fire_at)
        logger.info("[timer] reanudado: fin=%s, restante=%.0fs", end, remaining)
        return remaining

    def tick(self) -> Optional[float]:
        """Un paso del bucle de 1 Hz: recalcula y pasa a Idle si toca."""
        if not self.enabled or self.store.treatment_timer_end is None:
            return None
        remaining = self.remaining()
        if remaining <= 0 or self.store.is_category_complete(Category.TREATMENT):
            self.stop()
            return 0.0
        return remaining

    def handle_log_change(self) -> None:
        """Cambió el registro (local o remoto): revisar timer y plegado."""
        store = self.store
        if self.enabled and store.is_category_complete(Category.TREATMENT):
            self.stop()
        for category in Category:
            complete = store.is_category_complete(category)
            if store.category_collapsed.get(category.value) != complete:
                store.set_category_collapsed(category, complete)

    def _on_change(self, topic: str) -> None:
        if topic == "consumptionLog":
            self.handle_log_change()


class TimerTicker:
    """Hilo en segundo plano: tick del temporizador y entrega de notificaciones."""

    def __init__(self, store: "StateStore", interval: float = 1.0):
        self.store = store
        self.interval = interval
        self.running = False
        self.thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        self.thread = threading.Thread(target=self._loop, name="tips-ticker", daemon=True)
        self.thread.start()
        logger.info("[timer] ticker iniciado (%.1fs)", self.interval)

    def stop(self) -> None:
        self.running = False
        if self.thread:
            self.thread.join(timeout=2)
        logger.info("[timer] ticker detenido")

    def _loop(self) -> None:
        while self.running:
            try:
                self.step()
            except Exception:
                logger.exception("[timer] fallo en el tick")
            time.sleep(self.interval)

    def step(self):
        """Un tick completo, en la secuencia del store."""
        store = self.store
        store.check_and_reset_if_needed()
        remaining = store.run(store.timer.tick)
        store.run(store.notifications.deliver_due)
        return remaining
