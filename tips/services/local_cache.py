# tips/services/local_cache.py
"""
Caché local duradera: tabla clave-valor (SQLAlchemy) + un fichero aparte con
el fin del temporizador, redundante, para que sobreviva aunque se pierda el
resto de la caché.
"""
from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from tips import db
from tips.models.cache import CacheEntry
from tips.utils.timeutil import from_iso, to_iso

logger = logging.getLogger(__name__)

TIMER_END_KEY = "cachedTreatmentTimerEnd"


def _atomic_write_text(path: Path, data: str) -> None:
    tmp = path.with_suffix(path.suffix + f".tmp.{uuid.uuid4().hex}")
    tmp.parent.mkdir(parents=True, exist_ok=True)
    tmp.write_text(data, encoding="utf-8")
    tmp.replace(path)


class LocalCache:
    def __init__(self, timer_path: str):
        self.timer_path = Path(timer_path)

    # ---- clave-valor ----
    def get_json(self, key: str, default: Any = None) -> Any:
        row = db.session.get(CacheEntry, key)
        if row is None:
            return default
        try:
            return json.loads(row.value)
        except ValueError:
            logger.warning("[cache] valor ilegible en %s, se ignora", key)
            return default

    def set_json(self, key: str, value: Any) -> None:
        db.session.merge(CacheEntry(key=key, value=json.dumps(value)))
        db.session.commit()

    def get_str(self, key: str) -> Optional[str]:
        value = self.get_json(key)
        return value if isinstance(value, str) else None

    def delete(self, key: str) -> None:
        row = db.session.get(CacheEntry, key)
        if row is not None:
            db.session.delete(row)
            db.session.commit()

    def set_or_delete(self, key: str, value: Any) -> None:
        if value is None:
            self.delete(key)
        else:
            self.set_json(key, value)

    # ---- fin del temporizador ----
    def load_timer_end(self, now: datetime) -> Optional[datetime]:
        """
        Primero el fichero; si no existe, la entrada clave-valor. Un fin ya
        vencido se descarta (y se borra el fichero).
        """
        if self.timer_path.exists():
            try:
                end = from_iso(json.loads(self.timer_path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as e:
                logger.warning("[cache] no se pudo leer %s: %s", self.timer_path, e)
                return None
            if end > now:
                logger.info("[cache] fin de temporizador desde fichero: %s", end)
                return end
            logger.info("[cache] fin de temporizador vencido en fichero (%s), se descarta", end)
            self._remove_timer_file()
            return None

        raw = self.get_str(TIMER_END_KEY)
        if raw:
            try:
                end = from_iso(raw)
            except ValueError:
                logger.warning("[cache] %s ilegible", TIMER_END_KEY)
                return None
            if end > now:
                return end
        return None

    def save_timer_end(self, end: Optional[datetime]) -> None:
        if end is None:
            self.delete(TIMER_END_KEY)
            self._remove_timer_file()
            return
        iso = to_iso(end)
        try:
            _atomic_write_text(self.timer_path, json.dumps(iso))
        except OSError as e:
            logger.error("[cache] no se pudo guardar %s: %s", self.timer_path, e)
        self.set_json(TIMER_END_KEY, iso)

    def _remove_timer_file(self) -> None:
        try:
            os.remove(self.timer_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("[cache] no se pudo borrar %s: %s", self.timer_path, e)
