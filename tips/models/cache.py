# tips/models/cache.py
from datetime import datetime
from tips import db


class CacheEntry(db.Model):
    """Caché local clave-valor (JSON serializado) del estado de la sala."""
    __tablename__ = "cache_entries"

    key = db.Column(db.String(120), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<CacheEntry {self.key}>"


class PendingNotification(db.Model):
    """Notificación local programada (una sola vez) pendiente de entregar."""
    __tablename__ = "pending_notifications"

    id = db.Column(db.String(120), primary_key=True)
    # TREATMENT_TIMER | REMINDER_CATEGORY
    category = db.Column(db.String(40), index=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    body = db.Column(db.String(500), nullable=False, default="")
    fire_at = db.Column(db.DateTime, index=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "title": self.title,
            "body": self.body,
            "fire_at": self.fire_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"<PendingNotification {self.id} @ {self.fire_at}>"
