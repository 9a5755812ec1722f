from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from boletrics_payments.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Effect(str, Enum):
    UPDATE_ORDER = "update_order"
    GENERATE_TICKETS = "generate_tickets"
    RELEASE_INVENTORY = "release_inventory"
    CANCEL_TICKETS = "cancel_tickets"
    EXPIRE_ORPHAN = "expire_orphan"


class OutboxEntry(Base):
    __tablename__ = "outbox_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    effect = Column(String, nullable=False, index=True)      # Effect value
    order_id = Column(String, nullable=False, index=True)    # tickets-svc order id
    event_id = Column(String, nullable=True)                 # Conekta event id, if any
    payload = Column(JSON, nullable=False, default=dict)
    last_error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending", index=True)  # pending | done
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "effect": self.effect,
            "order_id": self.order_id,
            "event_id": self.event_id,
            "payload": self.payload,
            "last_error": self.last_error,
            "attempts": self.attempts,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
