"""Durable record of downstream effects that did not go through.

The reconciler and the orchestrator never retry inline. They drop failed
effects (and pending orders orphaned by a failed checkout) here, and an
operator replays them later.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import structlog
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

from boletrics_payments.database import SessionLocal
from boletrics_payments.errors import GatewayError, PaymentsError
from boletrics_payments.models import Effect, OutboxEntry

log = structlog.get_logger(__name__)


@dataclass
class ReplayReport:
    succeeded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)

    def to_dict(self):
        return {"succeeded": self.succeeded, "failed": self.failed, "skipped": self.skipped}


def _aware(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back naive
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Outbox:
    def __init__(self, session_factory=None):
        self._session_factory = session_factory or SessionLocal

    def record(
        self,
        effect: Effect,
        order_id: str,
        event_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Optional[int]:
        db = self._session_factory()
        try:
            entry = OutboxEntry(
                effect=Effect(effect).value,
                order_id=order_id,
                event_id=event_id,
                payload=payload or {},
                last_error=error,
                attempts=0,
                status="pending",
            )
            db.add(entry)
            db.commit()
            log.info("outbox.recorded", entry_id=entry.id, effect=entry.effect, order_id=order_id)
            return entry.id
        except SQLAlchemyError as exc:
            db.rollback()
            log.error("outbox.record_failed", effect=str(effect), order_id=order_id, error=repr(exc))
            return None
        finally:
            db.close()

    def pending(self, limit: int = 100) -> List[Dict[str, Any]]:
        db = self._session_factory()
        try:
            entries = (
                db.query(OutboxEntry)
                .filter_by(status="pending")
                .order_by(OutboxEntry.id)
                .limit(limit)
                .all()
            )
            return [entry.to_dict() for entry in entries]
        finally:
            db.close()

    async def replay(self, tickets, gateway=None, orphan_ttl: int = 1800, now=None) -> ReplayReport:
        """Re-issue every pending entry once.

        Session work runs in the threadpool; the downstream calls are awaited
        on the loop between those short transactions.
        """
        report = ReplayReport()
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=orphan_ttl)

        entries = await run_in_threadpool(self._load_pending)
        for entry in entries:
            if entry.effect == Effect.EXPIRE_ORPHAN.value and _aware(entry.created_at) > cutoff:
                report.skipped.append(entry.id)
                continue

            try:
                await self._apply(entry, tickets, gateway)
            except PaymentsError as exc:
                await run_in_threadpool(self._mark, entry.id, str(exc))
                report.failed.append(entry.id)
                log.warning(
                    "outbox.replay_failed",
                    entry_id=entry.id,
                    effect=entry.effect,
                    order_id=entry.order_id,
                    error=str(exc),
                )
            else:
                await run_in_threadpool(self._mark, entry.id, None)
                report.succeeded.append(entry.id)
                log.info("outbox.replayed", entry_id=entry.id, effect=entry.effect, order_id=entry.order_id)
        return report

    def _load_pending(self) -> List[OutboxEntry]:
        db = self._session_factory()
        try:
            return db.query(OutboxEntry).filter_by(status="pending").order_by(OutboxEntry.id).all()
        finally:
            db.close()

    def _mark(self, entry_id: int, error: Optional[str]):
        db = self._session_factory()
        try:
            entry = db.get(OutboxEntry, entry_id)
            entry.attempts = (entry.attempts or 0) + 1
            entry.last_error = error
            if error is None:
                entry.status = "done"
            db.commit()
        finally:
            db.close()
    async def _apply(self, entry: OutboxEntry, tickets, gateway):
        effect = Effect(entry.effect)
        payload = entry.payload or {}

        if effect == Effect.UPDATE_ORDER:
            await tickets.update_order(entry.order_id, **payload)
        elif effect == Effect.GENERATE_TICKETS:
            await tickets.generate_tickets(entry.order_id)
        elif effect == Effect.RELEASE_INVENTORY:
            await tickets.release_inventory(entry.order_id)
        elif effect == Effect.CANCEL_TICKETS:
            await tickets.cancel_tickets(entry.order_id)
        elif effect == Effect.EXPIRE_ORPHAN:
            payment_order_id = payload.get("payment_order_id")
            if payment_order_id and gateway is not None:
                try:
                    await gateway.cancel_order(payment_order_id)
                except GatewayError as exc:
                    # already expired/terminal upstream is fine
                    log.info(
                        "outbox.orphan_remote_cancel_failed",
                        order_id=entry.order_id,
                        payment_order_id=payment_order_id,
                        error=str(exc),
                    )
            await tickets.update_order(entry.order_id, status="cancelled")
            await tickets.release_inventory(entry.order_id)
