"""
Appointment change feed.

Emulates document-store triggers on top of SQLAlchemy session events:
inserts and updates of Appointment rows are collected at flush time with
before/after snapshots and handed to a dispatcher once the transaction
commits. Rolled-back work is never dispatched.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import event, inspect

from ...models import Appointment

logger = logging.getLogger(__name__)

PENDING_KEY = "agenda_pending_appointment_changes"

CREATED = "created"
UPDATED = "updated"


@dataclass
class AppointmentChange:
    kind: str  # created or updated
    appointment_id: str
    professional_id: int
    after: dict
    before: Optional[dict] = field(default=None)

    def to_payload(self) -> dict:
        """JSON-safe form used for queue transport"""
        return {
            "kind": self.kind,
            "appointment_id": self.appointment_id,
            "professional_id": self.professional_id,
            "before": _serialize(self.before) if self.before is not None else None,
            "after": _serialize(self.after),
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "AppointmentChange":
        return cls(
            kind=payload["kind"],
            appointment_id=payload["appointment_id"],
            professional_id=payload["professional_id"],
            before=payload.get("before"),
            after=payload.get("after") or {},
        )


def _serialize(snapshot: dict) -> dict:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in snapshot.items()}


def _column_keys() -> list[str]:
    return [attr.key for attr in inspect(Appointment).column_attrs]


def snapshot_after(obj: Appointment) -> dict:
    """Current values of every loaded column attribute"""
    state = inspect(obj)
    return {key: state.dict[key] for key in _column_keys() if key in state.dict}


def snapshot_before(obj: Appointment) -> dict:
    """Values as they were before the pending flush, from attribute history"""
    state = inspect(obj)
    values = {}
    for key in _column_keys():
        history = state.attrs[key].history
        if history.deleted:
            values[key] = history.deleted[0]
        elif history.unchanged:
            values[key] = history.unchanged[0]
        elif history.added:
            # previously NULL or never loaded
            values[key] = None
    return values


class AppointmentChangeFeed:
    """Collects Appointment writes per session and dispatches them after commit"""

    def __init__(self, dispatch: Callable[[AppointmentChange], None]):
        self.dispatch = dispatch
        self._targets = []

    def register(self, target) -> None:
        """Attach to a sessionmaker, Session class or Session instance"""
        event.listen(target, "after_flush", self._after_flush)
        event.listen(target, "after_commit", self._after_commit)
        event.listen(target, "after_soft_rollback", self._after_rollback)
        self._targets.append(target)

    def unregister(self) -> None:
        for target in self._targets:
            event.remove(target, "after_flush", self._after_flush)
            event.remove(target, "after_commit", self._after_commit)
            event.remove(target, "after_soft_rollback", self._after_rollback)
        self._targets = []

    def _after_flush(self, session, flush_context) -> None:
        # new/dirty still show pre-flush state here, and history is intact
        pending = session.info.setdefault(PENDING_KEY, [])
        for obj in session.new:
            if isinstance(obj, Appointment):
                pending.append(
                    AppointmentChange(
                        kind=CREATED,
                        appointment_id=obj.id,
                        professional_id=obj.professional_id,
                        after=snapshot_after(obj),
                    )
                )
        for obj in session.dirty:
            if isinstance(obj, Appointment) and session.is_modified(obj, include_collections=False):
                pending.append(
                    AppointmentChange(
                        kind=UPDATED,
                        appointment_id=obj.id,
                        professional_id=obj.professional_id,
                        before=snapshot_before(obj),
                        after=snapshot_after(obj),
                    )
                )

    def _after_commit(self, session) -> None:
        changes = session.info.pop(PENDING_KEY, [])
        for change in changes:
            try:
                self.dispatch(change)
            except Exception as e:
                # Triggers have no caller to report to
                logger.error(
                    f"❌ Failed to dispatch {change.kind} event for appointment "
                    f"{change.appointment_id}: {e}"
                )

    def _after_rollback(self, session, previous_transaction) -> None:
        session.info.pop(PENDING_KEY, None)
