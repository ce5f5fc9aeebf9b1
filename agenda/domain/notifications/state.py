"""
Per-channel notification state.

Each channel of each logical appointment event moves from unset to one of
the values below. ``sent`` and the ``skipped_*`` values are final for that
event; ``error`` may be retried while the entity's attempt counter is below
its ceiling.
"""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Optional


class NotificationStatus(str, Enum):
    SENT = "sent"
    ERROR = "error"
    SKIPPED_NO_CLIENT_EMAIL = "skipped_no_client_email"
    SKIPPED_NO_PROFESSIONAL_EMAIL = "skipped_no_professional_email"


SETTLED_STATUSES = frozenset(
    {
        NotificationStatus.SENT.value,
        NotificationStatus.SKIPPED_NO_CLIENT_EMAIL.value,
        NotificationStatus.SKIPPED_NO_PROFESSIONAL_EMAIL.value,
    }
)


def is_settled(status: Optional[str]) -> bool:
    return status in SETTLED_STATUSES


def can_transition(current: Optional[str]) -> bool:
    """unset and error may move to any status; settled states never move"""
    return current is None or current == NotificationStatus.ERROR.value


# Fields written by the notifier and the reminder sweeps, plus bookkeeping
# timestamps. An update touching only these is not a semantic change.
NOTIFIER_OWNED_FIELDS = frozenset(
    {
        "confirmation_email_status",
        "confirmation_email_id",
        "professional_notification_status",
        "professional_notification_id",
        "professional_notification_error",
        "update_email_status",
        "update_email_id",
        "professional_update_status",
        "update_event_key",
        "notification_error",
        "welcome_email_attempt_count",
        "email_update_count",
        "reminder_24h_sent",
        "reminder_24h_sending",
        "reminder_24h_sending_at",
        "reminder_24h_sent_at",
        "reminder_24h_error",
        "reminder_3h_sent",
        "reminder_3h_sending",
        "reminder_3h_sending_at",
        "reminder_3h_sent_at",
        "reminder_3h_error",
        "created_at",
        "updated_at",
    }
)


def semantic_view(snapshot: Optional[dict]) -> dict:
    """The snapshot with every notifier-owned field removed"""
    if not snapshot:
        return {}
    return {k: v for k, v in snapshot.items() if k not in NOTIFIER_OWNED_FIELDS}


def is_semantic_change(before: Optional[dict], after: Optional[dict]) -> bool:
    return semantic_view(before) != semantic_view(after)


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def event_key(snapshot: dict) -> str:
    """Stable fingerprint of the semantic fields; identifies one logical update event"""
    encoded = json.dumps(semantic_view(snapshot), sort_keys=True, default=_json_default)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:32]
