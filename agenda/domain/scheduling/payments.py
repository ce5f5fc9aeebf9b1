"""Payment status vocabulary"""

from typing import Optional

# Literal spellings seen in stored data; matched exactly, no normalisation
PAID_STATUSES = frozenset({"paid", "Pago", "Paid"})

# Gateway statuses that mean the charge went through
APPROVED_GATEWAY_STATUSES = frozenset({"approved"}) | PAID_STATUSES


def is_paid(*statuses: Optional[str]) -> bool:
    """True when any of the given status values is a paid spelling"""
    return any(status in PAID_STATUSES for status in statuses if status)


def is_approved(gateway_status: Optional[str]) -> bool:
    return gateway_status in APPROVED_GATEWAY_STATUSES
