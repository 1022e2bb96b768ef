# app/payments/state_machine.py
from __future__ import annotations

import logging

logger = logging.getLogger("tipsettle.payments")


class InvalidTransition(Exception):
    pass


PENDING = "PENDING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
CANCELLED = "CANCELLED"

PAYMENT_TRANSITIONS = {
    "PENDING": {"COMPLETED", "FAILED", "CANCELLED"},
    "COMPLETED": set(),
    "FAILED": set(),
    "CANCELLED": set(),
}

# purchase mirrors its completing payment
PURCHASE_TRANSITIONS = {
    "PENDING": {"COMPLETED", "FAILED", "CANCELLED"},
    "COMPLETED": set(),
    "FAILED": set(),
    "CANCELLED": set(),
}

ESCROW_TRANSITIONS = {
    "PENDING": {"HELD", "RELEASED", "REFUNDED"},
    "HELD": {"RELEASED", "REFUNDED"},
    "RELEASED": set(),
    "REFUNDED": set(),
}

TIP_TRANSITIONS = {
    "PENDING": {"WON", "LOST", "VOID", "CANCELLED"},
    "WON": set(),
    "LOST": set(),
    "VOID": set(),
    "CANCELLED": set(),
}

_TABLES = {
    "payment": PAYMENT_TRANSITIONS,
    "purchase": PURCHASE_TRANSITIONS,
    "escrow": ESCROW_TRANSITIONS,
    "tip": TIP_TRANSITIONS,
}

# gateway-side vocabulary every adapter reduces to
GATEWAY_STATUSES = ("pending", "completed", "failed", "cancelled")


def can_transition(old: str, new: str, *, entity: str = "payment") -> bool:
    table = _TABLES[entity]
    return new in table.get((old or "").upper(), set())


def assert_transition(old: str, new: str, *, entity: str = "payment") -> None:
    if not can_transition(old, new, entity=entity):
        raise InvalidTransition(f"Illegal {entity} transition: {old} -> {new}")


def is_terminal(status: str, *, entity: str = "payment") -> bool:
    table = _TABLES[entity]
    key = (status or "").upper()
    return key in table and not table[key]


def payment_status_from_gateway(gateway_status: str) -> str:
    """
    Gateway vocabulary (pending/completed/failed/cancelled) -> local Payment status.
    """
    st = (gateway_status or "").strip().lower()
    if st not in GATEWAY_STATUSES:
        logger.warning("unrecognized gateway status mapped to PENDING status=%r", gateway_status)
        return PENDING
    return st.upper()
