# services/fingerprint.py
from __future__ import annotations

import hashlib
from datetime import datetime
from decimal import Decimal
from typing import Optional


def _normalize_amount(amount: Optional[Decimal]) -> str:
    if amount is None:
        return ""
    # 100, 100.0 and 100.00 must hash the same
    return format(Decimal(amount).normalize(), "f")


def _normalize_time(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else ""


def webhook_fingerprint(
    *,
    provider_transaction_id: Optional[str],
    provider_status_code: str,
    amount: Optional[Decimal],
    completed_at: Optional[datetime],
) -> str:
    raw = "|".join(
        (
            provider_transaction_id or "",
            (provider_status_code or "").strip(),
            _normalize_amount(amount),
            _normalize_time(completed_at),
        )
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()

