from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

TIP_PENDING = "PENDING"
TIP_WON = "WON"
TIP_LOST = "LOST"
TIP_VOID = "VOID"
TIP_CANCELLED = "CANCELLED"

MATCH_FINISHED = "finished"
MATCH_CANCELLED = "cancelled"
MATCH_POSTPONED = "postponed"


@dataclass
class Tip:
    id: UUID
    tipster_user_id: Optional[UUID]
    status: str
    is_ai: bool = False
    title: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class TipSelection:
    id: UUID
    tip_id: UUID
    match_id: UUID
    prediction_type: str
    prediction_value: str
    odds: Optional[Decimal] = None
    is_correct: Optional[bool] = None
    is_void: bool = False
    evaluation_reason: Optional[str] = None
    evaluated_at: Optional[datetime] = None

    def is_resolved(self) -> bool:
        return self.is_void or self.is_correct is not None


@dataclass(frozen=True)
class Match:
    id: UUID
    status: str
    home_score: Optional[int] = None
    away_score: Optional[int] = None

    @property
    def normalized_status(self) -> str:
        return (self.status or "").strip().lower()
