# app/store/base.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, ContextManager, Optional, Protocol
from uuid import UUID

from app.escrow.model import Escrow
from app.payments.model import Contact, Payment, Purchase
from app.tips.model import Match, Tip, TipSelection

# keyset position for batch scans: (created_at, id) of the last row seen
Cursor = tuple[datetime, UUID]


class StoreSession(Protocol):
    """
    One transaction. Everything written through a session commits together
    when the session block exits cleanly and rolls back on any exception.
    """

    # -------- payments --------

    def get_payment(self, payment_id: UUID, *, for_update: bool = False) -> Optional[Payment]: ...

    def find_payment_by_reference(self, reference: str, *, for_update: bool = False) -> Optional[Payment]: ...

    def find_payment_by_provider_tx(
        self, provider_transaction_id: str, *, gateway_id: Optional[str] = None, for_update: bool = False
    ) -> Optional[Payment]: ...

    def insert_payment(self, payment: Payment) -> Payment: ...

    def save_payment(self, payment: Payment) -> None: ...

    def list_payments_for_purchase(self, purchase_id: UUID) -> list[Payment]: ...

    def list_pending_purchase_payments(
        self, *, created_after: datetime, limit: int, after: Optional[Cursor] = None
    ) -> list[Payment]: ...

    def list_expired_purchase_payments(
        self, *, created_before: datetime, limit: int, after: Optional[Cursor] = None
    ) -> list[Payment]: ...

    def latest_purchase_payment(self, purchase_id: UUID) -> Optional[Payment]: ...

    def payment_stats(self, *, window_start: datetime, cleanup_before: datetime) -> dict[str, Any]: ...

    # -------- purchases --------

    def get_purchase(self, purchase_id: UUID, *, for_update: bool = False) -> Optional[Purchase]: ...

    def save_purchase(self, purchase: Purchase) -> None: ...

    def list_purchases_for_tip(self, tip_id: UUID, *, for_update: bool = False) -> list[Purchase]: ...

    # -------- escrow --------

    def get_escrow(self, escrow_id: UUID, *, for_update: bool = False) -> Optional[Escrow]: ...

    def get_escrow_for_purchase(self, purchase_id: UUID, *, for_update: bool = False) -> Optional[Escrow]: ...

    def insert_escrow(self, escrow: Escrow) -> Escrow: ...

    def save_escrow(self, escrow: Escrow) -> None: ...

    def list_settleable_escrows(self, *, limit: int, after: Optional[Cursor] = None) -> list[Escrow]: ...

    def escrow_stats(self) -> dict[str, Any]: ...

    # -------- tips --------

    def get_tip(self, tip_id: UUID, *, for_update: bool = False) -> Optional[Tip]: ...

    def save_tip(self, tip: Tip) -> None: ...

    def list_pending_tips(self, *, limit: int, after: Optional[Cursor] = None) -> list[Tip]: ...

    def list_selections(self, tip_id: UUID) -> list[TipSelection]: ...

    def list_unevaluated_selections(self, *, limit: int, after: Optional[UUID] = None) -> list[TipSelection]: ...

    def save_selection(self, selection: TipSelection) -> None: ...

    def get_match(self, match_id: UUID) -> Optional[Match]: ...

    def selection_stats(self) -> dict[str, Any]: ...

    def tip_stats(self) -> dict[str, Any]: ...

    # -------- collaborators --------

    def get_user_contact(self, user_id: UUID) -> Optional[Contact]: ...

    def get_platform_commission_rate(self) -> Optional[Decimal]: ...

    def list_gateway_configs(self) -> list[Any]: ...


class Store(Protocol):
    def session(self) -> ContextManager[StoreSession]: ...


def cursor_of(row: Any) -> Cursor:
    return (row.created_at, row.id)
