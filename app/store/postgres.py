# app/store/postgres.py
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterator, Optional, Type, TypeVar
from uuid import UUID

from psycopg2.extras import Json, RealDictCursor

from app.escrow.model import Escrow
from app.gateways.registry import GatewayConfig
from app.payments.model import TIP_PURCHASE, Contact, Payment, Purchase
from app.store.base import Cursor
from app.tips.model import Match, Tip, TipSelection
from db import get_conn

T = TypeVar("T")

_JSON_COLUMNS = {"response_data"}


def _columns(model: Type[Any]) -> list[str]:
    return [f.name for f in fields(model)]


_PAYMENT_COLS = _columns(Payment)
_PURCHASE_COLS = _columns(Purchase)
_ESCROW_COLS = _columns(Escrow)
_TIP_COLS = _columns(Tip)
_SELECTION_COLS = _columns(TipSelection)


def _select(cols: list[str], alias: str = "") -> str:
    prefix = f"{alias}." if alias else ""
    return ", ".join(prefix + c for c in cols)


def _adapt(col: str, value: Any) -> Any:
    if col in _JSON_COLUMNS and value is not None:
        return Json(value)
    return value


def _lock(for_update: bool) -> str:
    return " FOR UPDATE" if for_update else ""


def _after(after: Optional[Cursor], alias: str = "") -> tuple[str, tuple]:
    if after is None:
        return "", ()
    prefix = f"{alias}." if alias else ""
    return f" AND ({prefix}created_at, {prefix}id) > (%s, %s)", tuple(after)


class PostgresSession:
    """
    Raw-SQL repository bound to one psycopg2 connection (one transaction).
    """

    def __init__(self, conn):
        self.conn = conn

    # -------- helpers --------

    def _one(self, model: Type[T], sql: str, params: tuple) -> Optional[T]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
        return model(**row) if row else None

    def _many(self, model: Type[T], sql: str, params: tuple) -> list[T]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [model(**r) for r in rows]

    def _scalar_row(self, sql: str, params: tuple = ()) -> dict[str, Any]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
        return dict(row or {})

    def _insert(self, table: str, cols: list[str], obj: Any) -> None:
        # unset columns fall back to their database defaults
        present = [c for c in cols if getattr(obj, c) is not None]
        values = tuple(_adapt(c, getattr(obj, c)) for c in present)
        placeholders = ", ".join(["%s"] * len(present))
        with self.conn.cursor() as cur:
            cur.execute(
                f"INSERT INTO {table} ({', '.join(present)}) VALUES ({placeholders})",
                values,
            )

    def _update(self, table: str, cols: list[str], obj: Any) -> None:
        settable = [c for c in cols if c not in ("id", "created_at", "updated_at")]
        assignments = ", ".join(f"{c} = %s" for c in settable)
        values = tuple(_adapt(c, getattr(obj, c)) for c in settable)
        with self.conn.cursor() as cur:
            cur.execute(
                f"UPDATE {table} SET {assignments}, updated_at = now() WHERE id = %s",
                values + (obj.id,),
            )

    # -------- payments --------

    def get_payment(self, payment_id: UUID, *, for_update: bool = False) -> Optional[Payment]:
        return self._one(
            Payment,
            f"SELECT {_select(_PAYMENT_COLS)} FROM app.payments WHERE id = %s" + _lock(for_update),
            (payment_id,),
        )

    def find_payment_by_reference(self, reference: str, *, for_update: bool = False) -> Optional[Payment]:
        return self._one(
            Payment,
            f"""
            SELECT {_select(_PAYMENT_COLS)}
            FROM app.payments
            WHERE payment_reference = %s OR order_number = %s
            ORDER BY created_at DESC
            LIMIT 1
            """ + _lock(for_update),
            (reference, reference),
        )

    def find_payment_by_provider_tx(
        self, provider_transaction_id: str, *, gateway_id: Optional[str] = None, for_update: bool = False
    ) -> Optional[Payment]:
        return self._one(
            Payment,
            f"""
            SELECT {_select(_PAYMENT_COLS)}
            FROM app.payments
            WHERE provider_transaction_id = %s
              AND (%s::text IS NULL OR gateway_id = %s)
            ORDER BY created_at DESC
            LIMIT 1
            """ + _lock(for_update),
            (provider_transaction_id, gateway_id, gateway_id),
        )

    def insert_payment(self, payment: Payment) -> Payment:
        self._insert("app.payments", _PAYMENT_COLS, payment)
        return payment

    def save_payment(self, payment: Payment) -> None:
        self._update("app.payments", _PAYMENT_COLS, payment)

    def list_payments_for_purchase(self, purchase_id: UUID) -> list[Payment]:
        return self._many(
            Payment,
            f"""
            SELECT {_select(_PAYMENT_COLS)}
            FROM app.payments
            WHERE purchase_id = %s AND payment_type = %s
            ORDER BY created_at
            """,
            (purchase_id, TIP_PURCHASE),
        )

    def list_pending_purchase_payments(
        self, *, created_after: datetime, limit: int, after: Optional[Cursor] = None
    ) -> list[Payment]:
        keyset, keyset_params = _after(after)
        return self._many(
            Payment,
            f"""
            SELECT {_select(_PAYMENT_COLS)}
            FROM app.payments
            WHERE status = 'PENDING'
              AND payment_type = %s
              AND created_at >= %s{keyset}
            ORDER BY created_at, id
            LIMIT %s
            """,
            (TIP_PURCHASE, created_after) + keyset_params + (limit,),
        )

    def list_expired_purchase_payments(
        self, *, created_before: datetime, limit: int, after: Optional[Cursor] = None
    ) -> list[Payment]:
        keyset, keyset_params = _after(after)
        return self._many(
            Payment,
            f"""
            SELECT {_select(_PAYMENT_COLS)}
            FROM app.payments
            WHERE status = 'PENDING'
              AND payment_type = %s
              AND created_at < %s{keyset}
            ORDER BY created_at, id
            LIMIT %s
            """,
            (TIP_PURCHASE, created_before) + keyset_params + (limit,),
        )

    def latest_purchase_payment(self, purchase_id: UUID) -> Optional[Payment]:
        return self._one(
            Payment,
            f"""
            SELECT {_select(_PAYMENT_COLS)}
            FROM app.payments
            WHERE purchase_id = %s AND payment_type = %s
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (purchase_id, TIP_PURCHASE),
        )

    def payment_stats(self, *, window_start: datetime, cleanup_before: datetime) -> dict[str, Any]:
        return self._scalar_row(
            """
            SELECT
              count(*) AS total_pending,
              count(*) FILTER (WHERE created_at >= %s) AS pending_in_window,
              count(*) FILTER (WHERE created_at < %s) AS pending_expired
            FROM app.payments
            WHERE status = 'PENDING' AND payment_type = %s
            """,
            (window_start, cleanup_before, TIP_PURCHASE),
        )

    # -------- purchases --------

    def get_purchase(self, purchase_id: UUID, *, for_update: bool = False) -> Optional[Purchase]:
        return self._one(
            Purchase,
            f"SELECT {_select(_PURCHASE_COLS)} FROM app.purchases WHERE id = %s" + _lock(for_update),
            (purchase_id,),
        )

    def save_purchase(self, purchase: Purchase) -> None:
        self._update("app.purchases", _PURCHASE_COLS, purchase)

    def list_purchases_for_tip(self, tip_id: UUID, *, for_update: bool = False) -> list[Purchase]:
        return self._many(
            Purchase,
            f"SELECT {_select(_PURCHASE_COLS)} FROM app.purchases WHERE tip_id = %s ORDER BY created_at"
            + _lock(for_update),
            (tip_id,),
        )

    # -------- escrow --------

    def get_escrow(self, escrow_id: UUID, *, for_update: bool = False) -> Optional[Escrow]:
        return self._one(
            Escrow,
            f"SELECT {_select(_ESCROW_COLS)} FROM app.escrows WHERE id = %s" + _lock(for_update),
            (escrow_id,),
        )

    def get_escrow_for_purchase(self, purchase_id: UUID, *, for_update: bool = False) -> Optional[Escrow]:
        return self._one(
            Escrow,
            f"SELECT {_select(_ESCROW_COLS)} FROM app.escrows WHERE purchase_id = %s" + _lock(for_update),
            (purchase_id,),
        )

    def insert_escrow(self, escrow: Escrow) -> Escrow:
        self._insert("app.escrows", _ESCROW_COLS, escrow)
        return escrow

    def save_escrow(self, escrow: Escrow) -> None:
        self._update("app.escrows", _ESCROW_COLS, escrow)

    def list_settleable_escrows(self, *, limit: int, after: Optional[Cursor] = None) -> list[Escrow]:
        keyset, keyset_params = _after(after, "e")
        return self._many(
            Escrow,
            f"""
            SELECT {_select(_ESCROW_COLS, "e")}
            FROM app.escrows e
            JOIN app.purchases p ON p.id = e.purchase_id
            JOIN app.tips t ON t.id = p.tip_id
            WHERE e.status IN ('PENDING', 'HELD')
              AND p.status = 'COMPLETED'
              AND t.status <> 'PENDING'{keyset}
            ORDER BY e.created_at, e.id
            LIMIT %s
            """,
            keyset_params + (limit,),
        )

    def escrow_stats(self) -> dict[str, Any]:
        return self._scalar_row(
            """
            SELECT
              count(*) FILTER (WHERE status IN ('PENDING', 'HELD')) AS held,
              count(*) FILTER (WHERE status = 'RELEASED') AS released,
              count(*) FILTER (WHERE status = 'REFUNDED') AS refunded,
              COALESCE(sum(amount) FILTER (WHERE status IN ('PENDING', 'HELD')), 0) AS held_amount,
              COALESCE(sum(platform_fee) FILTER (WHERE status = 'RELEASED'), 0) AS platform_fees,
              COALESCE(sum(tipster_earnings) FILTER (WHERE status = 'RELEASED'), 0) AS tipster_earnings,
              COALESCE(sum(amount) FILTER (WHERE status = 'REFUNDED'), 0) AS refunded_amount
            FROM app.escrows
            """
        )

    # -------- tips --------

    def get_tip(self, tip_id: UUID, *, for_update: bool = False) -> Optional[Tip]:
        return self._one(
            Tip,
            f"SELECT {_select(_TIP_COLS)} FROM app.tips WHERE id = %s" + _lock(for_update),
            (tip_id,),
        )

    def save_tip(self, tip: Tip) -> None:
        self._update("app.tips", _TIP_COLS, tip)

    def list_pending_tips(self, *, limit: int, after: Optional[Cursor] = None) -> list[Tip]:
        keyset, keyset_params = _after(after)
        return self._many(
            Tip,
            f"""
            SELECT {_select(_TIP_COLS)}
            FROM app.tips
            WHERE status = 'PENDING'{keyset}
            ORDER BY created_at, id
            LIMIT %s
            """,
            keyset_params + (limit,),
        )

    def list_selections(self, tip_id: UUID) -> list[TipSelection]:
        return self._many(
            TipSelection,
            f"SELECT {_select(_SELECTION_COLS)} FROM app.tip_selections WHERE tip_id = %s ORDER BY id",
            (tip_id,),
        )

    def list_unevaluated_selections(self, *, limit: int, after: Optional[UUID] = None) -> list[TipSelection]:
        keyset = " AND s.id > %s" if after is not None else ""
        return self._many(
            TipSelection,
            f"""
            SELECT {_select(_SELECTION_COLS, "s")}
            FROM app.tip_selections s
            JOIN app.tips t ON t.id = s.tip_id
            WHERE s.is_correct IS NULL
              AND s.is_void = false
              AND t.status = 'PENDING'{keyset}
            ORDER BY s.id
            LIMIT %s
            """,
            ((after,) if after is not None else ()) + (limit,),
        )

    def save_selection(self, selection: TipSelection) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE app.tip_selections
                SET is_correct = %s, is_void = %s, evaluation_reason = %s, evaluated_at = %s
                WHERE id = %s
                """,
                (
                    selection.is_correct,
                    selection.is_void,
                    selection.evaluation_reason,
                    selection.evaluated_at,
                    selection.id,
                ),
            )

    def get_match(self, match_id: UUID) -> Optional[Match]:
        return self._one(
            Match,
            "SELECT id, status, home_score, away_score FROM app.matches WHERE id = %s",
            (match_id,),
        )

    def selection_stats(self) -> dict[str, Any]:
        return self._scalar_row(
            """
            SELECT
              count(*) FILTER (WHERE is_correct IS NULL AND is_void = false) AS pending,
              count(*) FILTER (WHERE is_correct IS NOT NULL) AS evaluated,
              count(*) FILTER (WHERE is_void) AS void
            FROM app.tip_selections
            """
        )

    def tip_stats(self) -> dict[str, Any]:
        return self._scalar_row(
            """
            SELECT
              count(*) FILTER (WHERE status = 'PENDING') AS pending,
              count(*) FILTER (WHERE status = 'WON') AS won,
              count(*) FILTER (WHERE status = 'LOST') AS lost,
              count(*) FILTER (WHERE status = 'VOID') AS void
            FROM app.tips
            """
        )

    # -------- collaborators --------

    def get_user_contact(self, user_id: UUID) -> Optional[Contact]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id AS user_id, email, display_name, phone_number,
                       account_number, account_name, bank_code, bank_name
                FROM app.users
                WHERE id = %s
                """,
                (user_id,),
            )
            row = cur.fetchone()
        return Contact(**row) if row else None

    def get_platform_commission_rate(self) -> Optional[Decimal]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT platform_commission_rate
                FROM app.app_settings
                WHERE is_active = true
                ORDER BY updated_at DESC
                LIMIT 1
                """
            )
            row = cur.fetchone()
        if not row or row[0] is None:
            return None
        return Decimal(str(row[0]))

    def list_gateway_configs(self) -> list[GatewayConfig]:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id, name, status, supported_methods, supported_currencies,
                       configuration, payment_method_handling
                FROM app.payment_gateways
                ORDER BY name
                """
            )
            rows = cur.fetchall()
        return [
            GatewayConfig(
                id=str(r["id"]),
                name=r["name"],
                status=r["status"],
                supported_methods=tuple(r["supported_methods"] or ()),
                supported_currencies=tuple(r["supported_currencies"] or ()),
                configuration=r["configuration"] or {},
                payment_method_handling=r["payment_method_handling"] or {},
            )
            for r in rows
        ]


class PostgresStore:
    @contextmanager
    def session(self) -> Iterator[PostgresSession]:
        with get_conn() as conn:
            yield PostgresSession(conn)
