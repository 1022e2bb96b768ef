# app/gateways/registry.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from app.gateways.base import (
    HANDLING_CHECKOUT_URL,
    HANDLING_DIRECT,
    HANDLING_MODES,
    GatewayAdapter,
    PaymentRequest,
    PaymentResponse,
    PaymentStatusResult,
)

logger = logging.getLogger("tipsettle.registry")

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUS_MAINTENANCE = "maintenance"


class GatewayNotFound(LookupError):
    pass


class UnsupportedPaymentOption(ValueError):
    pass


@dataclass(frozen=True)
class GatewayConfig:
    """
    One persisted gateway row. Empty method/currency lists mean "whatever the adapter supports".
    """
    id: str
    name: str
    status: str = STATUS_ACTIVE
    supported_methods: tuple[str, ...] = ()
    supported_currencies: tuple[str, ...] = ()
    configuration: Mapping[str, Any] = field(default_factory=dict)
    payment_method_handling: Mapping[str, Any] = field(default_factory=dict)

    @property
    def enabled(self) -> bool:
        return (self.status or "").strip().lower() == STATUS_ACTIVE


def _service_id(name: str) -> Optional[str]:
    lowered = (name or "").strip().lower()
    for known in ("palmpay", "ogateway"):
        if known in lowered:
            return known
    return None


@dataclass(frozen=True)
class _Snapshot:
    adapters: Mapping[str, GatewayAdapter]
    configs: Mapping[str, GatewayConfig]


def _build_snapshot(adapters: Mapping[str, GatewayAdapter], configs: Iterable[GatewayConfig]) -> _Snapshot:
    by_key: dict[str, GatewayConfig] = {}
    for cfg in configs:
        by_key[cfg.id] = cfg
        by_key[cfg.id.lower()] = cfg
        by_key[cfg.name.lower()] = cfg
        sid = _service_id(cfg.name) or _service_id(cfg.id)
        if sid:
            by_key[sid] = cfg

    for gid, adapter in adapters.items():
        if gid not in by_key:
            logger.warning("gateway registered without persisted config gateway=%s -> unavailable", gid)
        elif not adapter.validate_configuration():
            logger.warning(
                "gateway configuration incomplete gateway=%s missing=%s",
                gid,
                ",".join(adapter.missing_configuration()),
            )

    return _Snapshot(adapters=MappingProxyType(dict(adapters)), configs=MappingProxyType(by_key))


class GatewayRegistry:
    """
    Logical gateway id -> adapter, plus the persisted config for each.

    The snapshot is immutable; refresh() builds a new one and swaps the reference,
    so readers always see either the old or the new map in full.
    """

    def __init__(self, adapters: Iterable[GatewayAdapter], configs: Iterable[GatewayConfig] = ()):
        self._lock = threading.Lock()
        registered = {a.gateway_id.lower(): a for a in adapters}
        self._snapshot = _build_snapshot(registered, configs)
        logger.info("gateway registry built gateways=%s", ",".join(sorted(registered)) or "<none>")

    def refresh(self, configs: Iterable[GatewayConfig]) -> None:
        configs = list(configs)
        with self._lock:
            snapshot = _build_snapshot(self._snapshot.adapters, configs)
            self._snapshot = snapshot
        logger.info("gateway registry refreshed configs=%s", len(configs))

    def refresh_from_store(self, store) -> int:
        """Reload gateway configs from the store; returns how many were loaded."""
        with store.session() as s:
            configs = s.list_gateway_configs()
        self.refresh(configs)
        return len(configs)

    # -------- lookup --------

    def _resolve(self, gateway_id: str) -> tuple[str, GatewayAdapter]:
        snap = self._snapshot
        key = (gateway_id or "").strip()
        lowered = key.lower()

        adapter = snap.adapters.get(key) or snap.adapters.get(lowered)
        if adapter is not None:
            return adapter.gateway_id, adapter

        cfg = snap.configs.get(key) or snap.configs.get(lowered)
        if cfg is not None:
            sid = _service_id(cfg.name) or _service_id(cfg.id)
            if sid and sid in snap.adapters:
                return sid, snap.adapters[sid]

        logger.error(
            "gateway not found gateway=%s registered=%s",
            gateway_id,
            ",".join(sorted(snap.adapters)) or "<none>",
        )
        raise GatewayNotFound(f"Payment gateway {gateway_id} not found or not registered")

    def get(self, gateway_id: str) -> GatewayAdapter:
        return self._resolve(gateway_id)[1]

    def config_for(self, gateway_id: str) -> Optional[GatewayConfig]:
        try:
            sid, _ = self._resolve(gateway_id)
        except GatewayNotFound:
            return None
        return self._snapshot.configs.get(sid)

    def is_available(self, gateway_id: str) -> bool:
        try:
            sid, adapter = self._resolve(gateway_id)
        except GatewayNotFound:
            return False
        cfg = self._snapshot.configs.get(sid)
        return bool(cfg and cfg.enabled and adapter.is_available())

    def available_gateways(self) -> list[str]:
        return sorted(gid for gid in self._snapshot.adapters if self.is_available(gid))

    def supported_methods(self, gateway_id: str) -> tuple[str, ...]:
        adapter = self.get(gateway_id)
        cfg = self.config_for(gateway_id)
        methods = adapter.supported_methods()
        if cfg and cfg.supported_methods:
            allowed = {m.lower() for m in cfg.supported_methods}
            methods = tuple(m for m in methods if m in allowed)
        return methods

    def supported_currencies(self, gateway_id: str) -> tuple[str, ...]:
        adapter = self.get(gateway_id)
        cfg = self.config_for(gateway_id)
        currencies = adapter.supported_currencies()
        if cfg and cfg.supported_currencies:
            allowed = {c.upper() for c in cfg.supported_currencies}
            currencies = tuple(c for c in currencies if c in allowed)
        return currencies

    def gateways_for_method(self, method: str) -> list[str]:
        wanted = (method or "").strip().lower()
        return [g for g in self.available_gateways() if wanted in self.supported_methods(g)]

    def gateways_for_currency(self, currency: str) -> list[str]:
        wanted = (currency or "").strip().upper()
        return [g for g in self.available_gateways() if wanted in self.supported_currencies(g)]

    # -------- handling mode --------

    def handling_mode(self, gateway_id: str, method: str) -> str:
        adapter = self.get(gateway_id)
        cfg = self.config_for(gateway_id)
        method = (method or "").strip().lower()

        entry = (cfg.payment_method_handling if cfg else {}).get(method)
        if entry is None:
            return adapter.default_handling_mode(method)

        mode = entry.get("mode") if isinstance(entry, Mapping) else entry
        mode = mode.strip().lower() if isinstance(mode, str) else None
        if mode not in HANDLING_MODES:
            logger.warning(
                "malformed payment method handling gateway=%s method=%s entry=%r -> %s",
                adapter.gateway_id,
                method,
                entry,
                HANDLING_DIRECT,
            )
            return HANDLING_DIRECT
        return mode

    def uses_checkout_url(self, gateway_id: str, method: str) -> bool:
        return self.handling_mode(gateway_id, method) == HANDLING_CHECKOUT_URL

    def handles_directly(self, gateway_id: str, method: str) -> bool:
        return self.handling_mode(gateway_id, method) == HANDLING_DIRECT

    def describe(self) -> list[dict[str, Any]]:
        out = []
        for gid in self.available_gateways():
            adapter = self.get(gid)
            methods = self.supported_methods(gid)
            out.append(
                {
                    "id": gid,
                    "name": adapter.gateway_name,
                    "methods": list(methods),
                    "currencies": list(self.supported_currencies(gid)),
                    "handling": {m: self.handling_mode(gid, m) for m in methods},
                }
            )
        return out

    # -------- dispatch --------

    def initiate_payment(self, gateway_id: str, request: PaymentRequest) -> PaymentResponse:
        adapter = self.get(gateway_id)
        if not self.is_available(gateway_id):
            raise UnsupportedPaymentOption(f"Payment gateway {gateway_id} is not available")

        method = (request.payment_method or "").strip().lower()
        if method not in self.supported_methods(gateway_id):
            logger.error("unsupported payment method gateway=%s method=%s", gateway_id, request.payment_method)
            raise UnsupportedPaymentOption(
                f"Payment method {request.payment_method} not supported by gateway {gateway_id}"
            )

        currency = (request.currency or "").strip().upper()
        if currency not in self.supported_currencies(gateway_id):
            logger.error("unsupported currency gateway=%s currency=%s", gateway_id, request.currency)
            raise UnsupportedPaymentOption(f"Currency {request.currency} not supported by gateway {gateway_id}")

        logger.info(
            "initiate payment gateway=%s method=%s currency=%s payment_id=%s",
            adapter.gateway_id,
            method,
            currency,
            request.payment_id,
        )
        return adapter.initiate_payment(request)

    def check_payment_status(
        self,
        gateway_id: str,
        transaction_id: str,
        *,
        order_id: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> PaymentStatusResult:
        adapter = self.get(gateway_id)
        return adapter.check_payment_status(transaction_id, order_id=order_id, currency=currency)


def default_adapters() -> list[GatewayAdapter]:
    from app.gateways.ogateway import OGatewayGateway
    from app.gateways.palmpay import PalmPayGateway

    return [PalmPayGateway(), OGatewayGateway()]


def build_registry(store, adapters: Iterable[GatewayAdapter] | None = None) -> GatewayRegistry:
    with store.session() as s:
        configs = s.list_gateway_configs()
    return GatewayRegistry(adapters if adapters is not None else default_adapters(), configs)
