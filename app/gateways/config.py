# app/gateways/config.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from settings import settings

logger = logging.getLogger("tipsettle")

KNOWN_GATEWAYS = {"palmpay", "ogateway"}


def app_env() -> str:
    return (settings.APP_ENV or "development").strip().lower()


def is_production() -> bool:
    return app_env() == "production"


def http_timeout_s() -> float:
    return float(settings.GATEWAY_HTTP_TIMEOUT_S or 30.0)


@dataclass(frozen=True)
class PalmPayConfig:
    app_id: str
    base_url: str
    private_key: str
    public_key: str
    app_url: str
    frontend_url: str
    timeout_s: float


def palmpay_config() -> PalmPayConfig:
    return PalmPayConfig(
        app_id=(settings.PALMPAY_APP_ID or "").strip(),
        base_url=(settings.PALMPAY_BASE_URL or "").strip().rstrip("/"),
        private_key=(settings.PALMPAY_PRIVATE_KEY or "").strip(),
        public_key=(settings.PALMPAY_PUBLIC_KEY or "").strip(),
        app_url=(settings.APP_URL or "").strip().rstrip("/"),
        frontend_url=(settings.FRONTEND_URL or "").strip().rstrip("/"),
        timeout_s=http_timeout_s(),
    )


@dataclass(frozen=True)
class OGatewayConfig:
    api_key: str
    base_url: str
    webhook_secret: str
    app_url: str
    timeout_s: float


def ogateway_config() -> OGatewayConfig:
    return OGatewayConfig(
        api_key=(settings.OGATEWAY_API_KEY or "").strip(),
        base_url=(settings.OGATEWAY_BASE_URL or "").strip().rstrip("/"),
        webhook_secret=(settings.OGATEWAY_WEBHOOK_SECRET or "").strip(),
        app_url=(settings.APP_URL or "").strip().rstrip("/"),
        timeout_s=http_timeout_s(),
    )


def _sorted_csv(items: Iterable[str]) -> str:
    return ", ".join(sorted(set(items)))


def _require(missing: list[str], **values: str) -> None:
    for name, value in values.items():
        if not (value or "").strip():
            missing.append(name)


def validate_gateway_startup(enabled: Iterable[str]) -> None:
    """
    Raise RuntimeError listing missing settings for every enabled gateway.
    """
    normalized = sorted({(g or "").strip().lower() for g in enabled if (g or "").strip()})

    logger.info(
        "gateway startup check: env=%s enabled_gateways=%s",
        app_env(),
        ",".join(normalized) if normalized else "<none>",
    )

    unknown = sorted(set(normalized) - KNOWN_GATEWAYS)
    if unknown:
        raise RuntimeError(
            "Gateway startup validation failed. Unknown gateways: "
            f"{_sorted_csv(unknown)}. Allowed: {_sorted_csv(KNOWN_GATEWAYS)}"
        )

    missing: list[str] = []
    for g in normalized:
        if g == "palmpay":
            _require(
                missing,
                PALMPAY_APP_ID=settings.PALMPAY_APP_ID,
                PALMPAY_BASE_URL=settings.PALMPAY_BASE_URL,
                PALMPAY_PRIVATE_KEY=settings.PALMPAY_PRIVATE_KEY,
            )
            if is_production() and not (settings.PALMPAY_PUBLIC_KEY or "").strip():
                logger.warning("PALMPAY_PUBLIC_KEY not set: palmpay webhook signatures cannot be verified")
        elif g == "ogateway":
            _require(
                missing,
                OGATEWAY_API_KEY=settings.OGATEWAY_API_KEY,
                OGATEWAY_BASE_URL=settings.OGATEWAY_BASE_URL,
            )

    if missing:
        raise RuntimeError(
            "Gateway startup validation failed. "
            f"env={app_env()} enabled_gateways={_sorted_csv(normalized)} "
            "Missing required settings: " + _sorted_csv(missing)
        )
