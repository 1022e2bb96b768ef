from __future__ import annotations

import pytest

from app.gateways import config
from app.gateways.config import validate_gateway_startup


def _set(monkeypatch, **values):
    for name, value in values.items():
        monkeypatch.setattr(config.settings, name, value)


def test_no_enabled_gateways_passes():
    validate_gateway_startup([])


def test_unknown_gateway_fails():
    with pytest.raises(RuntimeError) as exc:
        validate_gateway_startup(["stripe"])
    assert "Unknown gateways: stripe" in str(exc.value)


def test_palmpay_missing_settings_are_listed(monkeypatch):
    _set(monkeypatch, PALMPAY_APP_ID="", PALMPAY_BASE_URL="https://x", PALMPAY_PRIVATE_KEY="")
    with pytest.raises(RuntimeError) as exc:
        validate_gateway_startup(["PalmPay"])
    msg = str(exc.value)
    assert "PALMPAY_APP_ID" in msg
    assert "PALMPAY_PRIVATE_KEY" in msg
    assert "PALMPAY_BASE_URL" not in msg


def test_ogateway_configured_passes(monkeypatch):
    _set(monkeypatch, OGATEWAY_API_KEY="k", OGATEWAY_BASE_URL="https://og")
    validate_gateway_startup(["ogateway"])


def test_missing_public_key_only_warns_in_production(monkeypatch, caplog):
    _set(
        monkeypatch,
        APP_ENV="production",
        PALMPAY_APP_ID="a",
        PALMPAY_BASE_URL="https://x",
        PALMPAY_PRIVATE_KEY="k",
        PALMPAY_PUBLIC_KEY="",
    )
    with caplog.at_level("WARNING", logger="tipsettle"):
        validate_gateway_startup(["palmpay"])
    assert any("PALMPAY_PUBLIC_KEY" in r.getMessage() for r in caplog.records)
