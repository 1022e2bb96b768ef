# app/gateways/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from app.gateways.base import GatewayTransportError

logger = logging.getLogger("tipsettle.gateways.http")

_REDACT_HEADERS = {"authorization", "signature", "x-api-key"}


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[Any]
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class HttpClient:
    def __init__(self, timeout_s: float = 30.0, follow_redirects: bool = True):
        self._client = httpx.Client(timeout=timeout_s, follow_redirects=follow_redirects)

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        json_body: Any = None,
        debug: bool = False,
    ) -> HttpResponse:
        try:
            r = self._client.post(url, headers=headers, json=json_body)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise GatewayTransportError(f"POST {url} failed: {type(exc).__name__}: {exc}") from exc
        if debug:
            self._debug_dump("POST", url, headers, r)
        return self._wrap(r)

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str],
        debug: bool = False,
    ) -> HttpResponse:
        try:
            r = self._client.get(url, headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise GatewayTransportError(f"GET {url} failed: {type(exc).__name__}: {exc}") from exc
        if debug:
            self._debug_dump("GET", url, headers, r)
        return self._wrap(r)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)

    @staticmethod
    def _debug_dump(method: str, url: str, headers: dict[str, str], r: httpx.Response) -> None:
        # Don't log secrets
        safe_headers = {
            k: ("REDACTED" if k.lower() in _REDACT_HEADERS else v) for k, v in (headers or {}).items()
        }
        logger.debug(
            "http %s %s headers=%s -> status=%s text=%s",
            method,
            url,
            safe_headers,
            r.status_code,
            r.text[:300],
        )
