"""Thin HTTP client for the external ERP's REST API.

The client only knows about endpoints and transport: it builds URLs under
``{base_url}/api/index.php/``, authenticates with the ``DOLAPIKEY`` header or
HTTP basic credentials, applies a per-request timeout, and turns transport or
HTTP problems into :class:`~veggie_pos.errors.ConnectionFailure` and
:class:`~veggie_pos.errors.SyncFailure`. Mapping POS records onto ERP payloads
is the job of :mod:`veggie_pos.sync`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from . import log
from .constants import ERP_DEFAULT_TIMEOUT_SECONDS
from .errors import ConnectionFailure, SyncFailure


API_PREFIX = "api/index.php"


@dataclass(frozen=True)
class ErpConfig:
    """Connection settings for the ERP REST API."""

    base_url: str
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: float = ERP_DEFAULT_TIMEOUT_SECONDS


class ErpClient:
    """Issue authenticated JSON requests against the ERP.

    Args:
        config (ErpConfig): Base URL, credentials, and timeout.
        session (requests.Session | None): Session to reuse; tests inject a
            mock here.
    """

    def __init__(self, config: ErpConfig, *, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.session = session if session is not None else requests.Session()
        self.session.headers.update(self._auth_headers())
        if not config.api_key and config.username and config.password:
            self.session.auth = (config.username, config.password)

    def _auth_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.config.api_key:
            headers["DOLAPIKEY"] = self.config.api_key
        return headers

    def url(self, endpoint: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{API_PREFIX}/{endpoint.lstrip('/')}"

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            ConnectionFailure: On network errors or timeouts.
            SyncFailure: On HTTP status >= 400 or a body that is not JSON.
        """
        url = self.url(endpoint)
        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                params=params,
                timeout=self.config.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            log.warning("ERP %s %s unreachable: %s", method, endpoint, exc)
            raise ConnectionFailure(f"ERP unreachable: {exc}") from exc
        except requests.RequestException as exc:
            log.warning("ERP %s %s failed: %s", method, endpoint, exc)
            raise SyncFailure(f"ERP request failed: {exc}") from exc

        if response.status_code >= 400:
            detail = (response.text or "").strip()[:200]
            log.warning("ERP %s %s rejected: status=%s body=%s", method, endpoint, response.status_code, detail)
            raise SyncFailure(f"ERP API error: {response.status_code} {response.reason}")

        try:
            return response.json()
        except ValueError as exc:
            log.warning("ERP %s %s returned non-JSON body", method, endpoint)
            raise SyncFailure("ERP returned an unreadable response") from exc

    def status(self) -> Any:
        return self.request("GET", "status")

    def get_products(self) -> List[Dict[str, Any]]:
        return self.request("GET", "products")

    def get_product(self, product_ref: int) -> Dict[str, Any]:
        return self.request("GET", f"products/{product_ref}")

    def update_product_stock(self, product_ref: int, stock: Any) -> Any:
        return self.request("PUT", f"products/{product_ref}", payload={"stock_reel": stock})

    def get_customers(self) -> List[Dict[str, Any]]:
        return self.request("GET", "thirdparties", params={"mode": "customer"})

    def get_suppliers(self) -> List[Dict[str, Any]]:
        return self.request("GET", "thirdparties", params={"mode": "supplier"})

    def create_invoice(self, invoice: Dict[str, Any]) -> Any:
        return self.request("POST", "invoices", payload=invoice)

    def validate_invoice(self, invoice_ref: int) -> Any:
        return self.request("POST", f"invoices/{invoice_ref}/validate")

    def close(self) -> None:
        self.session.close()


__all__ = ["API_PREFIX", "ErpConfig", "ErpClient"]
