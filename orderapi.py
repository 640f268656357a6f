from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

import requests


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60


class OrderApiError(RuntimeError):
    pass


class OrderApiClient:
    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT, session: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_env(cls) -> "OrderApiClient":
        base_url = os.environ.get("ORDER_API_URL", "")
        timeout = os.environ.get("ORDER_API_TIMEOUT", "").strip()
        if not base_url:
            raise RuntimeError("Missing ORDER_API_URL env var")
        return cls(base_url, float(timeout) if timeout else DEFAULT_TIMEOUT)

    def fetch_all_orders(self, days: int | None = None) -> List[Dict[str, Any]]:
        params = {"days": days} if days else None
        logger.info("Fetching orders from %s", self.base_url)
        payload = self._request("GET", "/api/admin/all-orders", params=params)
        rows = payload.get("data") or []
        if not isinstance(rows, list):
            raise OrderApiError("all-orders response data is not a list")
        logger.info("Fetched %d order rows", len(rows))
        return rows

    def fetch_master_data(self) -> Dict[str, List[Dict[str, Any]]]:
        payload = self._request("GET", "/api/static-data")
        raw = payload.get("data") or {}
        return {
            "pages": self._pick(raw, "pages", "TeamsPages", "teamsPages"),
            "users": self._pick(raw, "users", "Users"),
            "stores": self._pick(raw, "stores", "Stores"),
            "shipping_methods": self._pick(raw, "shippingMethods", "ShippingMethods"),
            "drivers": self._pick(raw, "drivers", "Drivers"),
            "bank_accounts": self._pick(raw, "bankAccounts", "BankAccounts"),
        }

    def update_order(self, order_id: str, team: str, user_name: str, new_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/api/admin/update-order",
            json={"orderId": order_id, "team": team, "userName": user_name, "newData": new_data},
        )

    @staticmethod
    def _pick(raw: Dict[str, Any], *keys: str) -> List[Dict[str, Any]]:
        for key in keys:
            value = raw.get(key)
            if value:
                return value if isinstance(value, list) else [value]
        return []

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise OrderApiError(f"{method} {path} failed: {exc}") from exc
        if not response.ok:
            raise OrderApiError(f"{method} {path} returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise OrderApiError(f"{method} {path} returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise OrderApiError(f"{method} {path} returned an unexpected payload")
        if payload.get("status") == "error":
            raise OrderApiError(payload.get("message") or f"{method} {path} reported an error")
        return payload
