"""
Async facade over the shop REST API. Requests run on a worker thread through
a shared requests.Session, which also keeps the login session cookie.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import requests

from stickershop.client.errors import ApiError
from stickershop.config import settings

logger = logging.getLogger(__name__)

TIMEOUT = 20
SESSION_COOKIE = "session"


def _error_message(resp: requests.Response) -> str:
    try:
        detail = resp.json().get("detail")
    except ValueError:
        detail = None
    if isinstance(detail, str) and detail:
        return detail
    if detail:
        # pydantic validation errors arrive as a list
        return str(detail)
    return resp.reason or f"HTTP {resp.status_code}"


class ApiClient:
    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.session = session or requests.Session()

    # ---------------- transport ----------------

    def _call(self, method: str, path: str, json: Any = None) -> Any:
        try:
            resp = self.session.request(method, self.base_url + path, json=json, timeout=TIMEOUT)
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ApiError(None, f"Network error: {exc}") from exc
        if not resp.ok:
            raise ApiError(resp.status_code, _error_message(resp))
        if not resp.content:
            return None
        return resp.json()

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        return await asyncio.to_thread(self._call, method, path, json)

    @property
    def ws_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws"
        return "ws://" + self.base_url.split("://", 1)[-1] + "/ws"

    def cookie_header(self) -> Optional[str]:
        value = self.session.cookies.get(SESSION_COOKIE)
        return f"{SESSION_COOKIE}={value}" if value else None

    # ---------------- auth ----------------

    async def me(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/auth/me")

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        return await self._request("POST", "/api/auth/login", {"username": username, "password": password})

    async def register(
        self, username: str, password: str, email: str, display_name: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/auth/register",
            {"username": username, "password": password, "email": email, "displayName": display_name},
        )

    async def logout(self) -> None:
        await self._request("POST", "/api/auth/logout")

    # ---------------- catalog ----------------

    async def list_products(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/products")

    async def get_product(self, product_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/api/products/{product_id}")

    # ---------------- cart ----------------

    async def get_cart(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/cart")

    async def add_cart_item(self, product_id: int, quantity: int, options: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "POST", "/api/cart", {"productId": product_id, "quantity": quantity, "options": options}
        )

    async def update_cart_item(self, item_id: int, quantity: int) -> Dict[str, Any]:
        return await self._request("PUT", f"/api/cart/{item_id}", {"quantity": quantity})

    async def remove_cart_item(self, item_id: int) -> None:
        await self._request("DELETE", f"/api/cart/{item_id}")

    async def clear_cart(self) -> None:
        await self._request("DELETE", "/api/cart")

    # ---------------- orders & payments ----------------

    async def create_order(
        self, shipping_address: str, total: int, cart: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"shippingAddress": shipping_address, "total": total}
        if cart is not None:
            body["cart"] = cart
        return await self._request("POST", "/api/orders", body)

    async def get_order(self, order_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/api/orders/{order_id}")

    async def update_order_status(
        self, order_id: int, status: str, payment_intent_id: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._request(
            "PATCH", f"/api/orders/{order_id}/status", {"status": status, "paymentIntentId": payment_intent_id}
        )

    async def create_payment_intent(self, order_id: int) -> Dict[str, Any]:
        return await self._request("POST", "/api/create-payment-intent", {"orderId": order_id})

    # ---------------- chat ----------------

    async def list_conversations(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/conversations")

    async def get_conversation(self, conversation_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/api/conversations/{conversation_id}")

    async def create_conversation(self, subject: str) -> Dict[str, Any]:
        return await self._request("POST", "/api/conversations", {"subject": subject})

    async def post_message(
        self,
        conversation_id: int,
        content: str,
        message_type: str,
        image_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/conversations/{conversation_id}/messages",
            {"content": content, "messageType": message_type, "imageUrl": image_url},
        )

    # ---------------- image tools ----------------

    async def remove_background(self, image_url: str) -> str:
        data = await self._request("POST", "/api/image/remove-background", {"imageUrl": image_url})
        return data["url"]

    async def detect_borders(self, image_url: str, low_threshold: int = 100, high_threshold: int = 200) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/image/detect-borders",
            {"imageUrl": image_url, "lowThreshold": low_threshold, "highThreshold": high_threshold},
        )

    # ---------------- marketplace import ----------------

    async def ebay_products(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/api/ebay/products")
        return list(data.get("products") or [])

    async def ebay_import(self, product_ids: Iterable[str]) -> Dict[str, Any]:
        return await self._request("POST", "/api/ebay/import-selected", {"productIds": list(product_ids)})

    async def ebay_settings(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/ebay/settings")

    async def save_ebay_seller_id(self, seller_id: str) -> Dict[str, Any]:
        return await self._request("PUT", "/api/ebay/settings", {"sellerId": seller_id})

    async def ebay_sync(self) -> Dict[str, Any]:
        return await self._request("POST", "/api/ebay/sync")

    async def ebay_sync_logs(self) -> str:
        data = await self._request("GET", "/api/ebay/sync-logs")
        return str(data.get("logs") or "")
