import dataclasses
import itertools

import pytest

from stickershop.client.errors import ApiError
from stickershop.client.notify import Notifier
from stickershop.client.storage import LocalStorage
from stickershop.config import settings
from stickershop.db import sqlite
from stickershop.services import ebay, invoice_pdf, pricing


@pytest.fixture
def test_settings(tmp_path, monkeypatch):
    patched = dataclasses.replace(
        settings,
        db_path=str(tmp_path / "data" / "test.db"),
        export_dir=str(tmp_path / "exports"),
        data_dir=str(tmp_path / "data"),
        ebay_seller_id="",
        admin_password="",
    )
    monkeypatch.setattr(sqlite, "settings", patched)
    monkeypatch.setattr(invoice_pdf, "settings", patched)
    monkeypatch.setattr(ebay, "settings", patched)
    return patched


@pytest.fixture
def db(test_settings):
    sqlite.init_db()
    return test_settings


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "local_storage.json"))


@pytest.fixture
def notifier():
    return Notifier()


class FakeShopApi:
    """In-memory stand-in for ApiClient. `fail[name]` makes that call raise."""

    def __init__(self):
        self.products = {
            7: {"id": 7, "title": "Laptop Sticker", "price": 1000, "description": "", "imageUrl": ""},
            8: {"id": 8, "title": "Bottle Sticker", "price": 450, "description": "", "imageUrl": ""},
        }
        self.cart = []
        self.orders = {}
        self.conversations = {}
        self.listings = []
        self.seller_id = ""
        self.sync_log = ""
        self.calls = []
        self.fail = {}
        self._ids = itertools.count(100)

    def _hit(self, name):
        self.calls.append(name)
        if name in self.fail:
            raise self.fail[name]

    def count(self, name):
        return self.calls.count(name)

    def cookie_header(self):
        return "session=test"

    async def me(self):
        self._hit("me")
        raise ApiError(401, "Not authenticated")

    async def login(self, username, password):
        self._hit("login")
        return {"id": 1, "username": username, "isAdmin": username == "admin"}

    async def logout(self):
        self._hit("logout")

    async def get_product(self, product_id):
        self._hit("get_product")
        if product_id not in self.products:
            raise ApiError(404, "Product not found")
        return dict(self.products[product_id])

    async def get_cart(self):
        self._hit("get_cart")
        return [dict(it) for it in self.cart]

    async def add_cart_item(self, product_id, quantity, options):
        self._hit("add_cart_item")
        for it in self.cart:
            if it["productId"] == product_id and it["options"] == options:
                it["quantity"] += quantity
                return dict(it)
        item = {
            "id": next(self._ids),
            "productId": product_id,
            "quantity": quantity,
            "options": dict(options),
            "product": dict(self.products[product_id]),
        }
        self.cart.append(item)
        return dict(item)

    async def update_cart_item(self, item_id, quantity):
        self._hit("update_cart_item")
        for it in self.cart:
            if it["id"] == item_id:
                it["quantity"] = quantity
                return dict(it)
        raise ApiError(404, "Cart item not found")

    async def remove_cart_item(self, item_id):
        self._hit("remove_cart_item")
        self.cart = [it for it in self.cart if it["id"] != item_id]

    async def clear_cart(self):
        self._hit("clear_cart")
        self.cart = []

    async def create_order(self, shipping_address, total, cart=None):
        self._hit("create_order")
        lines = cart if cart is not None else self.cart
        line_totals = [
            pricing.line_total(
                self.products[l["productId"]]["price"],
                pricing.PriceOptions.from_mapping(l.get("options")),
                l["quantity"],
            )
            for l in lines
        ]
        totals = pricing.order_totals(line_totals)
        order = {
            "id": next(self._ids),
            "status": "created",
            "total": totals.total,
            "subtotal": totals.subtotal,
            "shipping": totals.shipping,
            "tax": totals.tax,
            "shippingAddress": shipping_address,
            "clientTotal": total,
            "guestCart": cart,
        }
        self.orders[order["id"]] = order
        return dict(order)

    async def create_payment_intent(self, order_id):
        self._hit("create_payment_intent")
        return {"clientSecret": f"pi_{order_id}_secret", "paymentIntentId": f"pi_{order_id}", "amount": self.orders[order_id]["total"]}

    async def update_order_status(self, order_id, status, payment_intent_id=None):
        self._hit("update_order_status")
        self.orders[order_id].update(status=status, paymentIntentId=payment_intent_id)
        return dict(self.orders[order_id])

    async def list_conversations(self):
        self._hit("list_conversations")
        return [
            {k: v for k, v in c.items() if k != "messages"}
            for c in self.conversations.values()
        ]

    async def get_conversation(self, conversation_id):
        self._hit("get_conversation")
        if conversation_id not in self.conversations:
            raise ApiError(404, "Conversation not found")
        return dict(self.conversations[conversation_id])

    async def create_conversation(self, subject):
        self._hit("create_conversation")
        conv = {"id": next(self._ids), "subject": subject, "isDirectChat": True, "userId": 1, "messages": [], "lastMessage": None}
        self.conversations[conv["id"]] = conv
        return dict(conv)

    async def post_message(self, conversation_id, content, message_type, image_url=None):
        self._hit("post_message")
        msg = {
            "id": next(self._ids),
            "conversationId": conversation_id,
            "userId": 1,
            "content": content,
            "messageType": message_type,
            "imageUrl": image_url,
            "read": False,
        }
        self.conversations[conversation_id]["messages"].append(msg)
        self.conversations[conversation_id]["lastMessage"] = msg
        return dict(msg)

    async def ebay_products(self):
        self._hit("ebay_products")
        return list(self.listings)

    async def ebay_import(self, product_ids):
        self._hit("ebay_import")
        known = {l["itemId"] for l in self.listings if not l.get("broken")}
        errors = [{"productId": pid, "error": "Listing not found"} for pid in product_ids if pid not in known]
        return {"success": True, "importedCount": len(product_ids) - len(errors), "errors": errors}

    async def save_ebay_seller_id(self, seller_id):
        self._hit("save_ebay_seller_id")
        self.seller_id = seller_id
        return {"success": True, "settings": {"sellerId": seller_id, "lastUpdated": "2024-01-01T00:00:00"}}

    async def ebay_sync(self):
        self._hit("ebay_sync")
        good = [l for l in self.listings if not l.get("broken")]
        self.sync_log += f"synced {len(good)}\n"
        return {
            "success": True,
            "productsImported": len(good),
            "failedCount": len(self.listings) - len(good),
            "jsonFile": "data/ebay_products.json",
            "csvFile": "data/ebay_products.csv",
        }

    async def ebay_sync_logs(self):
        self._hit("ebay_sync_logs")
        return self.sync_log


@pytest.fixture
def api():
    return FakeShopApi()


@pytest.fixture
def make_message():
    def build(msg_id, conversation_id, user_id, content="hi", read=False):
        return {
            "id": msg_id,
            "conversationId": conversation_id,
            "userId": user_id,
            "content": content,
            "messageType": "text",
            "read": read,
        }

    return build
