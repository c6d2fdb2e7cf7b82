import os

from stickershop.db import sqlite
from stickershop.services import invoice_pdf


def make_user(name="buyer", admin=False):
    ok, user = sqlite.create_user(name, "secret123", f"{name}@example.com", is_admin=admin)
    assert ok, user
    return user


def test_init_seeds_catalog_once(db):
    sqlite.init_db()
    products = sqlite.list_products()

    assert len(products) == 3
    options = sqlite.get_product_options(products[0]["id"])
    assert {o["option_type"] for o in options} == {"size", "material", "finish", "shape"}


def test_users_and_passwords(db):
    user = make_user()
    assert "password_hash" not in user
    assert sqlite.authenticate_user("buyer", "secret123")["id"] == user["id"]
    assert sqlite.authenticate_user("buyer", "wrong") is None

    ok, err = sqlite.create_user("buyer", "x", "other@example.com")
    assert not ok and "exists" in err


def test_cart_merges_equal_lines(db):
    user = make_user()
    ok, first = sqlite.add_cart_item(user["id"], 1, 2, {"size": "Large", "finishPriceModifier": 100})
    ok, second = sqlite.add_cart_item(user["id"], 1, 3, {"finishPriceModifier": 100, "size": "Large"})
    ok, other = sqlite.add_cart_item(user["id"], 1, 1, {"size": "Small"})

    assert first["id"] == second["id"]
    assert second["quantity"] == 5
    assert other["id"] != first["id"]
    assert len(sqlite.get_cart_items(user["id"])) == 2

    assert sqlite.add_cart_item(user["id"], 999, 1) == (False, "Product not found")


def test_order_is_priced_on_the_server(db):
    user = make_user()
    sqlite.add_cart_item(user["id"], 1, 10, {"materialMultiplier": 1.5})

    ok, order = sqlite.create_order_from_cart(user["id"], "42 Sticker Lane")

    assert ok, order
    # 500 * 1.5 = 750, 10% off -> 675, x10
    assert order["subtotal"] == 6750
    assert order["shipping"] == 499
    assert order["tax"] == 540
    assert order["total"] == 6750 + 499 + 540
    items = sqlite.get_order_items(order["id"])
    assert items[0]["price"] == 675 and items[0]["line_total"] == 6750
    # cart is cleared by the client after payment, not here
    assert len(sqlite.get_cart_items(user["id"])) == 1
    assert sqlite.get_conversation_by_order(order["id"])["subject"] == f"Order #{order['id']}"


def test_guest_order_has_no_conversation(db):
    ok, order = sqlite.create_order(None, "1 Guest Road", [{"product_id": 2, "quantity": 1, "options": {}}])

    assert ok
    assert order["user_id"] is None
    assert sqlite.get_conversation_by_order(order["id"]) is None


def test_order_rejects_bad_lines(db):
    assert sqlite.create_order(None, "addr", []) == (False, "Cart is empty")
    ok, err = sqlite.create_order(None, "addr", [{"product_id": 1, "quantity": 0}])
    assert not ok and "quantity" in err
    ok, err = sqlite.create_order(None, "addr", [{"product_id": 404, "quantity": 1}])
    assert not ok and "not found" in err
    assert sqlite.list_orders() == []


def test_status_moves_forward_only(db):
    _, order = sqlite.create_order(None, "addr", [{"product_id": 1, "quantity": 1}])

    ok, updated = sqlite.update_order_status(order["id"], "processing", "pi_1")
    assert ok and updated["payment_intent_id"] == "pi_1"
    ok, err = sqlite.update_order_status(order["id"], "created")
    assert not ok
    ok, _ = sqlite.update_order_status(order["id"], "cancelled")
    assert ok
    ok, err = sqlite.update_order_status(order["id"], "shipped")
    assert not ok and "cancelled" in err
    assert sqlite.update_order_status(order["id"], "lost")[0] is False


def test_conversations_and_messages(db):
    buyer = make_user()
    admin = make_user("admin", admin=True)
    ok, conv = sqlite.create_direct_conversation(buyer["id"], "  Custom sizes?  ")
    assert ok and conv["subject"] == "Custom sizes?"

    ok, msg = sqlite.create_message(conv["id"], buyer["id"], "Can you do 10 in?")
    assert ok and msg["read"] is False
    ok, err = sqlite.create_message(conv["id"], admin["id"], "", "image")
    assert not ok

    listed = sqlite.list_conversations(buyer["id"])
    assert [c["id"] for c in listed] == [conv["id"]]
    assert listed[0]["last_message"]["content"] == "Can you do 10 in?"
    assert sqlite.list_conversations(make_user("stranger")["id"]) == []
    assert len(sqlite.list_conversations(admin["id"], is_admin=True)) == 1
    assert sqlite.list_admin_ids() == [admin["id"]]


def test_invoice_pdf_is_written(db):
    _, order = sqlite.create_order(None, "1 Guest Road", [{"product_id": 1, "quantity": 2, "options": {"size": "Large"}}])

    path = invoice_pdf.generate_invoice_pdf(order, sqlite.get_order_items(order["id"]))

    assert os.path.exists(path)
    with open(path, "rb") as f:
        assert f.read(4) == b"%PDF"
