from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import secrets
import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from stickershop.config import settings
from stickershop.constants import (
    DEFAULT_STICKER_OPTIONS,
    ORDER_CREATED,
    ORDER_STATUSES,
    ORDER_TRANSITIONS,
    MESSAGE_TYPES,
)
from stickershop.services import pricing

logger = logging.getLogger(__name__)

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")

_BOOL_COLUMNS = ("is_admin", "in_stock", "is_direct_chat", "read")

_SEED_CATEGORIES = (
    ("Decorative", "Beautiful stickers for decoration"),
    ("Laptop", "Stickers for your laptop"),
    ("Water Bottle", "Waterproof stickers for bottles"),
)

_SEED_PRODUCTS = (
    (
        "Pink Leopard Sticker",
        "Beautiful pink leopard sticker, perfect for laptops, water bottles, and more.",
        "https://images.unsplash.com/photo-1585914641050-fa9883c4e21c?auto=format&fit=crop&w=500&q=80",
        500,
        1,
    ),
    (
        "Cute Cat Sticker",
        "Adorable cat sticker for cat lovers. High-quality vinyl.",
        "https://images.unsplash.com/photo-1514888286974-6c03e2ca1dba?auto=format&fit=crop&w=500&q=80",
        450,
        1,
    ),
    (
        "Mountain Landscape Sticker",
        "Stunning mountain landscape sticker in vibrant colors.",
        "https://images.unsplash.com/photo-1454496522488-7a8e488e8606?auto=format&fit=crop&w=500&q=80",
        600,
        2,
    ),
)


def _connect() -> sqlite3.Connection:
    db_dir = os.path.dirname(settings.db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    conn = sqlite3.connect(settings.db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _row(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    d = dict(row)
    for k in _BOOL_COLUMNS:
        if k in d:
            d[k] = bool(d[k])
    if isinstance(d.get("options"), str):
        d["options"] = json.loads(d["options"] or "{}")
    return d


def _options_key(options: Optional[Mapping[str, Any]]) -> str:
    return json.dumps(dict(options or {}), sort_keys=True)


def init_db() -> None:
    conn = _connect()
    try:
        with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
            conn.executescript(f.read())
        _seed_catalog(conn)
        conn.commit()
    finally:
        conn.close()

    if settings.admin_password:
        ensure_admin(settings.admin_username, settings.admin_password, settings.admin_email)


def _seed_catalog(conn: sqlite3.Connection) -> None:
    if conn.execute("SELECT COUNT(*) FROM categories").fetchone()[0] == 0:
        conn.executemany("INSERT INTO categories(name, description) VALUES(?,?)", _SEED_CATEGORIES)
    if conn.execute("SELECT COUNT(*) FROM products").fetchone()[0] == 0:
        for title, description, image_url, price, category_id in _SEED_PRODUCTS:
            _insert_product(conn, title, description, image_url, price, category_id, DEFAULT_STICKER_OPTIONS)
        logger.info("Seeded %d catalog products", len(_SEED_PRODUCTS))


# ---------------- users ----------------

def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), 100_000)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    salt, _, _ = password_hash.partition("$")
    return hmac.compare_digest(hash_password(password, salt), password_hash)


def _public_user(d: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if d is not None:
        d.pop("password_hash", None)
    return d


def create_user(
    username: str,
    password: str,
    email: str,
    display_name: Optional[str] = None,
    is_admin: bool = False,
) -> Tuple[bool, Any]:
    conn = _connect()
    try:
        cur = conn.execute(
            "INSERT INTO users(username, email, password_hash, display_name, is_admin, created_at) "
            "VALUES(?,?,?,?,?,?)",
            (username, email, hash_password(password), display_name, int(is_admin), _now()),
        )
        conn.commit()
        user_id = int(cur.lastrowid)
    except sqlite3.IntegrityError:
        return False, "Username or email already exists"
    finally:
        conn.close()
    return True, get_user(user_id)


def ensure_admin(username: str, password: str, email: str) -> None:
    conn = _connect()
    try:
        row = conn.execute("SELECT id FROM users WHERE username=?", (username,)).fetchone()
        if row:
            conn.execute("UPDATE users SET is_admin=1 WHERE id=?", (row["id"],))
            conn.commit()
            return
    finally:
        conn.close()
    create_user(username, password, email, display_name="Admin", is_admin=True)
    logger.info("Created admin user %s", username)


def authenticate_user(username: str, password: str) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        row = _row(conn.execute("SELECT * FROM users WHERE username=?", (username,)).fetchone())
    finally:
        conn.close()
    if not row or not verify_password(password, row["password_hash"]):
        return None
    return _public_user(row)


def get_user(user_id: int) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        return _public_user(_row(conn.execute("SELECT * FROM users WHERE id=?", (user_id,)).fetchone()))
    finally:
        conn.close()


def list_admin_ids() -> List[int]:
    conn = _connect()
    try:
        rows = conn.execute("SELECT id FROM users WHERE is_admin=1").fetchall()
        return [int(r["id"]) for r in rows]
    finally:
        conn.close()


# ---------------- products ----------------

def _insert_product(
    conn: sqlite3.Connection,
    title: str,
    description: str,
    image_url: str,
    price: int,
    category_id: Optional[int],
    options: Iterable[Tuple[str, str, int]],
) -> int:
    now = _now()
    cur = conn.execute(
        "INSERT INTO products(title, description, image_url, price, category_id, created_at, updated_at) "
        "VALUES(?,?,?,?,?,?,?)",
        (title, description, image_url, int(price), category_id, now, now),
    )
    product_id = int(cur.lastrowid)
    conn.executemany(
        "INSERT INTO product_options(product_id, option_type, option_value, price_modifier) VALUES(?,?,?,?)",
        [(product_id, t, v, int(m)) for t, v, m in options],
    )
    return product_id


def _product(conn: sqlite3.Connection, product_id: int) -> Optional[Dict[str, Any]]:
    return _row(conn.execute("SELECT * FROM products WHERE id=?", (product_id,)).fetchone())


def add_product(
    title: str,
    description: str,
    image_url: str,
    price: int,
    category_id: Optional[int] = 1,
    options: Iterable[Tuple[str, str, int]] = DEFAULT_STICKER_OPTIONS,
) -> Dict[str, Any]:
    conn = _connect()
    try:
        product_id = _insert_product(conn, title, description, image_url, price, category_id, options)
        conn.commit()
        return _product(conn, product_id)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def list_products() -> List[Dict[str, Any]]:
    conn = _connect()
    try:
        rows = conn.execute("SELECT * FROM products ORDER BY id").fetchall()
        return [_row(r) for r in rows]
    finally:
        conn.close()


def get_product(product_id: int) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        return _product(conn, product_id)
    finally:
        conn.close()


def get_product_options(product_id: int) -> List[Dict[str, Any]]:
    conn = _connect()
    try:
        rows = conn.execute(
            "SELECT * FROM product_options WHERE product_id=? ORDER BY id", (product_id,)
        ).fetchall()
        return [_row(r) for r in rows]
    finally:
        conn.close()


# ---------------- cart ----------------

def _cart_item(conn: sqlite3.Connection, item_id: int) -> Optional[Dict[str, Any]]:
    item = _row(conn.execute("SELECT * FROM cart_items WHERE id=?", (item_id,)).fetchone())
    if item:
        item["product"] = _product(conn, item["product_id"])
    return item


def get_cart_items(user_id: int) -> List[Dict[str, Any]]:
    conn = _connect()
    try:
        rows = conn.execute("SELECT id FROM cart_items WHERE user_id=? ORDER BY id", (user_id,)).fetchall()
        return [_cart_item(conn, int(r["id"])) for r in rows]
    finally:
        conn.close()


def add_cart_item(
    user_id: int, product_id: int, quantity: int, options: Optional[Mapping[str, Any]] = None
) -> Tuple[bool, Any]:
    """
    Same product with the same options merges into one line.
    Returns (ok, item | error).
    """
    if quantity <= 0:
        return False, "quantity must be > 0"
    key = _options_key(options)

    conn = _connect()
    try:
        if not _product(conn, product_id):
            return False, "Product not found"

        rows = conn.execute(
            "SELECT id, options FROM cart_items WHERE user_id=? AND product_id=?",
            (user_id, product_id),
        ).fetchall()
        existing = next((r for r in rows if _options_key(json.loads(r["options"])) == key), None)

        if existing:
            item_id = int(existing["id"])
            conn.execute("UPDATE cart_items SET quantity = quantity + ? WHERE id=?", (quantity, item_id))
        else:
            cur = conn.execute(
                "INSERT INTO cart_items(user_id, product_id, quantity, options, created_at) VALUES(?,?,?,?,?)",
                (user_id, product_id, quantity, key, _now()),
            )
            item_id = int(cur.lastrowid)
        conn.commit()
        return True, _cart_item(conn, item_id)
    finally:
        conn.close()


def update_cart_item(user_id: int, item_id: int, quantity: int) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        cur = conn.execute(
            "UPDATE cart_items SET quantity=? WHERE id=? AND user_id=?", (quantity, item_id, user_id)
        )
        conn.commit()
        if cur.rowcount == 0:
            return None
        return _cart_item(conn, item_id)
    finally:
        conn.close()


def remove_cart_item(user_id: int, item_id: int) -> bool:
    conn = _connect()
    try:
        cur = conn.execute("DELETE FROM cart_items WHERE id=? AND user_id=?", (item_id, user_id))
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()


def clear_cart(user_id: int) -> None:
    conn = _connect()
    try:
        conn.execute("DELETE FROM cart_items WHERE user_id=?", (user_id,))
        conn.commit()
    finally:
        conn.close()


# ---------------- orders ----------------

def create_order(
    user_id: Optional[int], shipping_address: str, items: Iterable[Mapping[str, Any]]
) -> Tuple[bool, Any]:
    """
    Builds, in one pass:
    - priced lines from the catalog price and each line's options
    - orders + order_items rows in one transaction
    - an order-linked conversation for signed-in buyers
    Returns (ok, order | error).
    """
    items = list(items)
    if not items:
        return False, "Cart is empty"

    conn = _connect()
    try:
        conn.execute("BEGIN")

        lines = []
        for it in items:
            product_id = it.get("product_id")
            quantity = it.get("quantity")
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                conn.rollback()
                return False, f"Invalid quantity for product {product_id}"
            product = _product(conn, int(product_id)) if product_id is not None else None
            if not product:
                conn.rollback()
                return False, f"Product not found: {product_id}"

            options = dict(it.get("options") or {})
            price_options = pricing.PriceOptions.from_mapping(options)
            unit = pricing.discounted_unit_price(pricing.unit_price(product["price"], price_options), quantity)
            lines.append(
                (product["id"], quantity, unit, pricing.line_total(product["price"], price_options, quantity), options)
            )

        totals = pricing.order_totals(line[3] for line in lines)
        now = _now()
        cur = conn.execute(
            "INSERT INTO orders(user_id, status, subtotal, shipping, tax, total, shipping_address, created_at, updated_at) "
            "VALUES(?,?,?,?,?,?,?,?,?)",
            (user_id, ORDER_CREATED, totals.subtotal, totals.shipping, totals.tax, totals.total,
             shipping_address, now, now),
        )
        order_id = int(cur.lastrowid)

        for product_id, quantity, unit, total, options in lines:
            conn.execute(
                "INSERT INTO order_items(order_id, product_id, quantity, price, line_total, options, created_at) "
                "VALUES(?,?,?,?,?,?,?)",
                (order_id, product_id, quantity, unit, total, _options_key(options), now),
            )

        if user_id is not None:
            conn.execute(
                "INSERT INTO conversations(order_id, user_id, subject, is_direct_chat, created_at) VALUES(?,?,?,?,?)",
                (order_id, user_id, f"Order #{order_id}", 0, now),
            )

        conn.commit()
        logger.info("Order %s created: total=%s lines=%d", order_id, totals.total, len(lines))
        return True, _row(conn.execute("SELECT * FROM orders WHERE id=?", (order_id,)).fetchone())
    except Exception as e:
        conn.rollback()
        logger.exception("Order creation failed")
        return False, str(e)
    finally:
        conn.close()


def create_order_from_cart(user_id: int, shipping_address: str) -> Tuple[bool, Any]:
    cart = get_cart_items(user_id)
    return create_order(
        user_id,
        shipping_address,
        [{"product_id": it["product_id"], "quantity": it["quantity"], "options": it["options"]} for it in cart],
    )


def get_order(order_id: int) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        return _row(conn.execute("SELECT * FROM orders WHERE id=?", (order_id,)).fetchone())
    finally:
        conn.close()


def get_order_items(order_id: int) -> List[Dict[str, Any]]:
    conn = _connect()
    try:
        rows = conn.execute("SELECT * FROM order_items WHERE order_id=? ORDER BY id", (order_id,)).fetchall()
        items = [_row(r) for r in rows]
        for it in items:
            it["product"] = _product(conn, it["product_id"])
        return items
    finally:
        conn.close()


def list_orders(user_id: Optional[int] = None) -> List[Dict[str, Any]]:
    conn = _connect()
    try:
        sql = (
            "SELECT o.*, (SELECT COUNT(*) FROM order_items i WHERE i.order_id = o.id) AS item_count "
            "FROM orders o"
        )
        if user_id is None:
            rows = conn.execute(sql + " ORDER BY o.id DESC").fetchall()
        else:
            rows = conn.execute(sql + " WHERE o.user_id=? ORDER BY o.id DESC", (user_id,)).fetchall()
        return [_row(r) for r in rows]
    finally:
        conn.close()


def update_order_status(
    order_id: int, status: str, payment_intent_id: Optional[str] = None
) -> Tuple[bool, Any]:
    if status not in ORDER_STATUSES:
        return False, f"Unknown status: {status}"

    conn = _connect()
    try:
        order = _row(conn.execute("SELECT * FROM orders WHERE id=?", (order_id,)).fetchone())
        if not order:
            return False, "Order not found"
        if status not in ORDER_TRANSITIONS[order["status"]]:
            return False, f"Cannot move order from {order['status']} to {status}"

        conn.execute(
            "UPDATE orders SET status=?, payment_intent_id=COALESCE(?, payment_intent_id), updated_at=? WHERE id=?",
            (status, payment_intent_id, _now(), order_id),
        )
        conn.commit()
        logger.info("Order %s: %s -> %s", order_id, order["status"], status)
        return True, _row(conn.execute("SELECT * FROM orders WHERE id=?", (order_id,)).fetchone())
    finally:
        conn.close()


# ---------------- conversations ----------------

def _last_message(conn: sqlite3.Connection, conversation_id: int) -> Optional[Dict[str, Any]]:
    return _row(
        conn.execute(
            "SELECT * FROM messages WHERE conversation_id=? ORDER BY id DESC LIMIT 1", (conversation_id,)
        ).fetchone()
    )


def _enrich_conversation(conn: sqlite3.Connection, conv: Dict[str, Any]) -> Dict[str, Any]:
    if conv["is_direct_chat"]:
        conv["user"] = _public_user(
            _row(conn.execute("SELECT * FROM users WHERE id=?", (conv["user_id"],)).fetchone())
        )
    elif conv["order_id"] is not None:
        conv["order"] = _row(conn.execute("SELECT * FROM orders WHERE id=?", (conv["order_id"],)).fetchone())
        first = conn.execute(
            "SELECT product_id FROM order_items WHERE order_id=? ORDER BY id LIMIT 1", (conv["order_id"],)
        ).fetchone()
        conv["product"] = _product(conn, first["product_id"]) if first else None
    conv["last_message"] = _last_message(conn, conv["id"])
    return conv


def list_conversations(user_id: int, is_admin: bool = False) -> List[Dict[str, Any]]:
    conn = _connect()
    try:
        if is_admin:
            rows = conn.execute("SELECT * FROM conversations").fetchall()
        else:
            rows = conn.execute(
                """
                SELECT c.* FROM conversations c
                LEFT JOIN orders o ON o.id = c.order_id
                WHERE (c.is_direct_chat = 1 AND c.user_id = ?)
                   OR (c.is_direct_chat = 0 AND o.user_id = ?)
                """,
                (user_id, user_id),
            ).fetchall()
        convs = [_enrich_conversation(conn, _row(r)) for r in rows]
    finally:
        conn.close()

    def activity(c: Dict[str, Any]) -> Tuple[str, int]:
        last = c["last_message"]
        return (last["created_at"], last["id"]) if last else (c["created_at"], 0)

    return sorted(convs, key=activity, reverse=True)


def get_conversation(conversation_id: int) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        conv = _row(conn.execute("SELECT * FROM conversations WHERE id=?", (conversation_id,)).fetchone())
        if not conv:
            return None
        conv = _enrich_conversation(conn, conv)
        rows = conn.execute(
            "SELECT * FROM messages WHERE conversation_id=? ORDER BY id", (conversation_id,)
        ).fetchall()
        conv["messages"] = [_row(r) for r in rows]
    finally:
        conn.close()

    if conv.get("order"):
        conv["order_items"] = get_order_items(conv["order_id"])
    return conv


def get_conversation_by_order(order_id: int) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        row = conn.execute("SELECT id FROM conversations WHERE order_id=?", (order_id,)).fetchone()
    finally:
        conn.close()
    return get_conversation(int(row["id"])) if row else None


def create_direct_conversation(user_id: int, subject: str) -> Tuple[bool, Any]:
    if not subject or not subject.strip():
        return False, "Subject is required"
    if not get_user(user_id):
        return False, f"User with ID {user_id} not found"

    conn = _connect()
    try:
        cur = conn.execute(
            "INSERT INTO conversations(order_id, user_id, subject, is_direct_chat, created_at) VALUES(?,?,?,?,?)",
            (None, user_id, subject.strip(), 1, _now()),
        )
        conn.commit()
        conversation_id = int(cur.lastrowid)
    finally:
        conn.close()
    return True, get_conversation(conversation_id)


def create_message(
    conversation_id: int,
    user_id: int,
    content: str,
    message_type: str = "text",
    image_url: Optional[str] = None,
) -> Tuple[bool, Any]:
    if message_type not in MESSAGE_TYPES:
        return False, f"Unknown message type: {message_type}"
    if message_type == "image" and not image_url:
        return False, "imageUrl is required for image messages"

    conn = _connect()
    try:
        cur = conn.execute(
            "INSERT INTO messages(conversation_id, user_id, message_type, content, image_url, created_at, read) "
            "VALUES(?,?,?,?,?,?,0)",
            (conversation_id, user_id, message_type, content, image_url, _now()),
        )
        conn.commit()
        return True, _row(conn.execute("SELECT * FROM messages WHERE id=?", (int(cur.lastrowid),)).fetchone())
    finally:
        conn.close()
