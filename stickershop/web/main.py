from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, HTMLResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.middleware.sessions import SessionMiddleware

from stickershop.config import settings
from stickershop.constants import MESSAGE_TEXT, ORDER_CREATED, ORDER_PROCESSING
from stickershop.db import sqlite
from stickershop.services import ebay, invoice_pdf, payments, replicate
from stickershop.utils.formatters import money
from stickershop.web.realtime import manager, recipients_for

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

app = FastAPI(title="Sticker Shop API")
app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["money"] = money

if STATIC_DIR.exists():
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.on_event("startup")
def _startup() -> None:
    sqlite.init_db()


# ---------------- utilities ----------------

def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def to_api(obj: Any) -> Any:
    """snake_case storage rows -> camelCase JSON. Option bags are passed through untouched."""
    if isinstance(obj, dict):
        return {_camel(k): (v if k == "options" and isinstance(v, dict) else to_api(v)) for k, v in obj.items()}
    if isinstance(obj, list):
        return [to_api(v) for v in obj]
    return obj


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _current_user(request: Request) -> Optional[Dict[str, Any]]:
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    user = sqlite.get_user(int(user_id))
    if not user:
        request.session.pop("user_id", None)
    return user


def _require_user(request: Request) -> Dict[str, Any]:
    user = _current_user(request)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def _require_admin(request: Request) -> Dict[str, Any]:
    user = _require_user(request)
    if not user["is_admin"]:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def _can_see_order(request: Request, user: Optional[Dict[str, Any]], order: Dict[str, Any]) -> bool:
    if user and (user["is_admin"] or order["user_id"] == user["id"]):
        return True
    return order["id"] in request.session.get("guest_orders", [])


def _load_order(request: Request, order_id: int) -> Dict[str, Any]:
    order = sqlite.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if not _can_see_order(request, _current_user(request), order):
        raise HTTPException(status_code=403, detail="Not authorized to view this order")
    return order


def _is_participant(user: Dict[str, Any], conversation: Dict[str, Any]) -> bool:
    if user["is_admin"]:
        return True
    if conversation["is_direct_chat"]:
        return conversation["user_id"] == user["id"]
    order = conversation.get("order")
    return bool(order) and order["user_id"] == user["id"]


def _render(request: Request, name: str, ctx: dict[str, Any]) -> HTMLResponse:
    base = {"currency": settings.currency}
    base.update(ctx)
    return templates.TemplateResponse(request, name, base)


@app.get("/")
def read_root():
    return {"message": "Sticker Shop Backend"}


# ---------------- auth ----------------

class RegisterIn(ApiModel):
    username: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    email: str = Field(..., min_length=3)
    display_name: Optional[str] = None


class LoginIn(ApiModel):
    username: str
    password: str


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterIn):
    ok, res = sqlite.create_user(payload.username, payload.password, payload.email, payload.display_name)
    if not ok:
        raise HTTPException(status_code=400, detail=res)
    return to_api(res)


@app.post("/api/auth/login")
def login(payload: LoginIn, request: Request):
    user = sqlite.authenticate_user(payload.username, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    request.session["user_id"] = user["id"]
    return to_api(user)


@app.post("/api/auth/logout")
def logout(request: Request):
    request.session.clear()
    return {"message": "Logged out successfully"}


@app.get("/api/auth/me")
def me(request: Request):
    return to_api(_require_user(request))


# ---------------- products ----------------

class ProductIn(ApiModel):
    title: str
    description: str
    image_url: str
    price: int = Field(..., ge=0, description="Price in cents")
    category_id: Optional[int] = 1


@app.get("/api/products")
def products():
    return to_api(sqlite.list_products())


@app.get("/api/products/{product_id}")
def product_detail(product_id: int):
    product = sqlite.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    product["options"] = sqlite.get_product_options(product_id)
    return to_api(product)


@app.post("/api/products", status_code=201)
def products_add(payload: ProductIn, request: Request):
    _require_admin(request)
    product = sqlite.add_product(
        payload.title, payload.description, payload.image_url, payload.price, payload.category_id
    )
    return to_api(product)


# ---------------- cart ----------------

class CartItemIn(ApiModel):
    product_id: int
    quantity: int = Field(1, ge=1)
    options: Dict[str, Any] = Field(default_factory=dict)


class CartQuantityIn(ApiModel):
    quantity: int = Field(..., ge=1)


@app.get("/api/cart")
def cart(request: Request):
    user = _require_user(request)
    return to_api(sqlite.get_cart_items(user["id"]))


@app.post("/api/cart", status_code=201)
def cart_add(payload: CartItemIn, request: Request):
    user = _require_user(request)
    ok, res = sqlite.add_cart_item(user["id"], payload.product_id, payload.quantity, payload.options)
    if not ok:
        raise HTTPException(status_code=400, detail=res)
    return to_api(res)


@app.put("/api/cart/{item_id}")
def cart_update(item_id: int, payload: CartQuantityIn, request: Request):
    user = _require_user(request)
    item = sqlite.update_cart_item(user["id"], item_id, payload.quantity)
    if not item:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return to_api(item)


@app.delete("/api/cart/{item_id}")
def cart_remove(item_id: int, request: Request):
    user = _require_user(request)
    if not sqlite.remove_cart_item(user["id"], item_id):
        raise HTTPException(status_code=404, detail="Cart item not found")
    return {"message": "Item removed from cart"}


@app.delete("/api/cart")
def cart_clear(request: Request):
    user = _require_user(request)
    sqlite.clear_cart(user["id"])
    return {"message": "Cart cleared"}


# ---------------- orders ----------------

class OrderIn(ApiModel):
    shipping_address: str = Field(..., min_length=5)
    total: Optional[int] = None
    cart: Optional[List[CartItemIn]] = None


class OrderStatusIn(ApiModel):
    status: str
    payment_intent_id: Optional[str] = None


class PaymentIntentIn(ApiModel):
    order_id: int


@app.get("/api/orders")
def orders(request: Request):
    user = _require_user(request)
    return to_api(sqlite.list_orders(None if user["is_admin"] else user["id"]))


@app.get("/api/orders/{order_id}")
def order_detail(order_id: int, request: Request):
    order = _load_order(request, order_id)
    order["items"] = sqlite.get_order_items(order_id)
    return to_api(order)


@app.post("/api/orders", status_code=201)
def order_create(payload: OrderIn, request: Request):
    user = _current_user(request)
    if user:
        ok, res = sqlite.create_order_from_cart(user["id"], payload.shipping_address)
    else:
        if not payload.cart:
            raise HTTPException(status_code=400, detail="Cart is empty")
        items = [{"product_id": i.product_id, "quantity": i.quantity, "options": i.options} for i in payload.cart]
        ok, res = sqlite.create_order(None, payload.shipping_address, items)
    if not ok:
        raise HTTPException(status_code=400, detail=res)

    if payload.total is not None and payload.total != res["total"]:
        logger.warning("Order %s: client estimate %s differs from server total %s", res["id"], payload.total, res["total"])
    if not user:
        request.session["guest_orders"] = request.session.get("guest_orders", []) + [res["id"]]
    return to_api(res)


@app.patch("/api/orders/{order_id}/status")
def order_status(order_id: int, payload: OrderStatusIn, request: Request):
    user = _current_user(request)
    order = sqlite.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    if not (user and user["is_admin"]):
        # buyers may only mark their own order paid, backed by a verified payment
        if not _can_see_order(request, user, order):
            raise HTTPException(status_code=403, detail="Not authorized to update order status")
        if payload.status != ORDER_PROCESSING or not payload.payment_intent_id:
            raise HTTPException(status_code=403, detail="Not authorized to update order status")
        try:
            verified, err = payments.verify_payment(payload.payment_intent_id, order)
        except Exception as e:
            logger.error("Payment verification failed for order %s: %s", order_id, e)
            raise HTTPException(status_code=502, detail="Could not verify payment")
        if not verified:
            raise HTTPException(status_code=400, detail=err)

    ok, res = sqlite.update_order_status(order_id, payload.status, payload.payment_intent_id)
    if not ok:
        raise HTTPException(status_code=400, detail=res)
    return to_api(res)


@app.post("/api/create-payment-intent")
def payment_intent(payload: PaymentIntentIn, request: Request):
    order = _load_order(request, payload.order_id)
    if order["status"] != ORDER_CREATED:
        raise HTTPException(status_code=400, detail="Order is not awaiting payment")
    try:
        return payments.create_payment_intent(order)
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error("Payment intent creation failed for order %s: %s", order["id"], e)
        raise HTTPException(status_code=502, detail=getattr(e, "user_message", None) or str(e))


@app.get("/api/orders/{order_id}/conversation")
def order_conversation(order_id: int, request: Request):
    _require_user(request)
    _load_order(request, order_id)
    conversation = sqlite.get_conversation_by_order(order_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return to_api(conversation)


@app.get("/api/orders/{order_id}/invoice.pdf", response_class=FileResponse)
def order_invoice(order_id: int, request: Request):
    order = _load_order(request, order_id)
    path = invoice_pdf.generate_invoice_pdf(order, sqlite.get_order_items(order_id))
    return FileResponse(path, filename=Path(path).name, media_type="application/pdf")


@app.get("/orders/{order_id}/confirmation", response_class=HTMLResponse)
def order_confirmation(order_id: int, request: Request):
    order = _load_order(request, order_id)
    return _render(
        request,
        "order_confirmation.html",
        {"order": order, "items": sqlite.get_order_items(order_id)},
    )


# ---------------- conversations ----------------

class ConversationIn(ApiModel):
    subject: str


class MessageIn(ApiModel):
    content: str
    message_type: str = MESSAGE_TEXT
    image_url: Optional[str] = None


@app.get("/api/conversations")
def conversations(request: Request):
    user = _require_user(request)
    return to_api(sqlite.list_conversations(user["id"], user["is_admin"]))


@app.get("/api/conversations/{conversation_id}")
def conversation_detail(conversation_id: int, request: Request):
    user = _require_user(request)
    conversation = sqlite.get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if not _is_participant(user, conversation):
        raise HTTPException(status_code=403, detail="Not authorized to view this conversation")
    return to_api(conversation)


@app.post("/api/conversations", status_code=201)
def conversation_create(payload: ConversationIn, request: Request):
    user = _require_user(request)
    logger.info("Creating conversation for user %s with subject %r", user["id"], payload.subject)
    ok, res = sqlite.create_direct_conversation(user["id"], payload.subject)
    if not ok:
        raise HTTPException(status_code=400, detail=res)
    return to_api(res)


async def _post_message(user: Dict[str, Any], conversation: Dict[str, Any], payload: MessageIn) -> Dict[str, Any]:
    ok, res = sqlite.create_message(
        conversation["id"], user["id"], payload.content, payload.message_type, payload.image_url
    )
    if not ok:
        raise HTTPException(status_code=400, detail=res)
    message = to_api(res)
    sent = await manager.send_to_users(
        recipients_for(conversation, user, sqlite.list_admin_ids()),
        {"type": "new_message", "data": message},
    )
    logger.info("Message %s broadcast to %d connections", message["id"], sent)
    return message


@app.post("/api/conversations/{conversation_id}/messages", status_code=201)
async def conversation_message(conversation_id: int, payload: MessageIn, request: Request):
    user = _require_user(request)
    conversation = sqlite.get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if not _is_participant(user, conversation):
        raise HTTPException(status_code=403, detail="Not authorized to message in this conversation")
    return await _post_message(user, conversation, payload)


# ---------------- realtime ----------------

@app.websocket("/ws")
async def ws(websocket: WebSocket):
    await websocket.accept()
    user: Optional[Dict[str, Any]] = None
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
                kind, data = frame["type"], frame.get("data") or {}

                if kind == "authenticate":
                    claimed = int(data["userId"])
                    session_user = websocket.session.get("user_id")
                    if session_user is None or int(session_user) != claimed:
                        await websocket.send_json({"type": "error", "data": {"message": "Not authenticated"}})
                        continue
                    if user and user["id"] != claimed:
                        manager.unregister(user["id"], websocket)
                    user = sqlite.get_user(claimed)
                    manager.register(claimed, websocket)
                    await websocket.send_json({"type": "auth_success", "data": {"userId": claimed}})

                elif kind == "chat_message" and user:
                    conversation = sqlite.get_conversation(int(data["conversationId"]))
                    if not conversation or not _is_participant(user, conversation):
                        await websocket.send_json({"type": "error", "data": {"message": "Conversation not available"}})
                        continue
                    await _post_message(user, conversation, MessageIn.model_validate(data))

            except (ValueError, KeyError, TypeError, HTTPException) as exc:
                logger.warning("WebSocket message error: %s", exc)
                await websocket.send_json({"type": "error", "data": {"message": "Invalid message format"}})
    except WebSocketDisconnect as exc:
        logger.info("WebSocket closed with code %s", exc.code)
    finally:
        if user:
            manager.unregister(user["id"], websocket)


# ---------------- image processing ----------------

class ImageIn(ApiModel):
    image_url: str


class BorderIn(ImageIn):
    low_threshold: int = Field(100, ge=0, le=255)
    high_threshold: int = Field(200, ge=0, le=255)


@app.post("/api/image/remove-background")
def image_remove_background(payload: ImageIn):
    try:
        return {"url": replicate.remove_background(payload.image_url)}
    except replicate.ImageProcessingError as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/image/detect-borders")
def image_detect_borders(payload: BorderIn):
    try:
        return replicate.detect_borders(payload.image_url, payload.low_threshold, payload.high_threshold)
    except replicate.ImageProcessingError as e:
        raise HTTPException(status_code=500, detail=str(e))


# ---------------- ebay import ----------------

class EbayImportIn(ApiModel):
    product_ids: List[str]


@app.get("/api/ebay/products")
def ebay_products(request: Request):
    _require_admin(request)
    try:
        listings = ebay.fetch_listings()
    except ebay.EbayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"success": True, "products": listings}


@app.post("/api/ebay/import-selected")
def ebay_import_selected(payload: EbayImportIn, request: Request):
    _require_admin(request)
    if not payload.product_ids:
        raise HTTPException(status_code=400, detail="No product IDs provided for import")
    try:
        return ebay.import_selected(payload.product_ids)
    except ebay.EbayError as e:
        raise HTTPException(status_code=502, detail=str(e))


# ---------------- ebay store sync ----------------

class EbaySettingsIn(ApiModel):
    seller_id: str


@app.get("/api/ebay/settings")
def ebay_settings(request: Request):
    _require_admin(request)
    return {**ebay.load_store_settings(), "effectiveSellerId": ebay.current_seller_id()}


@app.put("/api/ebay/settings")
def ebay_save_settings(payload: EbaySettingsIn, request: Request):
    _require_admin(request)
    return {"success": True, "settings": ebay.save_seller_id(payload.seller_id)}


@app.post("/api/ebay/sync")
def ebay_sync(request: Request):
    _require_admin(request)
    try:
        return ebay.sync_store()
    except ebay.EbayError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/api/ebay/export/{kind}", response_class=FileResponse)
def ebay_export(kind: str, request: Request):
    _require_admin(request)
    if kind not in ebay.EXPORT_FILES:
        raise HTTPException(status_code=404, detail="Unknown export format")
    try:
        path = ebay.export_file(kind)
    except ebay.EbayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    media_type = "application/json" if kind == "json" else "text/csv"
    return FileResponse(path, filename=Path(path).name, media_type=media_type)


@app.get("/api/ebay/sync-logs")
def ebay_sync_logs(request: Request):
    _require_admin(request)
    return {"logs": ebay.read_sync_log() or "No sync logs available."}
