"""
Typed views of the JSON the shop server returns. Field names follow
Python, `from_api` / `to_api` translate to and from the camelCase wire form.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from stickershop.constants import MESSAGE_TEXT
from stickershop.services import pricing
from stickershop.services.pricing import Totals

CartSummary = Totals
ItemId = Union[int, str]


@dataclass
class Product:
    id: int
    title: str
    price: int
    description: str = ""
    image_url: str = ""
    category_id: Optional[int] = None

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "Product":
        return cls(
            id=int(d["id"]),
            title=d.get("title") or "",
            price=int(d.get("price") or 0),
            description=d.get("description") or "",
            image_url=d.get("imageUrl") or "",
            category_id=d.get("categoryId"),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "price": self.price,
            "description": self.description,
            "imageUrl": self.image_url,
            "categoryId": self.category_id,
        }


@dataclass
class CartItem:
    id: ItemId
    product_id: int
    quantity: int
    options: Dict[str, Any] = field(default_factory=dict)
    product: Optional[Product] = None

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "CartItem":
        product = d.get("product")
        return cls(
            id=d["id"],
            product_id=int(d["productId"]),
            quantity=int(d["quantity"]),
            options=dict(d.get("options") or {}),
            product=Product.from_api(product) if product else None,
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "productId": self.product_id,
            "quantity": self.quantity,
            "options": dict(self.options),
            "product": self.product.to_api() if self.product else None,
        }

    @property
    def price_options(self) -> pricing.PriceOptions:
        return pricing.PriceOptions.from_mapping(self.options)

    @property
    def base_price(self) -> Optional[int]:
        return self.product.price if self.product else None

    @property
    def unit_price(self) -> int:
        return pricing.discounted_unit_price(
            pricing.unit_price(self.base_price, self.price_options), self.quantity
        )

    @property
    def line_total(self) -> int:
        return pricing.line_total(self.base_price, self.price_options, self.quantity)

    def same_line(self, product_id: int, options: Dict[str, Any]) -> bool:
        return self.product_id == product_id and self.options == options


@dataclass
class Message:
    id: int
    conversation_id: int
    user_id: int
    content: str
    message_type: str = MESSAGE_TEXT
    image_url: Optional[str] = None
    created_at: Optional[str] = None
    read: bool = False

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "Message":
        return cls(
            id=int(d["id"]),
            conversation_id=int(d["conversationId"]),
            user_id=int(d["userId"]),
            content=d.get("content") or "",
            message_type=d.get("messageType") or MESSAGE_TEXT,
            image_url=d.get("imageUrl"),
            created_at=d.get("createdAt"),
            read=bool(d.get("read", False)),
        )


@dataclass
class Conversation:
    id: int
    subject: str
    is_direct_chat: bool
    user_id: Optional[int] = None
    order_id: Optional[int] = None
    messages: List[Message] = field(default_factory=list)
    last_message: Optional[Message] = None
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "Conversation":
        last = d.get("lastMessage")
        return cls(
            id=int(d["id"]),
            subject=d.get("subject") or "",
            is_direct_chat=bool(d.get("isDirectChat")),
            user_id=d.get("userId"),
            order_id=d.get("orderId"),
            messages=[Message.from_api(m) for m in d.get("messages") or []],
            last_message=Message.from_api(last) if last else None,
            created_at=d.get("createdAt"),
        )


@dataclass
class Order:
    id: int
    status: str
    total: int
    subtotal: int = 0
    shipping: int = 0
    tax: int = 0
    shipping_address: str = ""
    payment_intent_id: Optional[str] = None
    created_at: Optional[str] = None
    items: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "Order":
        return cls(
            id=int(d["id"]),
            status=d["status"],
            total=int(d["total"]),
            subtotal=int(d.get("subtotal") or 0),
            shipping=int(d.get("shipping") or 0),
            tax=int(d.get("tax") or 0),
            shipping_address=d.get("shippingAddress") or "",
            payment_intent_id=d.get("paymentIntentId"),
            created_at=d.get("createdAt"),
            items=list(d.get("items") or []),
        )


@dataclass
class ImportResult:
    success: bool
    imported_count: int
    errors: List[Dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "ImportResult":
        return cls(
            success=bool(d.get("success")),
            imported_count=int(d.get("importedCount") or 0),
            errors=[{"productId": str(e.get("productId")), "error": str(e.get("error"))} for e in d.get("errors") or []],
        )

    @property
    def failed_count(self) -> int:
        return len(self.errors)


@dataclass
class SyncResult:
    products_imported: int
    failed_count: int
    json_file: str
    csv_file: str

    @classmethod
    def from_api(cls, d: Dict[str, Any]) -> "SyncResult":
        return cls(
            products_imported=int(d.get("productsImported") or 0),
            failed_count=int(d.get("failedCount") or 0),
            json_file=str(d.get("jsonFile") or ""),
            csv_file=str(d.get("csvFile") or ""),
        )
