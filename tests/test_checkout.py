import pytest

from stickershop.client.cart import CartStore
from stickershop.client.checkout import CheckoutFlow, PaymentProcessor
from stickershop.client.errors import ApiError, OrderSyncError, PaymentError


class FakeProcessor(PaymentProcessor):
    def __init__(self, error=None):
        self.error = error
        self.confirmed = []

    async def confirm(self, client_secret, payment_intent_id):
        self.confirmed.append((client_secret, payment_intent_id))
        if self.error:
            raise PaymentError(self.error)
        return payment_intent_id


async def filled_cart(api, storage, notifier, user_id=None):
    cart = CartStore(api, storage, notifier, user_id=user_id)
    await cart.add(7, 10, {"materialMultiplier": 1.5})
    await cart.add(8, 1)
    return cart


@pytest.mark.asyncio
async def test_guest_checkout_happy_path(api, storage, notifier):
    cart = await filled_cart(api, storage, notifier)
    processor = FakeProcessor()
    estimate = cart.summary().total

    result = await CheckoutFlow(api, cart, processor, notifier).run("1 Main St, Springfield")

    order = api.orders[result.order.id]
    assert order["clientTotal"] == estimate == order["total"]
    assert order["guestCart"] == [
        {"productId": 7, "quantity": 10, "options": {"materialMultiplier": 1.5}},
        {"productId": 8, "quantity": 1, "options": {}},
    ]
    assert order["status"] == "processing"
    assert order["paymentIntentId"] == f"pi_{result.order.id}"
    assert processor.confirmed == [(f"pi_{result.order.id}_secret", f"pi_{result.order.id}")]
    assert cart.items == []
    assert storage.get("cart") == []
    assert result.confirmation_path == f"/orders/{result.order.id}/confirmation"


@pytest.mark.asyncio
async def test_authenticated_checkout_uses_server_cart(api, storage, notifier):
    cart = await filled_cart(api, storage, notifier, user_id=1)

    result = await CheckoutFlow(api, cart, FakeProcessor(), notifier).run("1 Main St, Springfield")

    assert api.orders[result.order.id]["guestCart"] is None
    assert api.count("clear_cart") == 1
    assert cart.items == []


@pytest.mark.asyncio
async def test_payment_error_keeps_cart_and_shows_processor_message(api, storage, notifier):
    cart = await filled_cart(api, storage, notifier)
    flow = CheckoutFlow(api, cart, FakeProcessor("Your card was declined."), notifier)

    with pytest.raises(PaymentError):
        await flow.run("1 Main St, Springfield")

    assert len(cart.items) == 2
    assert len(storage.get("cart")) == 2
    assert notifier.messages("error")[-1] == "Your card was declined."
    assert api.count("update_order_status") == 0
    assert [o["status"] for o in api.orders.values()] == ["created"]


@pytest.mark.asyncio
async def test_status_update_failure_after_payment(api, storage, notifier):
    cart = await filled_cart(api, storage, notifier)
    api.fail["update_order_status"] = ApiError(500, "db locked")

    with pytest.raises(OrderSyncError) as info:
        await CheckoutFlow(api, cart, FakeProcessor(), notifier).run("1 Main St, Springfield")

    message = notifier.messages("error")[-1]
    assert "payment was successful" in message
    assert "contact support" in message
    assert info.value.payment_intent_id == f"pi_{info.value.order_id}"
    assert len(cart.items) == 2


@pytest.mark.asyncio
async def test_order_creation_failure_stops_before_payment(api, storage, notifier):
    cart = await filled_cart(api, storage, notifier)
    processor = FakeProcessor()
    api.fail["create_order"] = ApiError(400, "Cart is empty")

    with pytest.raises(ApiError):
        await CheckoutFlow(api, cart, processor, notifier).run("1 Main St, Springfield")

    assert processor.confirmed == []
    assert len(cart.items) == 2


@pytest.mark.asyncio
async def test_empty_cart_or_address_is_rejected(api, storage, notifier):
    flow = CheckoutFlow(api, CartStore(api, storage, notifier), FakeProcessor(), notifier)

    with pytest.raises(ValueError):
        await flow.run("1 Main St, Springfield")
    with pytest.raises(ValueError):
        await flow.run("   ")
    assert api.calls == []


def test_processor_must_implement_confirm():
    with pytest.raises(TypeError):
        PaymentProcessor()
