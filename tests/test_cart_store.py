import asyncio

import pytest

from stickershop.client.cart import CartStore
from stickershop.client.errors import ApiError
from stickershop.client.events import CLEARING, ITEM_REMOVING, QUANTITY_CHANGING


@pytest.fixture
def guest_cart(api, storage, notifier):
    return CartStore(api, storage, notifier)


@pytest.fixture
def user_cart(api, storage, notifier):
    return CartStore(api, storage, notifier, user_id=1)


def snapshot(cart):
    return sorted((it.product_id, it.quantity, tuple(sorted(it.options.items()))) for it in cart.items)


@pytest.mark.asyncio
async def test_guest_adding_same_line_twice_merges(guest_cart):
    await guest_cart.add(7, 2, {})
    await guest_cart.add(7, 2, {})

    assert len(guest_cart.items) == 1
    assert guest_cart.items[0].quantity == 4


@pytest.mark.asyncio
async def test_guest_different_options_are_separate_lines(guest_cart):
    await guest_cart.add(7, 1, {"size": "Small"})
    await guest_cart.add(7, 1, {"size": "Large"})

    assert len(guest_cart.items) == 2
    assert guest_cart.items[0].id != guest_cart.items[1].id


@pytest.mark.asyncio
async def test_guest_cart_survives_reload(api, storage, notifier, guest_cart):
    item = await guest_cart.add(8, 3, {"materialMultiplier": 1.5})

    reloaded = CartStore(api, storage, notifier)
    await reloaded.load()

    assert [(it.id, it.product_id, it.quantity, it.options) for it in reloaded.items] == [
        (item.id, 8, 3, {"materialMultiplier": 1.5})
    ]
    assert reloaded.items[0].product.price == 450
    assert storage.get("cart")[0]["productId"] == 8


@pytest.mark.asyncio
async def test_guest_add_unknown_product_fails_without_change(guest_cart, notifier):
    await guest_cart.add(7, 1)
    before = snapshot(guest_cart)

    with pytest.raises(ApiError):
        await guest_cart.add(999, 1)

    assert snapshot(guest_cart) == before
    assert notifier.messages("error")


@pytest.mark.asyncio
@pytest.mark.parametrize("cart_fixture", ["guest_cart", "user_cart"])
async def test_add_then_remove_restores_items(request, cart_fixture):
    cart = request.getfixturevalue(cart_fixture)
    await cart.add(8, 1)
    before = snapshot(cart)

    item = await cart.add(7, 2, {"finish": "Matte"})
    await cart.remove(item.id)

    assert snapshot(cart) == before


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", True])
async def test_update_rejects_bad_quantity_before_any_request(user_cart, api, quantity):
    item = await user_cart.add(7, 1)

    with pytest.raises(ValueError):
        await user_cart.update(item.id, quantity)

    assert api.count("update_cart_item") == 0
    assert user_cart.items[0].quantity == 1


@pytest.mark.asyncio
async def test_authenticated_update_reconciles_with_server(user_cart, api):
    item = await user_cart.add(7, 1)
    api.cart[0]["options"] = {"size": "Large"}

    updated = await user_cart.update(item.id, 5)

    assert updated.quantity == 5
    assert user_cart.items[0].options == {"size": "Large"}


@pytest.mark.asyncio
async def test_authenticated_remove_failure_still_removes_locally(user_cart, api, notifier):
    item = await user_cart.add(7, 1)
    api.fail["remove_cart_item"] = ApiError(500, "boom")

    with pytest.raises(ApiError):
        await user_cart.remove(item.id)

    assert user_cart.items == []
    assert any("remove" in m for m in notifier.messages("error"))


@pytest.mark.asyncio
async def test_authenticated_mode_does_not_write_local_storage(user_cart, storage):
    await user_cart.add(7, 1)
    assert storage.get("cart") is None


@pytest.mark.asyncio
async def test_load_failure_keeps_previous_state(user_cart, api, notifier):
    await user_cart.add(7, 1)
    api.fail["get_cart"] = ApiError(None, "Network error")

    with pytest.raises(ApiError):
        await user_cart.load()

    assert len(user_cart.items) == 1
    assert not user_cart.loading
    assert notifier.messages("error")


@pytest.mark.asyncio
async def test_stale_load_is_discarded(user_cart, api):
    gate = asyncio.Event()
    original = api.get_cart

    async def slow_get_cart():
        await gate.wait()
        return []

    api.get_cart = slow_get_cart
    pending = asyncio.create_task(user_cart.load())
    await asyncio.sleep(0)

    api.get_cart = original
    await user_cart.add(7, 1)
    gate.set()
    await pending

    assert [it.product_id for it in user_cart.items] == [7]


@pytest.mark.asyncio
async def test_pending_changes_are_published_before_apply(guest_cart):
    seen = []
    item = await guest_cart.add(7, 1)
    unsubscribe = guest_cart.subscribe(lambda c: seen.append((c.kind, c.item_id, c.quantity, len(guest_cart.items))))

    await guest_cart.update(item.id, 3)
    await guest_cart.remove(item.id)
    await guest_cart.clear()
    unsubscribe()
    await guest_cart.clear()

    assert seen == [
        (QUANTITY_CHANGING, item.id, 3, 1),
        (ITEM_REMOVING, item.id, None, 1),
        (CLEARING, None, None, 0),
    ]


@pytest.mark.asyncio
async def test_summary_uses_discounted_lines(guest_cart):
    await guest_cart.add(7, 10, {"materialMultiplier": 1.5})
    summary = guest_cart.summary()

    assert summary.subtotal == 13500
    assert summary.shipping == 499
    assert summary.tax == 1080
    assert summary.total == 13500 + 499 + 1080


@pytest.mark.asyncio
async def test_clear_empties_cart_and_storage(guest_cart, storage):
    await guest_cart.add(7, 1)
    await guest_cart.clear()

    assert guest_cart.items == []
    assert storage.get("cart") == []
