"""
End-to-end wizard flows through the dispatcher.

Tests:
1. Purchase: cancel, insufficient balance, balance success, invalid choice
2. Purchase via QRIS: paid, expired, gateway down
3. Top-up: argument checks, paid on 3rd poll, duplicate paid callback
4. Owner wizards: add, delete, edit product
"""
import asyncio
import base64

import pytest

from storebot.agent.conversation_state import WizardStep
from storebot.core.exceptions import AlreadyProcessed
from storebot.schemas.payment import DepositState

from conftest import OWNER_ID, PNG_BYTES, drain_polls, event, make_product, make_user

BUYER = "1001"


async def _seed(runtime, balance=0, links=None, price=15000):
    await runtime.store.save_users([make_user(BUYER, balance=balance)])
    await runtime.store.save_products([make_product("ebook1", price=price, links=links)])


async def _say(runtime, sender, text="", image=None):
    replies = await runtime.dispatcher.handle(sender, event(sender, text, image))
    return replies


# ==============================================================================
# 1. PURCHASE WITH BALANCE
# ==============================================================================

async def test_cancel_from_payment_selection_mutates_nothing(runtime):
    await _seed(runtime, balance=50000)

    replies = await _say(runtime, BUYER, "/buy ebook1")
    assert "CONFIRM PURCHASE" in replies[0].text
    assert runtime.session.states.get(BUYER).step == WizardStep.SELECTING_PAYMENT_METHOD

    replies = await _say(runtime, BUYER, "CANCEL")
    assert "Cancelled" in replies[0].text
    assert runtime.session.states.get(BUYER) is None

    assert (await runtime.store.get_user(BUYER)).balance == 50000
    assert (await runtime.store.get_product("ebook1")).stock == 2
    assert await runtime.store.get_orders() == []


async def test_insufficient_balance_keeps_state_and_changes_nothing(runtime):
    await _seed(runtime, balance=0, price=15000)

    await _say(runtime, BUYER, "/buy ebook1")
    replies = await _say(runtime, BUYER, "1")

    assert "INSUFFICIENT BALANCE" in replies[0].text
    assert "Rp 15.000" in replies[0].text
    assert runtime.session.states.get(BUYER).step == WizardStep.SELECTING_PAYMENT_METHOD
    assert (await runtime.store.get_user(BUYER)).balance == 0
    assert (await runtime.store.get_product("ebook1")).stock == 2


async def test_balance_purchase_delivers_token_once_and_notifies_channel(runtime, messenger, config):
    await _seed(runtime, balance=20000, links=["https://drive.google.com/file/d/secret1", "L2"])

    await _say(runtime, BUYER, "/buy ebook1")
    replies = await _say(runtime, BUYER, "1")

    assert "PURCHASE SUCCESSFUL" in replies[0].text
    assert "https://drive.google.com/file/d/secret1" in replies[0].text
    assert runtime.session.states.get(BUYER) is None
    assert (await runtime.store.get_user(BUYER)).balance == 5000

    notices = messenger.texts_to(config.CHANNEL_ID)
    assert len(notices) == 1
    assert "https://drive.google.com/***" in notices[0]
    assert "secret1" not in notices[0]


async def test_invalid_payment_choice_reprompts(runtime):
    await _seed(runtime, balance=20000)

    await _say(runtime, BUYER, "/buy ebook1")
    replies = await _say(runtime, BUYER, "/menu")

    assert "Invalid choice" in replies[0].text
    assert runtime.session.states.get(BUYER).step == WizardStep.SELECTING_PAYMENT_METHOD


async def test_buy_replies_without_state_for_bad_ids(runtime):
    await _seed(runtime, links=[])

    assert "Usage" in (await _say(runtime, BUYER, "/buy"))[0].text
    assert "not found" in (await _say(runtime, BUYER, "/buy nope"))[0].text
    assert "sold out" in (await _say(runtime, BUYER, "/buy ebook1"))[0].text
    assert runtime.session.states.get(BUYER) is None


# ==============================================================================
# 2. PURCHASE WITH QRIS
# ==============================================================================

async def test_qris_purchase_paid_on_third_poll(runtime, gateway, messenger):
    await _seed(runtime, balance=0, links=["L1", "L2"])
    gateway.default_script = [DepositState.PENDING, DepositState.PENDING, DepositState.SUCCESS]

    await _say(runtime, BUYER, "/buy ebook1")
    replies = await _say(runtime, BUYER, "2")

    assert replies[0].image == PNG_BYTES
    assert "QRIS PAYMENT" in replies[0].text
    assert runtime.session.states.get(BUYER) is None
    assert runtime.session.poller.pending == ["DEP1"]

    await drain_polls()

    pushed = messenger.texts_to(BUYER)
    assert len(pushed) == 1
    assert "PURCHASE SUCCESSFUL" in pushed[0]
    assert "L1" in pushed[0]

    orders = await runtime.store.get_orders()
    assert len(orders) == 1
    assert orders[0].deposit_id == "DEP1"
    assert (await runtime.store.get_product("ebook1")).links == ["L2"]
    assert gateway.checks["DEP1"] == 3


async def test_qris_purchase_never_paid_expires_without_mutation(runtime, gateway, messenger):
    await _seed(runtime, balance=0)

    await _say(runtime, BUYER, "/buy ebook1")
    await _say(runtime, BUYER, "2")
    await drain_polls()

    assert gateway.checks["DEP1"] == 3
    assert "expired" in messenger.texts_to(BUYER)[0]
    assert await runtime.store.get_orders() == []
    assert await runtime.store.get_processed_deposits() == {}
    assert (await runtime.store.get_product("ebook1")).stock == 2


async def test_gateway_failure_clears_state(runtime, gateway):
    await _seed(runtime, balance=0)
    gateway.fail_create = True

    await _say(runtime, BUYER, "/buy ebook1")
    replies = await _say(runtime, BUYER, "2")

    assert "Payment system is unavailable" in replies[0].text
    assert runtime.session.states.get(BUYER) is None
    assert runtime.session.poller.pending == []


async def test_repeated_qris_choice_creates_one_deposit(runtime, gateway, messenger):
    await _seed(runtime, balance=0)
    gateway.create_delay = 0.05
    await _say(runtime, BUYER, "/buy ebook1")

    first, second = await asyncio.gather(_say(runtime, BUYER, "2"), _say(runtime, BUYER, "2"))
    texts = [r.text for r in first + second]

    assert [d.id for d in gateway.created] == ["DEP1"]
    assert sum("QRIS PAYMENT" in t for t in texts) == 1
    assert sum("already being processed" in t for t in texts) == 1
    assert runtime.session.states.get(BUYER) is None

    await drain_polls()
    assert len(messenger.texts_to(BUYER)) == 1
    assert await runtime.store.get_orders() == []


async def test_balance_answer_during_qris_checkout_is_refused(runtime, gateway):
    await _seed(runtime, balance=50000)
    gateway.create_delay = 0.05
    await _say(runtime, BUYER, "/buy ebook1")

    first, second = await asyncio.gather(_say(runtime, BUYER, "2"), _say(runtime, BUYER, "1"))
    texts = [r.text for r in first + second]

    # Exactly one payment path ran
    orders = await runtime.store.get_orders()
    assert len(gateway.created) + len(orders) == 1
    assert sum("already being processed" in t for t in texts) == 1
    await runtime.session.poller.cancel_all()


# ==============================================================================
# 3. TOP-UP
# ==============================================================================

async def test_topup_argument_checks(runtime, gateway):
    assert "Usage" in (await _say(runtime, BUYER, "/topup"))[0].text
    assert "number" in (await _say(runtime, BUYER, "/topup abc"))[0].text
    assert "Minimum" in (await _say(runtime, BUYER, "/topup 1000"))[0].text
    assert gateway.created == []


async def test_topup_paid_on_third_poll_credits_once(runtime, gateway, messenger):
    await runtime.store.save_users([make_user(BUYER, balance=0)])
    gateway.default_script = [DepositState.PENDING, DepositState.PENDING, DepositState.SUCCESS]

    replies = await _say(runtime, BUYER, "/topup 50000")
    assert replies[0].image == PNG_BYTES
    assert runtime.session.states.get(BUYER) is None

    await drain_polls()

    assert (await runtime.store.get_user(BUYER)).balance == 50000
    assert "TOP UP SUCCESSFUL" in messenger.texts_to(BUYER)[0]

    # A second paid callback for the same deposit is a no-op
    status = await gateway.check_status("DEP1")
    with pytest.raises(AlreadyProcessed):
        await runtime.settlement.settle_topup("DEP1", BUYER, status)
    assert (await runtime.store.get_user(BUYER)).balance == 50000


# ==============================================================================
# 4. OWNER WIZARDS
# ==============================================================================

CAPTION = "Python for Beginners\n25000\nStep by step course\nhttps://x/1\nhttps://x/2"


async def test_add_product_wizard(runtime):
    replies = await _say(runtime, OWNER_ID, "/addproduct")
    assert "ADD PRODUCT" in replies[0].text
    assert runtime.session.states.get(OWNER_ID).step == WizardStep.AWAITING_PRODUCT_PAYLOAD

    replies = await _say(runtime, OWNER_ID, CAPTION)
    assert "image" in replies[0].text
    assert runtime.session.states.get(OWNER_ID) is not None

    replies = await _say(runtime, OWNER_ID, "Only a name\n25000", image=b"jpeg-bytes")
    assert "Incomplete format" in replies[0].text
    assert runtime.session.states.get(OWNER_ID) is not None

    replies = await _say(runtime, OWNER_ID, CAPTION, image=b"jpeg-bytes")
    assert "Product added" in replies[0].text
    assert runtime.session.states.get(OWNER_ID) is None

    [product] = await runtime.store.get_products()
    assert product.name == "Python for Beginners"
    assert product.price == 25000
    assert product.links == ["https://x/1", "https://x/2"]
    assert product.stock == 2
    assert base64.b64decode(product.image) == b"jpeg-bytes"


async def test_delete_product_wizard(runtime):
    await runtime.store.save_products([make_product("ebook1")])

    await _say(runtime, OWNER_ID, "/delproduct")
    replies = await _say(runtime, OWNER_ID, "nope")
    assert "Product not found" in replies[0].text
    assert runtime.session.states.get(OWNER_ID).step == WizardStep.AWAITING_DELETE_PRODUCT_ID

    replies = await _say(runtime, OWNER_ID, "ebook1")
    assert "deleted" in replies[0].text
    assert await runtime.store.get_products() == []
    assert runtime.session.states.get(OWNER_ID) is None


async def test_delete_and_edit_with_empty_catalog_open_no_state(runtime):
    assert "No products" in (await _say(runtime, OWNER_ID, "/delproduct"))[0].text
    assert "No products" in (await _say(runtime, OWNER_ID, "/editproduct"))[0].text
    assert runtime.session.states.get(OWNER_ID) is None


async def test_edit_product_add_links_raises_stock(runtime):
    await runtime.store.save_products([make_product("ebook1", links=["L1"])])

    await _say(runtime, OWNER_ID, "/editproduct")
    replies = await _say(runtime, OWNER_ID, "ebook1")
    assert "EDIT PRODUCT" in replies[0].text

    replies = await _say(runtime, OWNER_ID, "9")
    assert "Invalid choice" in replies[0].text
    assert runtime.session.states.get(OWNER_ID).step == WizardStep.AWAITING_EDIT_FIELD

    await _say(runtime, OWNER_ID, "4")
    assert runtime.session.states.get(OWNER_ID).payload == {"product_id": "ebook1", "field": "links"}

    replies = await _say(runtime, OWNER_ID, "L2\nL3")
    assert "Product updated" in replies[0].text

    product = await runtime.store.get_product("ebook1")
    assert product.links == ["L1", "L2", "L3"]
    assert product.stock == 3


async def test_edit_price_rejects_non_numbers(runtime):
    await runtime.store.save_products([make_product("ebook1", price=15000)])

    await _say(runtime, OWNER_ID, "/editproduct")
    await _say(runtime, OWNER_ID, "ebook1")
    await _say(runtime, OWNER_ID, "2")

    replies = await _say(runtime, OWNER_ID, "abc")
    assert "positive number" in replies[0].text
    assert runtime.session.states.get(OWNER_ID).step == WizardStep.AWAITING_EDIT_VALUE

    await _say(runtime, OWNER_ID, "20000")
    assert (await runtime.store.get_product("ebook1")).price == 20000


async def test_edit_product_deleted_meanwhile_ends_flow(runtime):
    await runtime.store.save_products([make_product("ebook1")])

    await _say(runtime, OWNER_ID, "/editproduct")
    await _say(runtime, OWNER_ID, "ebook1")
    await _say(runtime, OWNER_ID, "1")
    await runtime.catalog.delete_product("ebook1")

    replies = await _say(runtime, OWNER_ID, "New name")
    assert "not found" in replies[0].text
    assert runtime.session.states.get(OWNER_ID) is None
