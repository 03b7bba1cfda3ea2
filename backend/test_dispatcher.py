"""Command parsing, user and owner commands, and the dispatcher's error policy."""
from datetime import datetime, timedelta

import pytest

from storebot.agent.dispatcher import parse_command
from storebot.core.exceptions import PersistenceError
from storebot.schemas.records import OrderRecord, PaymentMethod

from conftest import OWNER_ID, event, make_product, make_user


async def _say(runtime, sender, text):
    return await runtime.dispatcher.handle(sender, event(sender, text))


def test_parse_command():
    assert parse_command("/buy ebook1", "/") == ("buy", "ebook1")
    assert parse_command("  /MENU  ", "/") == ("menu", "")
    assert parse_command("/start@ebook_store_bot", "/") == ("start", "")
    assert parse_command("/broadcast Hello\nall of you", "/") == ("broadcast", "Hello\nall of you")
    assert parse_command(".katalog", ".") == ("katalog", "")
    assert parse_command("hello there", "/") is None
    assert parse_command("/", "/") is None


async def test_every_sender_is_registered(runtime):
    await _say(runtime, "2002", "just saying hi")
    user = await runtime.store.get_user("2002")
    assert user is not None
    assert user.balance == 0


async def test_free_text_is_ignored_and_unknown_commands_answered(runtime):
    assert await _say(runtime, "2002", "hello") == []
    replies = await _say(runtime, "2002", "/fly")
    assert "Unknown command" in replies[0].text


async def test_menu_shows_owner_section_only_to_owners(runtime):
    user_menu = (await _say(runtime, "2002", "/menu"))[0].text
    owner_menu = (await _say(runtime, OWNER_ID, "/start"))[0].text

    assert "/catalog" in user_menu
    assert "/addproduct" not in user_menu
    assert "/addproduct" in owner_menu


async def test_catalog_balance_help_tos(runtime):
    await runtime.store.save_users([make_user("2002", balance=12500)])
    assert "catalog is empty" in (await _say(runtime, "2002", "/catalog"))[0].text

    await runtime.store.save_products([make_product("ebook1", name="Recipes", price=15000)])
    catalog = (await _say(runtime, "2002", "/products"))[0].text
    assert "Recipes" in catalog and "Rp 15.000" in catalog and "ebook1" in catalog

    assert "Rp 12.500" in (await _say(runtime, "2002", "/saldo"))[0].text
    assert "HELP" in (await _say(runtime, "2002", "/help"))[0].text
    assert "TERMS" in (await _say(runtime, "2002", "/tos"))[0].text


@pytest.mark.parametrize("alias, command", [
    ("katalog", "catalog"),
    ("produk", "catalog"),
    ("saldo", "balance"),
    ("beli", "buy"),
    ("riwayat", "history"),
    ("bantuan", "help"),
    ("sk", "tos"),
])
async def test_indonesian_aliases_answer_like_english_commands(runtime, alias, command):
    assert await _say(runtime, "2002", f"/{alias}") == await _say(runtime, "2002", f"/{command}")


@pytest.mark.parametrize("alias, command", [
    ("addproduk", "addproduct"),
    ("delproduk", "delproduct"),
    ("editproduk", "editproduct"),
    ("listuser", "listusers"),
    ("bc", "broadcast"),
    ("addsaldo", "addbalance"),
])
async def test_owner_aliases_are_owner_only(runtime, alias, command):
    owner_commands = runtime.dispatcher._owner_commands
    assert owner_commands[alias] == owner_commands[command]
    assert "owner only" in (await _say(runtime, "2002", f"/{alias}"))[0].text


async def test_history_lists_last_ten_newest_first(runtime):
    base = datetime.utcnow() - timedelta(days=1)
    for i in range(12):
        await runtime.store.append_order(
            OrderRecord(
                id=f"ORDER{i}",
                user_id="2002",
                user_name="Sari",
                product_id="ebook1",
                product_name=f"Book {i}",
                price=10000,
                link=f"L{i}",
                payment_method=PaymentMethod.BALANCE,
                created_at=base + timedelta(minutes=i),
            )
        )

    text = (await _say(runtime, "2002", "/history"))[0].text
    assert "last 10" in text
    assert text.index("Book 11") < text.index("Book 2")
    assert "Book 1\n" not in text
    assert "Book 0" not in text

    assert "No purchase history" in (await _say(runtime, "3003", "/history"))[0].text


async def test_owner_commands_rejected_for_users(runtime):
    for command in ("/addproduct", "/stats", "/broadcast hi", "/addbalance 1 1000", "/listusers"):
        replies = await _say(runtime, "2002", command)
        assert "owner only" in replies[0].text
    assert runtime.session.states.get("2002") is None


async def test_add_balance(runtime, messenger):
    await runtime.store.save_users([make_user("2002", balance=1000)])

    assert "Usage" in (await _say(runtime, OWNER_ID, "/addbalance 2002"))[0].text
    assert "number" in (await _say(runtime, OWNER_ID, "/addbalance 2002 -5"))[0].text
    assert "not found" in (await _say(runtime, OWNER_ID, "/addbalance 7777 5000"))[0].text

    replies = await _say(runtime, OWNER_ID, "/addbalance 2002 5000")
    assert "Balance credited" in replies[0].text
    assert (await runtime.store.get_user("2002")).balance == 6000
    assert "Rp 5.000" in messenger.texts_to("2002")[0]


async def test_broadcast_counts_failures(runtime, messenger):
    await runtime.store.save_users([make_user("a"), make_user("b"), make_user("c")])
    messenger.unreachable.add("b")

    replies = await _say(runtime, OWNER_ID, "/broadcast Big sale today")

    # Owner registered on contact, so four recipients
    assert "Sent: 3" in replies[0].text
    assert "Failed: 1" in replies[0].text
    assert any("Big sale today" in t for t in messenger.texts_to("c"))


async def test_stats_and_list_users(runtime):
    await runtime.store.save_users([make_user("2002", balance=500), make_user("628123456789")])
    await runtime.store.save_products([make_product("ebook1", name="Recipes")])
    await runtime.settlement.credit_balance("2002", 20000)
    await runtime.settlement.settle_with_balance("2002", "Sari", "ebook1")

    stats = (await _say(runtime, OWNER_ID, "/stats"))[0].text
    assert "Active users: 1" in stats
    assert "Recipes (1x)" in stats
    assert "Successful orders: 1" in stats
    assert "Revenue: Rp 15.000" in stats

    users = (await _say(runtime, OWNER_ID, "/listusers"))[0].text
    assert "6281234*****" in users
    assert "628123456789" not in users
    assert "Total: 3" in users


async def test_persistence_failure_clears_state_and_reports(runtime, monkeypatch):
    await runtime.store.save_users([make_user("2002", balance=20000)])
    await runtime.store.save_products([make_product("ebook1")])
    await _say(runtime, "2002", "/buy ebook1")

    async def broken_append(order):
        raise PersistenceError("disk full")

    monkeypatch.setattr(runtime.store, "append_order", broken_append)

    replies = await _say(runtime, "2002", "1")
    assert "contact the owner" in replies[0].text
    assert runtime.session.states.get("2002") is None
    assert (await runtime.store.get_user("2002")).balance == 20000


async def test_unexpected_error_gives_generic_reply_and_isolates_users(runtime, monkeypatch):
    await runtime.store.save_products([make_product("ebook1")])
    await _say(runtime, "other", "/buy ebook1")

    async def exploding(event, rest):
        raise RuntimeError("boom")

    monkeypatch.setitem(runtime.dispatcher._commands, "catalog", exploding)

    replies = await _say(runtime, "2002", "/catalog")
    assert "Something went wrong" in replies[0].text
    assert runtime.session.states.get("other") is not None
