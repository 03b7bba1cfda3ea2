"""
Reply text builders.

Plain functions returning strings; no I/O. Commands are rendered with the
configured prefix so the texts stay correct when COMMAND_PREFIX changes.
"""
from typing import Dict, List, Optional

from storebot.schemas.records import OrderRecord, ProductRecord, UserRecord
from storebot.services.formatting import (
    format_date,
    format_rupiah,
    mask_id,
    wib_datetime,
)

PAYMENT_CHOICES = "1️⃣ Balance\n2️⃣ QRIS"


def menu(
    bot_name: str,
    owner_name: str,
    prefix: str,
    user: UserRecord,
    user_count: int,
    product_count: int,
    total_sold: int,
    is_owner: bool,
) -> str:
    p = prefix
    text = (
        f"『 {bot_name} 』\n\n"
        f"👋 Hi, {user.name}!\n\n"
        "ACCOUNT\n"
        f"💰 Balance: {format_rupiah(user.balance)}\n"
        f"📊 Transactions: {user.total_transactions}x\n\n"
        "STORE\n"
        f"👥 Users: {user_count}\n"
        f"📚 Products: {product_count}\n"
        f"💳 Sold: {total_sold}\n\n"
        "COMMANDS\n"
        f"📚 {p}catalog - Browse products\n"
        f"💰 {p}balance - Check balance\n"
        f"💵 {p}topup - Top up balance\n"
        f"🛒 {p}buy - Buy a product\n"
        f"📜 {p}history - Order history\n"
        f"❓ {p}help - Help\n"
        f"📋 {p}tos - Terms of service\n"
    )
    if is_owner:
        text += (
            "\nOWNER\n"
            f"➕ {p}addproduct - Add product\n"
            f"✏️ {p}editproduct - Edit product\n"
            f"🗑️ {p}delproduct - Delete product\n"
            f"👥 {p}listusers - List users\n"
            f"📢 {p}broadcast - Broadcast\n"
            f"📊 {p}stats - Statistics\n"
            f"💎 {p}addbalance - Credit a user's balance\n"
        )
    text += f"\n⏰ {wib_datetime()}\n👨‍💻 {owner_name}"
    return text


def catalog(prefix: str, products: List[ProductRecord]) -> str:
    if not products:
        return "📭 Sorry, the catalog is empty!"
    lines = [f"📚 CATALOG ({len(products)} products)\n"]
    for index, product in enumerate(products, start=1):
        lines.append(
            f"{index}. {product.name}\n"
            f"   💰 Price: {format_rupiah(product.price)}\n"
            f"   📦 Stock: {product.stock}\n"
            f"   🔥 Sold: {product.sold}x\n"
            f"   📝 {product.description}\n"
            f"   🆔 ID: {product.id}\n"
        )
    lines.append(f"To buy: {prefix}buy <product_id>\nExample: {prefix}buy {products[0].id}")
    return "\n".join(lines)


def balance_card(prefix: str, user: UserRecord) -> str:
    return (
        "💰 BALANCE\n\n"
        f"👤 Name: {user.name}\n"
        f"💵 Balance: {format_rupiah(user.balance)}\n"
        f"📊 Transactions: {user.total_transactions}x\n"
        f"📅 Joined: {format_date(user.join_date)}\n"
        f"⏰ {wib_datetime()}\n\n"
        f"Top up with {prefix}topup <amount>. Balance is not refundable."
    )


def topup_usage(prefix: str, min_topup: int) -> str:
    return (
        "💵 TOP UP\n\n"
        f"Usage: {prefix}topup <amount>\n"
        f"Example: {prefix}topup 10000\n\n"
        f"Minimum: {format_rupiah(min_topup)}"
    )


def topup_minimum(min_topup: int) -> str:
    return f"❌ Minimum top up is {format_rupiah(min_topup)}!"


def amount_invalid() -> str:
    return "❌ Amount must be a number!"


def topup_qr_caption(deposit_id: str, nominal: int, credit_amount: int, deadline_minutes: int) -> str:
    return (
        "💳 TOP UP PAYMENT\n\n"
        f"🆔 Deposit: {deposit_id}\n"
        f"💵 Amount: {format_rupiah(nominal)}\n"
        f"💰 Credited: {format_rupiah(credit_amount)}\n\n"
        "Scan the QR code to pay.\n"
        f"⏰ Expires in {deadline_minutes} minutes.\n"
        "Your balance is credited automatically."
    )


def topup_success(nominal: int, credited: int, balance: int) -> str:
    return (
        "✅ TOP UP SUCCESSFUL\n\n"
        f"💵 Paid: {format_rupiah(nominal)}\n"
        f"💰 Credited: {format_rupiah(credited)}\n"
        f"💳 Balance: {format_rupiah(balance)}"
    )


def buy_usage(prefix: str) -> str:
    return f"🛒 Usage: {prefix}buy <product_id>\nSee {prefix}catalog for product ids."


def product_not_found() -> str:
    return "❌ Product not found!"


def product_sold_out(product: ProductRecord) -> str:
    return f"❌ Sorry, {product.name} is sold out!"


def purchase_confirmation(product: ProductRecord, user: UserRecord, cancel_word: str) -> str:
    return (
        "🛒 CONFIRM PURCHASE\n\n"
        f"📚 {product.name}\n"
        f"💰 Price: {format_rupiah(product.price)}\n"
        f"📦 Stock: {product.stock}\n"
        f"💳 Your balance: {format_rupiah(user.balance)}\n\n"
        "Choose payment method:\n"
        f"{PAYMENT_CHOICES}\n\n"
        f"Reply 1 or 2, or '{cancel_word}' to cancel."
    )


def payment_choice_invalid(cancel_word: str) -> str:
    return f"❌ Invalid choice! Reply 1 (Balance) or 2 (QRIS), or '{cancel_word}' to cancel."


def insufficient_balance(balance: int, price: int, prefix: str) -> str:
    return (
        "❌ INSUFFICIENT BALANCE\n\n"
        f"💳 Balance: {format_rupiah(balance)}\n"
        f"💰 Price: {format_rupiah(price)}\n"
        f"📉 Short by: {format_rupiah(price - balance)}\n\n"
        f"Reply 2 to pay with QRIS, or top up with {prefix}topup."
    )


def purchase_qr_caption(product: ProductRecord, deposit_id: str, nominal: int, deadline_minutes: int) -> str:
    return (
        "💳 QRIS PAYMENT\n\n"
        f"📚 {product.name}\n"
        f"💵 Amount: {format_rupiah(nominal)}\n"
        f"🆔 Deposit: {deposit_id}\n\n"
        "Scan the QR code to pay.\n"
        f"⏰ Expires in {deadline_minutes} minutes.\n"
        "Your download link is sent automatically after payment."
    )


def purchase_success(order: OrderRecord, balance: Optional[int] = None) -> str:
    text = (
        "✅ PURCHASE SUCCESSFUL\n\n"
        f"🆔 Order: {order.id}\n"
        f"📚 {order.product_name}\n"
        f"💰 Price: {format_rupiah(order.price)}\n"
    )
    if balance is not None:
        text += f"💳 Remaining balance: {format_rupiah(balance)}\n"
    text += (
        f"\n🔗 Download link:\n{order.link}\n\n"
        "⚠️ The link is sent only once. Save it now!"
    )
    return text


def purchase_refunded(amount: int, balance: int) -> str:
    return (
        "⚠️ Your payment arrived but the purchase could not be completed.\n"
        f"{format_rupiah(amount)} has been added to your balance.\n"
        f"💳 Balance: {format_rupiah(balance)}"
    )


def payment_expired(deposit_id: str) -> str:
    return f"⏰ Payment {deposit_id} expired. Nothing was charged. Start again whenever you like."


def payment_failed(deposit_id: str) -> str:
    return f"❌ Payment {deposit_id} failed at the payment provider. Nothing was charged."


def cancelled() -> str:
    return "✅ Cancelled."


def history(orders: List[OrderRecord]) -> str:
    if not orders:
        return "📜 No purchase history yet."
    lines = [f"📜 ORDER HISTORY (last {len(orders)})\n"]
    for index, order in enumerate(orders, start=1):
        lines.append(
            f"{index}. {order.product_name}\n"
            f"   💰 {format_rupiah(order.price)} ({order.payment_method})\n"
            f"   📅 {format_date(order.created_at)}\n"
            f"   🔗 {order.link}\n"
        )
    return "\n".join(lines)


def help_text(prefix: str) -> str:
    return (
        "❓ HELP\n\n"
        "How to buy:\n"
        f"1. {prefix}catalog to see products\n"
        f"2. {prefix}buy <product_id>\n"
        "3. Reply 1 to pay with balance or 2 to pay with QRIS\n"
        "4. The download link is sent right after payment\n\n"
        "Top up:\n"
        f"{prefix}topup <amount>, scan the QR, balance is credited automatically."
    )


def terms() -> str:
    return (
        "📋 TERMS OF SERVICE\n\n"
        "1. Every sale is final.\n"
        "2. Balance cannot be withdrawn or refunded.\n"
        "3. Each download link is sent once; keep it safe.\n"
        "4. Payments not completed before the deadline expire.\n"
        "5. A paid product that sold out meanwhile is refunded to your balance."
    )


def unknown_command(prefix: str) -> str:
    return f"❓ Unknown command. Type {prefix}menu to see the commands."


def owner_only() -> str:
    return "❌ This command is for the owner only!"


def generic_failure() -> str:
    return "❌ Something went wrong while processing your request. Please try again."


# ------------------------------------------------------------------
# Owner
# ------------------------------------------------------------------

def add_product_prompt(cancel_word: str) -> str:
    return (
        "➕ ADD PRODUCT\n\n"
        "Send the product image with this caption:\n"
        "Name\nPrice (number)\nDescription\nLink1\nLink2 ...\n\n"
        "Example:\n"
        "Cooking Recipes Ebook\n15000\n100+ home recipes\n"
        "https://drive.google.com/file/d/xxx1\nhttps://drive.google.com/file/d/xxx2\n\n"
        f"Reply '{cancel_word}' to cancel."
    )


def add_product_needs_image() -> str:
    return "❌ Send the product image with the caption format!"


def product_added(product: ProductRecord) -> str:
    return (
        "✅ Product added!\n\n"
        f"📚 Name: {product.name}\n"
        f"💰 Price: {format_rupiah(product.price)}\n"
        f"📦 Stock: {product.stock}\n"
        f"🆔 ID: {product.id}"
    )


def catalog_empty_for(action: str) -> str:
    return f"📭 No products to {action}!"


def product_pick_list(title: str, products: List[ProductRecord], action: str, cancel_word: str) -> str:
    lines = [f"{title}\n", f"Pick the product to {action}:\n"]
    for index, product in enumerate(products, start=1):
        lines.append(
            f"{index}. {product.name}\n"
            f"   💰 {format_rupiah(product.price)}\n"
            f"   📦 Stock: {product.stock}\n"
            f"   🆔 {product.id}\n"
        )
    lines.append(f"Reply with the product ID, or '{cancel_word}' to cancel.\nExample: {products[0].id}")
    return "\n".join(lines)


def product_id_unknown() -> str:
    return "❌ Product not found! Send a valid ID."


def product_deleted(product: ProductRecord) -> str:
    return f"✅ Product deleted: {product.name} ({product.id})"


def edit_field_menu(product: ProductRecord) -> str:
    return (
        "✏️ EDIT PRODUCT\n\n"
        f"📚 {product.name}\n"
        f"💰 {format_rupiah(product.price)}\n\n"
        "What do you want to edit?\n"
        "1️⃣ Name\n2️⃣ Price\n3️⃣ Description\n4️⃣ Add links\n\n"
        "Reply with 1-4"
    )


def edit_field_invalid() -> str:
    return "❌ Invalid choice! Reply with 1-4"


EDIT_VALUE_PROMPTS: Dict[str, str] = {
    "name": "📝 Send the new product name:",
    "price": "💰 Send the new price (numbers only):",
    "description": "📋 Send the new description:",
    "links": "🔗 Send the new links (one per line):",
}


def product_updated(product: ProductRecord) -> str:
    return (
        "✅ Product updated!\n\n"
        f"📚 {product.name}\n"
        f"💰 {format_rupiah(product.price)}\n"
        f"📦 Stock: {product.stock}"
    )


def user_list(users: List[UserRecord], limit: int = 20) -> str:
    lines = [f"👥 USERS\nTotal: {len(users)}\n"]
    for index, user in enumerate(users[:limit], start=1):
        lines.append(
            f"{index}. {user.name}\n"
            f"   📱 {mask_id(user.id)}\n"
            f"   💰 {format_rupiah(user.balance)}\n"
            f"   📊 {user.total_transactions} transactions\n"
        )
    lines.append(f"Showing the first {min(limit, len(users))} users")
    return "\n".join(lines)


def broadcast_usage(prefix: str) -> str:
    return f"📢 Usage: {prefix}broadcast <message>"


def broadcast_started(count: int) -> str:
    return f"📢 Broadcasting to {count} users..."


def broadcast_message(owner_name: str, text: str) -> str:
    return f"📢 BROADCAST\n\n{text}\n\n- {owner_name}"


def broadcast_done(sent: int, failed: int) -> str:
    return f"✅ Broadcast finished!\n\n✔️ Sent: {sent}\n❌ Failed: {failed}"


def stats(
    user_count: int,
    active_users: int,
    product_count: int,
    total_stock: int,
    best_seller: Optional[ProductRecord],
    order_count: int,
    revenue: int,
    processed_deposits: int,
) -> str:
    average = revenue // order_count if order_count else 0
    best = f"{best_seller.name} ({best_seller.sold}x)" if best_seller and best_seller.sold else "-"
    return (
        "📊 STATISTICS\n\n"
        f"👥 Users: {user_count}\n"
        f"✅ Active users: {active_users}\n"
        f"📚 Products: {product_count}\n"
        f"📦 Total stock: {total_stock}\n"
        f"🔥 Best seller: {best}\n"
        f"🧾 Successful orders: {order_count}\n"
        f"💰 Revenue: {format_rupiah(revenue)}\n"
        f"📈 Average order: {format_rupiah(average)}\n"
        f"💳 Processed deposits: {processed_deposits}\n\n"
        f"⏰ {wib_datetime()}"
    )


def addbalance_usage(prefix: str) -> str:
    return f"💎 Usage: {prefix}addbalance <user_id> <amount>"


def user_not_found(user_id: str) -> str:
    return f"❌ User {user_id} not found!"


def balance_credited(user_id: str, amount: int, balance: int) -> str:
    return (
        "✅ Balance credited!\n\n"
        f"📱 User: {user_id}\n"
        f"💵 Amount: {format_rupiah(amount)}\n"
        f"💳 New balance: {format_rupiah(balance)}"
    )


def balance_received(amount: int, balance: int) -> str:
    return (
        f"💎 The owner added {format_rupiah(amount)} to your balance.\n"
        f"💳 Balance: {format_rupiah(balance)}"
    )
