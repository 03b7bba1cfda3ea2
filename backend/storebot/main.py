"""
Ebook Store Bot backend.

ARCHITECTURE:
- Telegram Bot: customer and owner chat (commands + wizards)
- Payment poller: QRIS deposits observed until paid, expired or failed
- Settlement: balance/stock/token/order mutation with compensation
- SQL database: snapshot persistence for users, products, orders and deposits
- FastAPI: process lifecycle, health and a read-only catalog view

Single process by design: the settlement guard is in-memory.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storebot.api.routes import products
from storebot.core.audit import setup_logging
from storebot.core.config import settings
from storebot.db.init_db import init_db
from storebot.db.session import SessionLocal
from storebot.runtime import build_runtime
from storebot.telegram.bot import build_application, register_handlers, start_bot, stop_bot
from storebot.telegram.messenger import TelegramMessenger

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    1. Configure logging and initialize database tables
    2. Wire the store components
    3. Start the state sweeper and Telegram polling (if token provided)

    Shutdown:
    1. Cancel pending payment polls and stop the sweeper
    2. Stop the Telegram bot
    3. Close the payment gateway client
    """
    setup_logging(logging.DEBUG if settings.DEBUG else logging.INFO)

    logger.info("[*] Initializing database...")
    init_db()
    logger.info("[OK] Database initialized")

    bot_app = build_application(settings.TELEGRAM_BOT_TOKEN) if settings.TELEGRAM_BOT_TOKEN else None
    messenger = TelegramMessenger(bot_app.bot if bot_app else None)
    runtime = build_runtime(settings, SessionLocal, messenger)
    app.state.runtime = runtime
    app.state.bot_running = False

    runtime.session.start()
    if bot_app is not None:
        logger.info("[*] Starting Telegram bot...")
        register_handlers(bot_app, runtime.dispatcher, messenger)
        app.state.bot_running = await start_bot(bot_app, on_reset=runtime.session.reset_transport)
        if app.state.bot_running:
            logger.info("[OK] Telegram bot started")
    else:
        logger.warning("[WARN] Telegram bot disabled (no token)")

    yield

    await runtime.session.shutdown()
    if app.state.bot_running:
        await stop_bot(bot_app)
    await runtime.gateway.close()
    logger.info("[OK] Shutdown complete")


app = FastAPI(
    title="Ebook Store Bot API",
    description="Chat commerce backend: wizards, QRIS reconciliation, settlement.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(products.router, prefix="/products", tags=["products"])


@app.get("/health")
def health():
    runtime = getattr(app.state, "runtime", None)
    body = {"status": "ok", "bot": bool(getattr(app.state, "bot_running", False))}
    if runtime is not None:
        body.update(runtime.session.snapshot())
    return body
