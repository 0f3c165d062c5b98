# main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from loanbot.api import (
    routes_health,
    routes_loans,
    routes_streamline,
    routes_telegram,
)
from loanbot.bot.polling import TelegramPoller
from loanbot.bot.state_machine import ConversationStateMachine
from loanbot.core.config import settings
from loanbot.core.errors import MissingBotToken
from loanbot.core.session import SessionStore
from loanbot.services.loan_api_client import LoanApiClient
from loanbot.services.telegram_client import TelegramClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(loan_api=None, telegram_client=None):
    """
    `loan_api` / `telegram_client` default to real httpx-backed clients built
    at startup; tests pass fakes.
    """
    app = FastAPI(title=settings.APP_NAME)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes_health.router, prefix="/api")
    app.include_router(routes_loans.router, prefix="/api")
    app.include_router(routes_streamline.router, prefix="/api")
    app.include_router(routes_telegram.router, prefix="/api")

    app.state.loan_api = loan_api
    app.state.session_store = SessionStore(idle_timeout_seconds=settings.SESSION_IDLE_TIMEOUT_SECONDS)
    app.state.state_machine = None
    app.state.telegram_client = None
    app.state.telegram_poller = None

    @app.on_event("startup")
    async def on_startup():
        if app.state.loan_api is None:
            app.state.loan_api = LoanApiClient()

        if not settings.TELEGRAM_ENABLED:
            logger.info("Telegram bot disabled; serving the web API only")
            return

        client = telegram_client
        if client is None:
            try:
                client = TelegramClient()
            except MissingBotToken:
                logger.error("TELEGRAM_BOT_TOKEN is not set; refusing to start")
                raise
        app.state.telegram_client = client

        machine = ConversationStateMachine(
            api=app.state.loan_api,
            store=app.state.session_store,
            sender=client,
        )
        app.state.state_machine = machine

        if settings.TELEGRAM_DELIVERY_MODE == "webhook":
            await client.initialize()
            if settings.TELEGRAM_WEBHOOK_URL:
                await client.set_webhook(settings.TELEGRAM_WEBHOOK_URL, settings.TELEGRAM_WEBHOOK_SECRET)
            logger.info("Telegram bot receiving updates by webhook")
        else:
            poller = TelegramPoller(
                client,
                machine,
                store=app.state.session_store,
                poll_timeout=settings.TELEGRAM_POLL_TIMEOUT_SECONDS,
            )
            await poller.start()
            app.state.telegram_poller = poller

        logger.info("Application startup complete")

    @app.on_event("shutdown")
    async def on_shutdown():
        if app.state.telegram_poller is not None:
            await app.state.telegram_poller.stop()
        client = app.state.telegram_client
        if client is not None and telegram_client is None:
            await client.aclose()
        if app.state.loan_api is not None and loan_api is None:
            await app.state.loan_api.aclose()

    return app


app = create_app()
