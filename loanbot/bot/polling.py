# loanbot/bot/polling.py
import logging
from typing import Optional

from telegram import Update
from telegram.ext import Application, ContextTypes, TypeHandler

from loanbot.bot.dispatcher import dispatch_update
from loanbot.services.telegram_client import ALLOWED_UPDATES

logger = logging.getLogger(__name__)


class TelegramPoller:
    """
    Long polling through a python-telegram-bot Application. Updates run
    concurrently across chats; the state machine's per-chat lock keeps one
    chat's updates in arrival order.
    """

    def __init__(self, client, machine, store=None, poll_timeout: int = 30):
        self.machine = machine
        self.store = store
        self.poll_timeout = poll_timeout
        self.application = (
            Application.builder()
            .bot(client.bot)
            .concurrent_updates(True)
            .build()
        )
        self.application.add_handler(TypeHandler(Update, self.handle_update))

    @property
    def running(self) -> bool:
        updater = self.application.updater
        return updater is not None and updater.running

    async def start(self) -> None:
        if self.running:
            return
        await self.application.initialize()
        await self.application.start()
        # start_polling removes any registered webhook first
        await self.application.updater.start_polling(
            timeout=self.poll_timeout,
            allowed_updates=ALLOWED_UPDATES,
            drop_pending_updates=False,
        )
        logger.info("telegram long polling started")

    async def stop(self) -> None:
        if self.running:
            await self.application.updater.stop()
        if self.application.running:
            await self.application.stop()
        await self.application.shutdown()
        logger.info("telegram long polling stopped")

    async def handle_update(self, update: Update, context: Optional[ContextTypes.DEFAULT_TYPE] = None) -> None:
        try:
            await dispatch_update(self.machine, update)
        except Exception:
            logger.exception("update %s: handler crashed", update.update_id)
        if self.store is not None:
            self.store.evict_idle()
