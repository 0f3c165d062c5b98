# loanbot/services/telegram_client.py
import logging
from typing import Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.request import HTTPXRequest

from loanbot.core.config import settings
from loanbot.core.errors import ChatTransportError, MissingBotToken
from loanbot.schemas.telegram_schemas import OutboundMessage

logger = logging.getLogger(__name__)

ALLOWED_UPDATES = ["message", "callback_query"]


def build_keyboard(message: OutboundMessage) -> Optional[InlineKeyboardMarkup]:
    if not message.buttons:
        return None
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(button.label, callback_data=button.payload) for button in row]
            for row in message.buttons
        ]
    )


class TelegramClient:
    """
    The bot's outbound side: wraps a python-telegram-bot `Bot` and turns its
    errors into ChatTransportError.
    """

    def __init__(self, token: Optional[str] = None, api_url: Optional[str] = None, bot: Optional[Bot] = None):
        if bot is None:
            token = token or settings.TELEGRAM_BOT_TOKEN
            if not token:
                raise MissingBotToken("TELEGRAM_BOT_TOKEN is not set")
            base = (api_url or settings.TELEGRAM_API_URL).rstrip("/")
            bot = Bot(
                token=token,
                base_url=f"{base}/bot",
                request=HTTPXRequest(connect_timeout=5.0, read_timeout=20.0, write_timeout=20.0),
                # long polls hold the connection open for the poll timeout
                get_updates_request=HTTPXRequest(
                    connect_timeout=5.0,
                    read_timeout=settings.TELEGRAM_POLL_TIMEOUT_SECONDS + 10.0,
                ),
            )
        self.bot = bot

    async def initialize(self) -> None:
        try:
            await self.bot.initialize()
        except TelegramError as exc:
            raise ChatTransportError(f"initialize: {exc}") from exc

    async def aclose(self) -> None:
        await self.bot.shutdown()

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> None:
        try:
            await self.bot.set_webhook(url=url, secret_token=secret_token, allowed_updates=ALLOWED_UPDATES)
        except TelegramError as exc:
            raise ChatTransportError(f"setWebhook: {exc}") from exc
        logger.info("telegram webhook registered at %s", url)

    async def send_message(self, chat_id: int, message: OutboundMessage) -> None:
        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=message.text,
                parse_mode=ParseMode.MARKDOWN if message.markdown else None,
                reply_markup=build_keyboard(message),
            )
        except TelegramError as exc:
            logger.warning("telegram sendMessage to %s failed: %s", chat_id, exc)
            raise ChatTransportError(f"sendMessage: {exc}") from exc

    async def answer_callback_query(self, callback_id: str) -> None:
        try:
            await self.bot.answer_callback_query(callback_query_id=callback_id)
        except TelegramError as exc:
            logger.warning("telegram answerCallbackQuery %s failed: %s", callback_id, exc)
            raise ChatTransportError(f"answerCallbackQuery: {exc}") from exc
