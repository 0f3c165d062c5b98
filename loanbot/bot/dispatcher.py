# loanbot/bot/dispatcher.py
import logging
from typing import Optional

from telegram import Update

from loanbot.bot.events import ButtonClick, ChatEvent, Command, TextMessage

logger = logging.getLogger(__name__)


def parse_command(text: str) -> Optional[Command]:
    """'/check@LoanBot 0912345678' -> Command(name='check', args='0912345678')"""
    if not text.startswith("/"):
        return None
    head, _, args = text[1:].partition(" ")
    name = head.split("@", 1)[0]
    if not name:
        return None
    return Command(chat_id=0, name=name.lower(), args=args.strip())


def update_to_event(update: Update) -> Optional[ChatEvent]:
    if update.callback_query is not None:
        query = update.callback_query
        if query.message is not None:
            chat_id = query.message.chat.id
        elif query.from_user is not None:
            # private chats share the user's id
            chat_id = query.from_user.id
        else:
            return None
        return ButtonClick(chat_id=chat_id, callback_id=query.id, payload=query.data or "")

    message = update.message
    if message is None or message.text is None:
        return None

    command = parse_command(message.text.strip())
    if command is not None:
        return Command(chat_id=message.chat.id, name=command.name, args=command.args)
    return TextMessage(chat_id=message.chat.id, text=message.text)


async def dispatch_update(machine, update: Update) -> None:
    """Feed one raw Telegram update into the state machine."""
    event = update_to_event(update)
    if event is None:
        logger.debug("update %s carries nothing the bot handles", update.update_id)
        return
    await machine.handle(event)
