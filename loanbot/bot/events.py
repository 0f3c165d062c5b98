# loanbot/bot/events.py
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Command:
    chat_id: int
    name: str
    args: str = ""


@dataclass(frozen=True)
class TextMessage:
    chat_id: int
    text: str


@dataclass(frozen=True)
class ButtonClick:
    chat_id: int
    callback_id: str
    payload: str


ChatEvent = Union[Command, TextMessage, ButtonClick]
