# loanbot/schemas/telegram_schemas.py
from pydantic import BaseModel, Field
from typing import List


# Inbound updates are parsed by python-telegram-bot; these are the outbound
# render model and the status response.

class InlineButton(BaseModel):
    label: str
    payload: str


class OutboundMessage(BaseModel):
    text: str
    buttons: List[List[InlineButton]] = Field(default_factory=list)
    markdown: bool = True

    @property
    def button_count(self) -> int:
        return sum(len(row) for row in self.buttons)


class TelegramStatusOut(BaseModel):
    enabled: bool
    delivery_mode: str
    running: bool
    active_sessions: int
