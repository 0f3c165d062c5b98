# loanbot/bot/callbacks.py
"""
Inline-button payloads.

A payload is an action name followed by a fixed number of reference ids:

    provider:<borrower_id>:<provider_id>

Every id is percent-encoded before joining, so the separator can never occur
inside a field and decoding is a plain positional split.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import quote, unquote

from loanbot.core.errors import InvalidCallbackPayload

logger = logging.getLogger(__name__)

SEPARATOR = ":"
# Telegram rejects callback_data longer than this
MAX_PAYLOAD_BYTES = 64


class CallbackAction(str, Enum):
    ELIGIBILITY = "eligibility"
    PROVIDER = "provider"
    APPLY = "apply"
    REPAY = "repay"
    ACTIVE_LOANS = "active_loans"
    HISTORY = "history"
    MAIN_MENU = "main_menu"


ARITY = {
    CallbackAction.ELIGIBILITY: 1,
    CallbackAction.PROVIDER: 2,
    CallbackAction.APPLY: 2,
    CallbackAction.REPAY: 2,
    CallbackAction.ACTIVE_LOANS: 1,
    CallbackAction.HISTORY: 1,
    CallbackAction.MAIN_MENU: 0,
}


@dataclass(frozen=True)
class CallbackPayload:
    action: CallbackAction
    borrower_id: Optional[str] = None
    # provider, product or loan id depending on the action
    ref_id: Optional[str] = None

    def __post_init__(self):
        fields = [f for f in (self.borrower_id, self.ref_id) if f is not None]
        if len(fields) != ARITY[self.action] or (self.ref_id is not None and self.borrower_id is None):
            raise InvalidCallbackPayload(
                f"{self.action.value} takes {ARITY[self.action]} ids, got {len(fields)}"
            )

    def encode(self) -> str:
        parts = [self.action.value]
        parts += [quote(f, safe="") for f in (self.borrower_id, self.ref_id) if f is not None]
        encoded = SEPARATOR.join(parts)
        if len(encoded.encode("utf-8")) > MAX_PAYLOAD_BYTES:
            logger.warning("callback payload exceeds %d bytes: %s", MAX_PAYLOAD_BYTES, encoded)
        return encoded

    @classmethod
    def decode(cls, raw: str) -> "CallbackPayload":
        if not raw:
            raise InvalidCallbackPayload("empty payload")
        name, *fields = raw.split(SEPARATOR)
        try:
            action = CallbackAction(name)
        except ValueError:
            raise InvalidCallbackPayload(f"unknown action {name!r}") from None
        if len(fields) != ARITY[action] or any(not f for f in fields):
            raise InvalidCallbackPayload(f"{name} takes {ARITY[action]} ids, got {raw!r}")
        ids = [unquote(f) for f in fields] + [None, None]
        return cls(action=action, borrower_id=ids[0], ref_id=ids[1])


def eligibility(borrower_id: str) -> str:
    return CallbackPayload(CallbackAction.ELIGIBILITY, borrower_id).encode()


def provider(borrower_id: str, provider_id: str) -> str:
    return CallbackPayload(CallbackAction.PROVIDER, borrower_id, provider_id).encode()


def apply(borrower_id: str, product_id: str) -> str:
    return CallbackPayload(CallbackAction.APPLY, borrower_id, product_id).encode()


def repay(borrower_id: str, loan_id: str) -> str:
    return CallbackPayload(CallbackAction.REPAY, borrower_id, loan_id).encode()


def active_loans(borrower_id: str) -> str:
    return CallbackPayload(CallbackAction.ACTIVE_LOANS, borrower_id).encode()


def history(borrower_id: str) -> str:
    return CallbackPayload(CallbackAction.HISTORY, borrower_id).encode()


def main_menu() -> str:
    return CallbackPayload(CallbackAction.MAIN_MENU).encode()
