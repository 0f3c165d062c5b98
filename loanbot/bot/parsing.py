# loanbot/bot/parsing.py
import math
import re

from loanbot.core.errors import InputValidationError

PHONE_PUNCTUATION = re.compile(r"[\s\-\.\(\)]")
# thousands separators users tend to type
GROUPING = re.compile(r"[,_'\s]")

MIN_PHONE_DIGITS = 9
MAX_PHONE_DIGITS = 15
PHONE_DIGITS = re.compile(rf"[0-9]{{{MIN_PHONE_DIGITS},{MAX_PHONE_DIGITS}}}")


def normalize_phone(text: str) -> str:
    """
    Accept "+251 91-234-5678" style input and return the last 9 digits, which
    is what the backend keys borrowers by.
    """
    digits = PHONE_PUNCTUATION.sub("", text or "")
    if digits.startswith("+"):
        digits = digits[1:]
    if not PHONE_DIGITS.fullmatch(digits):
        raise InputValidationError(f"not a phone number: {text!r}")
    return digits[-MIN_PHONE_DIGITS:]


def parse_amount(text: str) -> float:
    cleaned = GROUPING.sub("", text or "")
    try:
        amount = float(cleaned)
    except ValueError:
        raise InputValidationError(f"not a number: {text!r}") from None
    if not math.isfinite(amount) or amount <= 0:
        raise InputValidationError(f"amount must be a positive number: {text!r}")
    return amount
