# loanbot/bot/rendering.py
"""
Outbound chat messages. Everything user-visible the bot says lives here.
"""
from datetime import datetime
from typing import List, Optional

from loanbot.bot import callbacks
from loanbot.core.config import settings
from loanbot.models.domain_models import Eligibility, Loan, Provider, Transaction
from loanbot.schemas.telegram_schemas import InlineButton, OutboundMessage

MARKDOWN_SPECIALS = ("\\", "_", "*", "`", "[")


def escape(text: str) -> str:
    """Escape text for Telegram's legacy Markdown parse mode."""
    for ch in MARKDOWN_SPECIALS:
        text = text.replace(ch, "\\" + ch)
    return text


def money(amount: float, currency: Optional[str] = None) -> str:
    return f"{amount:,.2f} {currency or settings.CURRENCY}"


def short_date(value: Optional[datetime]) -> str:
    return value.strftime("%b %d, %Y") if value else "n/a"


def back_button() -> List[InlineButton]:
    return [InlineButton(label="⬅️ Back to Main Menu", payload=callbacks.main_menu())]


# -----------------------------
# Authentication
# -----------------------------

def phone_prompt() -> OutboundMessage:
    return OutboundMessage(text=(
        "Welcome to LoanBot! 🏦\n\n"
        "To get started, please send me your 9-digit phone number registered with the bank."
    ))


def invalid_phone() -> OutboundMessage:
    return OutboundMessage(
        text="That doesn't look like a phone number. Please send digits only, for example: `912345678`"
    )


def not_registered(phone_number: str) -> OutboundMessage:
    return OutboundMessage(
        text=f"Sorry, the phone number *{escape(phone_number)}* is not registered. "
             "Please check the number and try again."
    )


def start_hint() -> OutboundMessage:
    return OutboundMessage(text="Please send /start to begin.")


def session_expired() -> OutboundMessage:
    return OutboundMessage(text="Your session has expired. Please send /start to log in again.")


def main_menu(borrower_id: str, name: Optional[str] = None) -> OutboundMessage:
    greeting = f"Hello, *{escape(name)}*!" if name else "Hello!"
    return OutboundMessage(
        text=f"{greeting} What would you like to do today?",
        buttons=[
            [InlineButton(label="Check Loan Eligibility", payload=callbacks.eligibility(borrower_id))],
            [InlineButton(label="View My Active Loans", payload=callbacks.active_loans(borrower_id))],
            [InlineButton(label="My Loan History", payload=callbacks.history(borrower_id))],
        ],
    )


# -----------------------------
# Eligibility / apply
# -----------------------------

def provider_list(borrower_id: str, providers: List[Provider]) -> OutboundMessage:
    rows = [
        [InlineButton(label=p.name, payload=callbacks.provider(borrower_id, p.id))]
        for p in providers
    ]
    text = "Please select a loan provider to check your eligibility:"
    if not providers:
        text = "No loan providers are available right now."
    return OutboundMessage(text=text, buttons=rows + [back_button()], markdown=False)


def eligibility_result(borrower_id: str, eligibility: Eligibility) -> OutboundMessage:
    text = "*Your Eligibility Results:*\n\n"
    text += f"Credit Score: *{eligibility.credit_score:g}*\n\n"
    rows = []

    if eligibility.products:
        for p in eligibility.products:
            text += f"*{escape(p.name)}*\nLimit: *{money(p.limit)}*\nInterest: {p.interest_rate:g}%\n\n"
            if p.limit > 0:
                rows.append([InlineButton(label=f"Apply for {p.name}", payload=callbacks.apply(borrower_id, p.id))])
    else:
        text += "You are not eligible for any products at this time."
        if eligibility.reason:
            text += f"\nReason: {escape(eligibility.reason)}"

    return OutboundMessage(text=text.rstrip(), buttons=rows + [back_button()])


def loan_amount_prompt() -> OutboundMessage:
    return OutboundMessage(text=f"How much would you like to borrow? Please enter the amount in {settings.CURRENCY}.")


def invalid_amount() -> OutboundMessage:
    return OutboundMessage(text="Please enter a valid amount greater than zero, for example: `1,000`")


def loan_applied(amount: float, loan_id: str) -> OutboundMessage:
    return OutboundMessage(
        text=f"✅ Your application for *{money(amount)}* has been submitted.\nReference: `{loan_id}`",
        buttons=[back_button()],
    )


def loan_failed(reason: str) -> OutboundMessage:
    return OutboundMessage(
        text=f"❌ Your loan application could not be completed: {escape(reason)}",
        buttons=[back_button()],
    )


# -----------------------------
# Loans / repay
# -----------------------------

def active_loans_header(count: int) -> OutboundMessage:
    return OutboundMessage(text=f"*Your Active Loans ({count}):*")


def active_loan(borrower_id: str, loan: Loan) -> OutboundMessage:
    text = (
        f"*{escape(loan.product_name or 'Loan')}*\n"
        f"Total Due: *{money(loan.total_repayable_amount)}*\n"
        f"Amount Repaid: {money(loan.amount_repaid)}\n"
        f"Outstanding: {money(loan.outstanding_amount)}\n"
        f"Due Date: {short_date(loan.due_date)}"
    )
    return OutboundMessage(
        text=text,
        buttons=[[InlineButton(label="Repay", payload=callbacks.repay(borrower_id, loan.id))]],
    )


def no_active_loans() -> OutboundMessage:
    return OutboundMessage(text="You have no active loans at the moment. 🎉", buttons=[back_button()])


def loans_footer() -> OutboundMessage:
    return OutboundMessage(text="Tap *Repay* on a loan, or go back to the menu.", buttons=[back_button()])


def repayment_amount_prompt() -> OutboundMessage:
    return OutboundMessage(text=f"How much would you like to repay? Please enter the amount in {settings.CURRENCY}.")


def repaid(amount: float, loan: Optional[Loan]) -> OutboundMessage:
    text = f"✅ Repayment of *{money(amount)}* received."
    if loan is not None:
        text += f"\nOutstanding balance: *{money(loan.outstanding_amount)}*"
    return OutboundMessage(text=text, buttons=[back_button()])


def repayment_failed(reason: str) -> OutboundMessage:
    return OutboundMessage(
        text=f"❌ Your repayment could not be completed: {escape(reason)}",
        buttons=[back_button()],
    )


# -----------------------------
# History
# -----------------------------

def transaction_history(transactions: List[Transaction]) -> OutboundMessage:
    if not transactions:
        return OutboundMessage(text="You have no transaction history.", buttons=[back_button()])
    lines = ["*Your Transaction History:*", ""]
    for txn in transactions:
        lines.append(
            f"{short_date(txn.date)} - {escape(txn.description)} - *{money(txn.amount)}* ({txn.type.value})"
        )
    return OutboundMessage(text="\n".join(lines), buttons=[back_button()])


# -----------------------------
# Failures
# -----------------------------

def backend_unavailable() -> OutboundMessage:
    return OutboundMessage(text="Sorry, the service is temporarily unavailable. Please try again later.")


def backend_unavailable_with_menu() -> OutboundMessage:
    return OutboundMessage(
        text="Sorry, the service is temporarily unavailable. Please try again later.",
        buttons=[back_button()],
    )


def unexpected_error(with_menu: bool = False) -> OutboundMessage:
    return OutboundMessage(
        text="Sorry, something went wrong. Please try again.",
        buttons=[back_button()] if with_menu else [],
    )


def delivery_failed(with_menu: bool = False) -> OutboundMessage:
    # plain text so nothing in it can be rejected again
    return OutboundMessage(
        text="Sorry, that reply could not be shown. Please go back to the main menu and try again.",
        buttons=[back_button()] if with_menu else [],
        markdown=False,
    )
