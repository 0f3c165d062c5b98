# loanbot/bot/state_machine.py
import logging
from typing import Optional

from loanbot.bot import rendering
from loanbot.bot.callbacks import CallbackAction, CallbackPayload
from loanbot.bot.events import ButtonClick, ChatEvent, Command, TextMessage
from loanbot.bot.parsing import normalize_phone, parse_amount
from loanbot.core.config import settings
from loanbot.core.errors import (
    BackendUnavailable, BorrowerNotFound, ChatTransportError, InputValidationError,
    InvalidCallbackPayload, LoanApiError, ProductNotFound, SessionExpired,
)
from loanbot.core.session import SessionStore
from loanbot.models.domain_models import ChatSession, SessionState
from loanbot.schemas.telegram_schemas import OutboundMessage

logger = logging.getLogger(__name__)

HANDLED = True
IGNORED = False


class ConversationStateMachine:
    """
    Drives one chat at a time: reads the chat's session, reacts to a single
    inbound event (calling the loan backend and sending replies), then writes
    the session back.

    `api` is a LoanApiClient and `sender` anything with
    `send_message(chat_id, OutboundMessage)` and
    `answer_callback_query(callback_id)` (the TelegramClient in production).
    """

    def __init__(self, api, store: SessionStore, sender, history_limit: Optional[int] = None):
        self.api = api
        self.store = store
        self.sender = sender
        self.history_limit = history_limit or settings.HISTORY_LIMIT

    async def handle(self, event: ChatEvent) -> None:
        # per-chat lock: a chat's events never overlap
        async with self.store.locked(event.chat_id):
            await self._handle_locked(event)

    async def _handle_locked(self, event: ChatEvent) -> None:
        chat_id = event.chat_id
        original = self.store.get(chat_id)
        session = original.model_copy()
        outcome = HANDLED
        try:
            if isinstance(event, ButtonClick):
                await self._acknowledge(event)
                outcome = await self._on_button(session, event)
            elif isinstance(event, Command):
                outcome = await self._on_command(session, event)
            elif isinstance(event, TextMessage):
                outcome = await self._on_text(session, event)
            else:
                logger.warning("chat %s: unsupported event %r", chat_id, event)
                outcome = IGNORED
        except ChatTransportError:
            # e.g. Telegram refusing a keyboard; retry as plain text
            logger.exception("chat %s: failed to deliver reply", chat_id)
            await self._send_quietly(chat_id, rendering.delivery_failed(session.is_authenticated))
        except Exception:
            logger.exception("chat %s: unexpected error handling %r", chat_id, event)
            await self._send_quietly(chat_id, rendering.unexpected_error(session.is_authenticated))
        finally:
            # sessions only ever move through valid states, so whatever
            # we reached before a failure is safe to keep
            if session != original or (outcome is HANDLED and chat_id in self.store):
                self.store.set(chat_id, session)

    # -----------------------------
    # Commands
    # -----------------------------

    async def _on_command(self, session: ChatSession, event: Command) -> bool:
        name = event.name.lower()

        if name == "start":
            session.start_authentication()
            await self._send(session, rendering.phone_prompt())
            return HANDLED

        if name == "check":
            session.start_authentication()
            if not event.args.strip():
                await self._send(session, OutboundMessage(
                    text="Please provide your phone number. Example: `/check 912345678`"
                ))
                return HANDLED
            await self._authenticate(session, event.args.strip())
            return HANDLED

        if name == "menu":
            if not session.is_authenticated:
                await self._send(session, rendering.session_expired())
                return HANDLED
            session.return_to_menu()
            await self._send(session, rendering.main_menu(session.borrower_id, session.borrower_name))
            return HANDLED

        logger.info("chat %s: ignoring unknown command /%s", session.chat_id, event.name)
        return IGNORED

    # -----------------------------
    # Free text
    # -----------------------------

    async def _on_text(self, session: ChatSession, event: TextMessage) -> bool:
        if session.state == SessionState.AWAITING_PHONE_NUMBER:
            await self._authenticate(session, event.text)
        elif session.state == SessionState.AWAITING_LOAN_AMOUNT:
            await self._submit_loan(session, event.text)
        elif session.state == SessionState.AWAITING_REPAYMENT_AMOUNT:
            await self._submit_repayment(session, event.text)
        elif session.state == SessionState.AUTHENTICATED:
            await self._send(session, rendering.main_menu(session.borrower_id, session.borrower_name))
        else:
            await self._send(session, rendering.start_hint())
        return HANDLED

    async def _authenticate(self, session: ChatSession, text: str) -> None:
        try:
            phone = normalize_phone(text)
        except InputValidationError:
            await self._send(session, rendering.invalid_phone())
            return

        try:
            borrower = await self.api.find_borrower_by_phone(phone)
        except BorrowerNotFound:
            await self._send(session, rendering.not_registered(phone))
            return
        except LoanApiError as exc:
            logger.warning("chat %s: borrower lookup failed: %s", session.chat_id, exc)
            await self._send(session, rendering.backend_unavailable())
            return

        session.authenticate(borrower.id, borrower.name or None)
        logger.info("chat %s: authenticated borrower %s", session.chat_id, borrower.id)
        await self._send(session, rendering.main_menu(borrower.id, session.borrower_name))

    async def _submit_loan(self, session: ChatSession, text: str) -> None:
        try:
            amount = parse_amount(text)
        except InputValidationError:
            await self._send(session, rendering.invalid_amount())
            return

        borrower_id, product_id = session.borrower_id, session.pending_product_id
        # leave the pending state before the call so no failure can strand it
        session.return_to_menu()
        try:
            loan_id = await self.api.apply_for_loan(borrower_id, product_id, amount)
        except ProductNotFound:
            reply = rendering.loan_failed("this product is no longer available.")
        except BackendUnavailable as exc:
            logger.warning("chat %s: loan application failed: %s", session.chat_id, exc)
            reply = rendering.loan_failed(exc.detail or "the service is temporarily unavailable. Please try again later.")
        except LoanApiError as exc:
            logger.warning("chat %s: loan application failed: %s", session.chat_id, exc)
            reply = rendering.loan_failed(str(exc))
        else:
            logger.info("chat %s: loan %s submitted for product %s", session.chat_id, loan_id, product_id)
            reply = rendering.loan_applied(amount, loan_id)
        await self._send(session, reply)

    async def _submit_repayment(self, session: ChatSession, text: str) -> None:
        try:
            amount = parse_amount(text)
        except InputValidationError:
            await self._send(session, rendering.invalid_amount())
            return

        loan_id = session.pending_loan_id
        session.return_to_menu()
        try:
            loan = await self.api.repay_loan(loan_id, amount)
        except BackendUnavailable as exc:
            logger.warning("chat %s: repayment of %s failed: %s", session.chat_id, loan_id, exc)
            reply = rendering.repayment_failed(exc.detail or "the service is temporarily unavailable. Please try again later.")
        except LoanApiError as exc:
            logger.warning("chat %s: repayment of %s failed: %s", session.chat_id, loan_id, exc)
            reply = rendering.repayment_failed(str(exc))
        else:
            logger.info("chat %s: repaid %s on loan %s", session.chat_id, amount, loan_id)
            reply = rendering.repaid(amount, loan)
        await self._send(session, reply)

    # -----------------------------
    # Buttons
    # -----------------------------

    async def _on_button(self, session: ChatSession, event: ButtonClick) -> bool:
        try:
            payload = CallbackPayload.decode(event.payload)
        except InvalidCallbackPayload as exc:
            logger.warning("chat %s: ignoring button payload %r: %s", session.chat_id, event.payload, exc)
            return IGNORED

        try:
            self._check_owner(session, payload)
        except SessionExpired as exc:
            logger.info("chat %s: %s", session.chat_id, exc)
            await self._send(session, rendering.session_expired())
            return HANDLED

        if payload.action == CallbackAction.MAIN_MENU:
            session.return_to_menu()
            await self._send(session, rendering.main_menu(session.borrower_id, session.borrower_name))
            return HANDLED

        # clicking any menu button abandons a pending amount prompt
        session.return_to_menu()

        if payload.action == CallbackAction.ELIGIBILITY:
            await self._show_providers(session)
        elif payload.action == CallbackAction.PROVIDER:
            await self._show_eligibility(session, payload.ref_id)
        elif payload.action == CallbackAction.APPLY:
            session.await_loan_amount(payload.ref_id)
            await self._send(session, rendering.loan_amount_prompt())
        elif payload.action == CallbackAction.REPAY:
            session.await_repayment_amount(payload.ref_id)
            await self._send(session, rendering.repayment_amount_prompt())
        elif payload.action == CallbackAction.ACTIVE_LOANS:
            await self._show_active_loans(session)
        elif payload.action == CallbackAction.HISTORY:
            await self._show_history(session)
        return HANDLED

    @staticmethod
    def _check_owner(session: ChatSession, payload: CallbackPayload) -> None:
        if not session.is_authenticated:
            raise SessionExpired(f"{payload.action.value} clicked without a session")
        # main_menu carries no borrower id
        if payload.borrower_id is not None and payload.borrower_id != session.borrower_id:
            # button from an older login
            raise SessionExpired(f"stale button for borrower {payload.borrower_id}")

    async def _show_providers(self, session: ChatSession) -> None:
        try:
            providers = await self.api.list_providers()
        except LoanApiError as exc:
            logger.warning("chat %s: listing providers failed: %s", session.chat_id, exc)
            await self._send(session, rendering.backend_unavailable_with_menu())
            return
        await self._send(session, rendering.provider_list(session.borrower_id, providers))

    async def _show_eligibility(self, session: ChatSession, provider_id: str) -> None:
        try:
            eligibility = await self.api.get_eligibility(session.borrower_id, provider_id)
        except LoanApiError as exc:
            logger.warning("chat %s: eligibility for provider %s failed: %s", session.chat_id, provider_id, exc)
            await self._send(session, rendering.backend_unavailable_with_menu())
            return
        await self._send(session, rendering.eligibility_result(session.borrower_id, eligibility))

    async def _show_active_loans(self, session: ChatSession) -> None:
        try:
            loans = await self.api.list_active_loans(session.borrower_id)
        except LoanApiError as exc:
            logger.warning("chat %s: listing loans failed: %s", session.chat_id, exc)
            await self._send(session, rendering.backend_unavailable_with_menu())
            return

        unpaid = [loan for loan in loans if loan.is_unpaid]
        if not unpaid:
            await self._send(session, rendering.no_active_loans())
            return

        await self._send(session, rendering.active_loans_header(len(unpaid)))
        for loan in unpaid:
            await self._send(session, rendering.active_loan(session.borrower_id, loan))
        await self._send(session, rendering.loans_footer())

    async def _show_history(self, session: ChatSession) -> None:
        try:
            transactions = await self.api.list_transactions(session.borrower_id)
        except LoanApiError as exc:
            logger.warning("chat %s: listing transactions failed: %s", session.chat_id, exc)
            await self._send(session, rendering.backend_unavailable_with_menu())
            return

        recent = sorted(transactions, key=lambda t: t.date, reverse=True)[: self.history_limit]
        await self._send(session, rendering.transaction_history(recent))

    # -----------------------------
    # Outbound
    # -----------------------------

    async def _send(self, session: ChatSession, message: OutboundMessage) -> None:
        await self.sender.send_message(session.chat_id, message)

    async def _send_quietly(self, chat_id: int, message: OutboundMessage) -> None:
        try:
            await self.sender.send_message(chat_id, message)
        except ChatTransportError:
            logger.warning("chat %s: could not deliver error notice", chat_id)

    async def _acknowledge(self, event: ButtonClick) -> None:
        try:
            await self.sender.answer_callback_query(event.callback_id)
        except ChatTransportError:
            logger.warning("chat %s: could not acknowledge callback %s", event.chat_id, event.callback_id)
