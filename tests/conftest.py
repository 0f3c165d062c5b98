import pytest

from loanbot.bot.state_machine import ConversationStateMachine
from loanbot.core.errors import BorrowerNotFound
from loanbot.core.session import SessionStore
from loanbot.models.domain_models import Borrower, Eligibility, Provider


class FakeSender:
    def __init__(self):
        self.messages = []
        self.acks = []

    async def send_message(self, chat_id, message):
        self.messages.append((chat_id, message))

    async def answer_callback_query(self, callback_id):
        self.acks.append(callback_id)

    def texts(self, chat_id=None):
        return [m.text for c, m in self.messages if chat_id is None or c == chat_id]

    def last(self):
        return self.messages[-1][1]


class FakeLoanApi:
    """
    Stands in for LoanApiClient. Each attribute below is what the matching
    method returns; set it to an exception instance to make the call raise.
    """

    def __init__(self):
        self.calls = []
        self.borrowers = {"912345678": Borrower(id="b1", name="Alex", phone_number="912345678")}
        self.providers = [Provider(id="pr1", name="Nib Bank"), Provider(id="pr2", name="Telebirr")]
        self.eligibility = Eligibility(credit_score=650, products=[])
        self.loans = []
        self.transactions = []
        self.apply_result = "loan-42"
        self.repay_result = None
        # product catalogue as cached by list_providers()
        self.products = {}

    def _answer(self, value):
        if isinstance(value, Exception):
            raise value
        return value

    async def find_borrower_by_phone(self, phone):
        self.calls.append(("find_borrower_by_phone", phone))
        if isinstance(self.borrowers, Exception):
            raise self.borrowers
        borrower = self.borrowers.get(phone)
        if borrower is None:
            raise BorrowerNotFound(phone)
        return borrower

    async def list_providers(self):
        self.calls.append(("list_providers",))
        return self._answer(self.providers)

    def get_product(self, product_id):
        return self.products.get(product_id)

    async def get_eligibility(self, borrower_id, provider_id):
        self.calls.append(("get_eligibility", borrower_id, provider_id))
        return self._answer(self.eligibility)

    async def list_active_loans(self, borrower_id):
        self.calls.append(("list_active_loans", borrower_id))
        return self._answer(self.loans)

    async def list_transactions(self, borrower_id):
        self.calls.append(("list_transactions", borrower_id))
        return self._answer(self.transactions)

    async def apply_for_loan(self, borrower_id, product_id, amount):
        self.calls.append(("apply_for_loan", borrower_id, product_id, amount))
        return self._answer(self.apply_result)

    async def repay_loan(self, loan_id, amount):
        self.calls.append(("repay_loan", loan_id, amount))
        return self._answer(self.repay_result)

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def loan_api():
    return FakeLoanApi()


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def machine(loan_api, store, sender):
    return ConversationStateMachine(api=loan_api, store=store, sender=sender, history_limit=10)
