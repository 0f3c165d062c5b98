# loanbot/models/domain_models.py
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Any
from datetime import datetime, timezone
from enum import Enum


# --- read-only projections of loan backend responses ---

class BackendModel(BaseModel):
    """
    Accepts the backend's camelCase keys as well as our snake_case names and
    ignores fields we do not use.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


class Borrower(BackendModel):
    id: str
    name: str
    phone_number: str
    monthly_income: Optional[float] = None
    employment_status: Optional[str] = None


class Fee(BackendModel):
    type: Optional[str] = None
    value: float = 0
    calculation_base: Optional[str] = None


class ProductDetails(BackendModel):
    id: str
    provider_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    min_loan: Optional[float] = None
    max_loan: Optional[float] = None
    service_fee: Optional[Fee] = None
    daily_fee: Optional[Fee] = None


class Provider(BackendModel):
    id: str
    name: str
    icon: Optional[str] = None
    color_hex: Optional[str] = None
    products: List[ProductDetails] = Field(default_factory=list)

    @field_validator("products", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return v or []


class EligibilityProduct(BackendModel):
    id: str
    name: str
    limit: float
    # daily fee is shown as the interest rate
    interest_rate: float = 0
    service_fee: float = 0


class Eligibility(BackendModel):
    credit_score: float
    products: List[EligibilityProduct] = Field(default_factory=list)
    reason: Optional[str] = None


class RepaymentStatus(str, Enum):
    PAID = "Paid"
    UNPAID = "Unpaid"


class Loan(BackendModel):
    id: str
    product_name: str = ""
    product_id: Optional[str] = None
    loan_amount: float = 0
    total_repayable_amount: Optional[float] = None
    amount_repaid: float = Field(
        default=0,
        validation_alias=AliasChoices("amountRepaid", "repaidAmount", "amount_repaid"),
    )
    due_date: Optional[datetime] = None
    disbursed_date: Optional[datetime] = None
    # backend also sends states we do not model (e.g. "Overdue")
    repayment_status: str = RepaymentStatus.UNPAID.value
    provider_id: Optional[str] = None
    penalty_amount: Optional[float] = None

    @model_validator(mode="after")
    def _default_total_repayable(self):
        if self.total_repayable_amount is None:
            self.total_repayable_amount = self.loan_amount
        return self

    @property
    def outstanding_amount(self) -> float:
        return max(self.total_repayable_amount - self.amount_repaid, 0)

    @property
    def is_unpaid(self) -> bool:
        return self.repayment_status == RepaymentStatus.UNPAID


class TransactionType(str, Enum):
    DEBIT = "Debit"  # disbursement
    CREDIT = "Credit"  # repayment


class Transaction(BackendModel):
    id: str
    date: datetime
    description: str = ""
    amount: float
    type: TransactionType

    @model_validator(mode="before")
    @classmethod
    def _derive_fields(cls, data: Any):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        amount = data.get("amount") or 0
        # backend does not send ids or a direction
        data.setdefault("id", f"txn-{data.get('date')}-{amount}")
        data["type"] = TransactionType.DEBIT if float(amount) >= 0 else TransactionType.CREDIT
        return data

    @field_validator("date")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


# --- conversation session ---

class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_PHONE_NUMBER = "awaiting_phone_number"
    AUTHENTICATED = "authenticated"
    AWAITING_LOAN_AMOUNT = "awaiting_loan_amount"
    AWAITING_REPAYMENT_AMOUNT = "awaiting_repayment_amount"


class ChatSession(BaseModel):
    """
    Per-chat conversation state. Transitions go through the methods below so a
    session can never hold a pending id without a borrower or the matching
    awaiting state.
    """
    chat_id: int
    state: SessionState = SessionState.UNAUTHENTICATED
    borrower_id: Optional[str] = None
    borrower_name: Optional[str] = None
    pending_product_id: Optional[str] = None
    pending_loan_id: Optional[str] = None
    last_activity: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_authenticated(self) -> bool:
        return self.borrower_id is not None

    def start_authentication(self) -> None:
        # /start always drops whatever the chat was doing
        self.state = SessionState.AWAITING_PHONE_NUMBER
        self.borrower_id = None
        self.borrower_name = None
        self._clear_pending()

    def authenticate(self, borrower_id: str, borrower_name: Optional[str] = None) -> None:
        self.state = SessionState.AUTHENTICATED
        self.borrower_id = borrower_id
        self.borrower_name = borrower_name
        self._clear_pending()

    def await_loan_amount(self, product_id: str) -> None:
        self._require_borrower()
        self._clear_pending()
        self.state = SessionState.AWAITING_LOAN_AMOUNT
        self.pending_product_id = product_id

    def await_repayment_amount(self, loan_id: str) -> None:
        self._require_borrower()
        self._clear_pending()
        self.state = SessionState.AWAITING_REPAYMENT_AMOUNT
        self.pending_loan_id = loan_id

    def return_to_menu(self) -> None:
        self._require_borrower()
        self.state = SessionState.AUTHENTICATED
        self._clear_pending()

    def touch(self) -> None:
        self.last_activity = datetime.now(timezone.utc)

    def _require_borrower(self) -> None:
        if self.borrower_id is None:
            raise ValueError(f"chat {self.chat_id} has no authenticated borrower")

    def _clear_pending(self) -> None:
        self.pending_product_id = None
        self.pending_loan_id = None
