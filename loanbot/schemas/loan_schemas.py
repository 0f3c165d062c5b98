# loanbot/schemas/loan_schemas.py
from pydantic import BaseModel, Field
from typing import Optional


class LoanApplicationIn(BaseModel):
    borrower_id: str
    product_id: str
    amount: float = Field(gt=0, allow_inf_nan=False)


class LoanApplicationOut(BaseModel):
    loan_id: str
    success: bool = True


class RepaymentIn(BaseModel):
    loan_id: str
    amount: float = Field(gt=0, allow_inf_nan=False)


class StreamlineIn(BaseModel):
    product_details: str
    loan_amount: float
    borrower_id: str
    product_id: str


class StreamlineOut(BaseModel):
    summary: str
    # False when the deterministic fallback produced the summary
    generated: bool = True
    model: Optional[str] = None
