# loanbot/api/routes_loans.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from loanbot.api.deps import get_loan_api
from loanbot.bot.parsing import normalize_phone
from loanbot.core.errors import (
    BackendUnavailable, BorrowerNotFound, InputValidationError, ProductNotFound
)
from loanbot.models.domain_models import Borrower, Eligibility, Loan, Provider, Transaction
from loanbot.schemas.loan_schemas import LoanApplicationIn, LoanApplicationOut, RepaymentIn

router = APIRouter(tags=["loans"])


def _bad_gateway(exc: BackendUnavailable) -> HTTPException:
    return HTTPException(status_code=502, detail=exc.detail or "Loan backend unavailable")


# Same backend operations the Telegram bot uses, as JSON for the web UI.

@router.get("/borrowers/lookup", response_model=Borrower)
async def lookup_borrower(phone: str = Query(...), api=Depends(get_loan_api)):
    try:
        normalized = normalize_phone(phone)
    except InputValidationError:
        raise HTTPException(status_code=422, detail="Invalid phone number")
    try:
        return await api.find_borrower_by_phone(normalized)
    except BorrowerNotFound:
        raise HTTPException(status_code=404, detail="Phone number is not registered")
    except BackendUnavailable as exc:
        raise _bad_gateway(exc)


@router.get("/providers", response_model=List[Provider])
async def list_providers(api=Depends(get_loan_api)):
    try:
        return await api.list_providers()
    except BackendUnavailable as exc:
        raise _bad_gateway(exc)


@router.get("/borrowers/{borrower_id}/eligibility", response_model=Eligibility)
async def get_eligibility(borrower_id: str, provider_id: str = Query(...), api=Depends(get_loan_api)):
    try:
        return await api.get_eligibility(borrower_id, provider_id)
    except BackendUnavailable as exc:
        raise _bad_gateway(exc)


@router.get("/borrowers/{borrower_id}/loans", response_model=List[Loan])
async def list_loans(borrower_id: str, unpaid_only: bool = False, api=Depends(get_loan_api)):
    try:
        loans = await api.list_active_loans(borrower_id)
    except BackendUnavailable as exc:
        raise _bad_gateway(exc)
    if unpaid_only:
        loans = [loan for loan in loans if loan.is_unpaid]
    return loans


@router.get("/borrowers/{borrower_id}/transactions", response_model=List[Transaction])
async def list_transactions(
    borrower_id: str,
    limit: Optional[int] = Query(default=None, ge=1),
    api=Depends(get_loan_api),
):
    try:
        transactions = await api.list_transactions(borrower_id)
    except BackendUnavailable as exc:
        raise _bad_gateway(exc)
    transactions = sorted(transactions, key=lambda t: t.date, reverse=True)
    return transactions[:limit] if limit else transactions


@router.post("/loans", response_model=LoanApplicationOut)
async def apply_for_loan(body: LoanApplicationIn, api=Depends(get_loan_api)):
    # only checked when the catalogue is loaded; otherwise the backend decides
    product = api.get_product(body.product_id)
    if product is not None and product.limit and body.amount > product.limit:
        raise HTTPException(
            status_code=422,
            detail=f"Amount exceeds the product limit of {product.limit:,.2f}",
        )
    try:
        loan_id = await api.apply_for_loan(body.borrower_id, body.product_id, body.amount)
    except ProductNotFound:
        raise HTTPException(status_code=404, detail="Product not found")
    except BackendUnavailable as exc:
        raise _bad_gateway(exc)
    return LoanApplicationOut(loan_id=loan_id)


@router.post("/payments")
async def repay_loan(body: RepaymentIn, api=Depends(get_loan_api)):
    # the outstanding balance is not known from a loan id alone; the backend
    # rejects overpayments
    try:
        loan = await api.repay_loan(body.loan_id, body.amount)
    except BackendUnavailable as exc:
        raise _bad_gateway(exc)
    return {"loan_id": body.loan_id, "amount": body.amount, "loan": loan}
