# loanbot/services/loan_api_client.py
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from loanbot.core.config import settings
from loanbot.core.errors import BackendUnavailable, BorrowerNotFound, ProductNotFound
from loanbot.models.domain_models import (
    Borrower, Provider, EligibilityProduct, Eligibility, Loan, RepaymentStatus, Transaction
)

logger = logging.getLogger(__name__)


def format_phone_for_lookup(phone_number: str) -> str:
    # the backend keys borrowers by the last 9 digits
    return phone_number[-9:]


def normalize_borrower(payload: Any, phone_number: str) -> Optional[Borrower]:
    """
    Borrower lookup answers with one of two shapes depending on backend version:

    - {"borrowerId": ..., "provisionedData": [{"data": "<json string with name, salary>"}]}
    - [{"id": ..., "fullName": ..., "monthlyIncome": ..., "employmentStatus": ...}]

    Returns None when the payload holds no borrower.
    """
    if isinstance(payload, list):
        first = payload[0] if payload else None
        if not isinstance(first, dict) or not first.get("id"):
            return None
        return Borrower(
            id=str(first["id"]),
            name=first.get("fullName") or first.get("name") or "",
            phone_number=phone_number,
            monthly_income=first.get("monthlyIncome"),
            employment_status=first.get("employmentStatus"),
        )

    if not isinstance(payload, dict):
        return None

    borrower_id = payload.get("borrowerId")
    provisioned = payload.get("provisionedData") or []
    if not borrower_id or not isinstance(provisioned, list) or not provisioned:
        return None

    # the borrower record is a stringified JSON object
    raw = provisioned[0].get("data") if isinstance(provisioned[0], dict) else None
    try:
        data = json.loads(raw) if isinstance(raw, str) else (raw or {})
    except ValueError:
        logger.warning("borrower %s: provisioned data is not valid JSON", borrower_id)
        data = {}
    if not isinstance(data, dict):
        data = {}

    return Borrower(
        id=str(borrower_id),
        name=data.get("name") or "",
        phone_number=phone_number,
        monthly_income=data.get("salary"),
        employment_status="Employed",
    )


def _error_detail(resp: httpx.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "").strip()[:200] or None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return None


def _unexpected(path: str, exc: Optional[Exception] = None) -> BackendUnavailable:
    logger.warning("loan api returned an unexpected body for %s: %s", path, exc)
    return BackendUnavailable(f"{path} returned an unexpected body")


def _parse_many(model, payload: Any, path: str) -> list:
    # an empty body means an empty list
    if payload in (None, {}):
        return []
    if not isinstance(payload, list):
        raise _unexpected(path, TypeError(f"expected a list, got {type(payload).__name__}"))
    try:
        return [model.model_validate(item) for item in payload]
    except ValidationError as exc:
        raise _unexpected(path, exc) from exc


class LoanApiClient:
    """
    Async wrapper over the loan backend REST API. One request per call, no
    retries; transport failures, timeouts, non-2xx answers and bodies of the
    wrong shape all surface as BackendUnavailable.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        loan_term_days: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.LOAN_API_BASE_URL).rstrip("/")
        self.loan_term_days = loan_term_days or settings.LOAN_TERM_DAYS
        seconds = timeout or settings.LOAN_API_TIMEOUT_SECONDS
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout=seconds, connect=min(seconds, 5.0)),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        # productId -> product, rebuilt on every list_providers()
        self._products: Dict[str, EligibilityProduct] = {}

    async def aclose(self) -> None:
        await self._client.aclose()

    # -----------------------------
    # Transport
    # -----------------------------

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("loan api timeout: %s %s: %s", method, path, exc)
            raise BackendUnavailable(f"timeout calling {path}") from exc
        except httpx.HTTPError as exc:
            logger.warning("loan api network error: %s %s: %s", method, path, exc)
            raise BackendUnavailable(f"network error calling {path}") from exc

        if not resp.is_success:
            detail = _error_detail(resp)
            logger.warning(
                "loan api error: %s %s status=%s detail=%s",
                method, path, resp.status_code, detail,
            )
            raise BackendUnavailable(
                f"{method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
                detail=detail,
            )

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise BackendUnavailable(f"{method} {path} returned a non-JSON body") from exc

    # -----------------------------
    # Borrowers
    # -----------------------------

    async def find_borrower_by_phone(self, phone_number: str) -> Borrower:
        formatted = format_phone_for_lookup(phone_number)
        logger.info("looking up borrower by phone ending %s", formatted[-4:])
        try:
            payload = await self._request("GET", "/ussd/borrowers", params={"phoneNumber": formatted})
        except BackendUnavailable as exc:
            if exc.status_code == 404:
                raise BorrowerNotFound(formatted) from exc
            raise

        try:
            borrower = normalize_borrower(payload, phone_number)
        except ValidationError as exc:
            raise _unexpected("/ussd/borrowers", exc) from exc
        if borrower is None:
            raise BorrowerNotFound(formatted)
        return borrower

    # -----------------------------
    # Providers / products
    # -----------------------------

    async def list_providers(self) -> List[Provider]:
        payload = await self._request("GET", "/providers")
        providers = _parse_many(Provider, payload, "/providers")

        products: Dict[str, EligibilityProduct] = {}
        for provider in providers:
            for prod in provider.products:
                products[prod.id] = EligibilityProduct(
                    id=prod.id,
                    name=prod.name,
                    limit=prod.max_loan or 0,
                    interest_rate=prod.daily_fee.value if prod.daily_fee else 0,
                    service_fee=prod.service_fee.value if prod.service_fee else 0,
                )
        self._products = products
        return providers

    def get_product(self, product_id: str) -> Optional[EligibilityProduct]:
        return self._products.get(product_id)

    async def get_eligibility(self, borrower_id: str, provider_id: str) -> Eligibility:
        path = f"/ussd/borrowers/{borrower_id}/eligibility"
        payload = await self._request("GET", path, params={"providerId": provider_id})
        limits = payload.get("limits") if isinstance(payload, dict) else None
        if not isinstance(payload, dict) or not isinstance(limits or [], list):
            raise _unexpected(path)

        try:
            products = []
            for limit in limits or []:
                base = self.get_product(str(limit.get("productId")))
                products.append(EligibilityProduct(
                    id=str(limit.get("productId")),
                    name=limit.get("productName") or (base.name if base else ""),
                    limit=limit.get("limit") or 0,
                    interest_rate=base.interest_rate if base else 0,
                    service_fee=base.service_fee if base else 0,
                ))
            return Eligibility(
                credit_score=payload.get("score") or 0,
                products=products,
                reason=payload.get("reason"),
            )
        except (ValidationError, AttributeError) as exc:
            raise _unexpected(path, exc) from exc

    # -----------------------------
    # Loans / transactions
    # -----------------------------

    async def list_active_loans(self, borrower_id: str) -> List[Loan]:
        path = f"/ussd/borrowers/{borrower_id}/loans"
        return _parse_many(Loan, await self._request("GET", path), path)

    async def list_transactions(self, borrower_id: str) -> List[Transaction]:
        path = f"/ussd/borrowers/{borrower_id}/transactions"
        return _parse_many(Transaction, await self._request("GET", path), path)

    async def apply_for_loan(self, borrower_id: str, product_id: str, amount: float) -> str:
        if not self._products:
            await self.list_providers()
        product = self.get_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)

        disbursed = datetime.now(timezone.utc)
        body = {
            "productId": product_id,
            "borrowerId": borrower_id,
            "loanAmount": amount,
            "serviceFee": product.service_fee,
            "penaltyAmount": 0,
            "disbursedDate": disbursed.isoformat(),
            "dueDate": (disbursed + timedelta(days=self.loan_term_days)).isoformat(),
            "repaymentStatus": RepaymentStatus.UNPAID.value,
        }
        logger.info("applying for loan: borrower=%s product=%s amount=%s", borrower_id, product_id, amount)
        payload = await self._request("POST", "/loans", json=body)

        loan_id = None
        if isinstance(payload, dict):
            loan_id = payload.get("id") or payload.get("loanId")
        return str(loan_id) if loan_id else f"loan-{int(time.time() * 1000)}"

    async def repay_loan(self, loan_id: str, amount: float) -> Optional[Loan]:
        logger.info("repaying loan %s amount=%s", loan_id, amount)
        payload = await self._request("POST", "/payments", json={"loanId": loan_id, "amount": amount})
        if isinstance(payload, dict) and payload.get("id"):
            try:
                return Loan.model_validate(payload)
            except ValidationError as exc:
                raise _unexpected("/payments", exc) from exc
        return None
