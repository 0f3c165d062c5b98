# loanbot/services/summary_service.py
import logging
from typing import Optional

import google.generativeai as genai

from loanbot.core.config import settings
from loanbot.schemas.loan_schemas import StreamlineIn, StreamlineOut

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a loan application assistant. Generate a concise draft summary of the "
    "loan application based on the provided product details and loan amount. "
    "Reply with the summary text only."
)


def build_prompt(application: StreamlineIn) -> str:
    return (
        f"{SYSTEM_INSTRUCTION}\n\n"
        f"Product Details: {application.product_details}\n"
        f"Loan Amount: {application.loan_amount}\n"
        f"Borrower ID: {application.borrower_id}\n"
        f"Product ID: {application.product_id}\n\n"
        "Summary:"
    )


def fallback_summary(application: StreamlineIn) -> str:
    return (
        f"Borrower {application.borrower_id} is applying for {application.loan_amount:,.2f} "
        f"{settings.CURRENCY} under product {application.product_id} "
        f"({application.product_details.strip()})."
    )


def summarize_application(application: StreamlineIn, model: Optional[str] = None) -> StreamlineOut:
    """
    Single text-generation call. Without GOOGLE_API_KEY, or when the model
    call fails, a deterministic summary is returned instead of raising.
    """
    if not settings.GOOGLE_API_KEY:
        return StreamlineOut(summary=fallback_summary(application), generated=False)

    model_name = model or settings.GOOGLE_MODEL
    genai.configure(api_key=settings.GOOGLE_API_KEY)
    try:
        response = genai.GenerativeModel(model_name).generate_content(build_prompt(application))
        text = (response.text or "").strip() if response else ""
    except Exception as exc:
        logger.warning("summary generation with %s failed: %s", model_name, exc)
        return StreamlineOut(summary=fallback_summary(application), generated=False)

    if not text:
        logger.warning("model %s returned an empty summary", model_name)
        return StreamlineOut(summary=fallback_summary(application), generated=False)

    return StreamlineOut(summary=text, generated=True, model=model_name)
