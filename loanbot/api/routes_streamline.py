# loanbot/api/routes_streamline.py
from fastapi import APIRouter

from loanbot.schemas.loan_schemas import StreamlineIn, StreamlineOut
from loanbot.services.summary_service import summarize_application

router = APIRouter(tags=["streamline"])


@router.post("/streamline", response_model=StreamlineOut)
def streamline(body: StreamlineIn):
    return summarize_application(body)
