# loanbot/api/deps.py
from fastapi import HTTPException, Request, status


def get_loan_api(request: Request):
    return request.app.state.loan_api


def get_session_store(request: Request):
    return request.app.state.session_store


def get_state_machine(request: Request):
    machine = getattr(request.app.state, "state_machine", None)
    if machine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Telegram bot is not enabled",
        )
    return machine


def get_telegram_client(request: Request):
    return request.app.state.telegram_client
