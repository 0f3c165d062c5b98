# loanbot/api/routes_telegram.py
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, status
from telegram import Update

from loanbot.api.deps import get_session_store, get_state_machine, get_telegram_client
from loanbot.bot.dispatcher import dispatch_update
from loanbot.core.config import settings
from loanbot.schemas.telegram_schemas import TelegramStatusOut

router = APIRouter(prefix="/telegram", tags=["telegram"])

logger = logging.getLogger(__name__)


@router.post("/webhook")
async def telegram_webhook(
    payload: Dict[str, Any] = Body(...),
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
    machine=Depends(get_state_machine),
    client=Depends(get_telegram_client),
    store=Depends(get_session_store),
):
    """
    Inbound webhook delivery. The update is handled before we answer so
    Telegram does not redeliver it; handler errors are logged, never returned.
    """
    if settings.TELEGRAM_DELIVERY_MODE != "webhook":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Bot is running in polling mode")

    secret = settings.TELEGRAM_WEBHOOK_SECRET
    if secret and x_telegram_bot_api_secret_token != secret:
        logger.warning("rejected webhook call with a bad secret token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid secret token")

    try:
        update = Update.de_json(payload, client.bot)
        await dispatch_update(machine, update)
    except Exception:
        logger.exception("update %s: webhook handler crashed", payload.get("update_id"))
    store.evict_idle()
    return {"ok": True}


@router.get("/status", response_model=TelegramStatusOut)
def telegram_status(request: Request, store=Depends(get_session_store)):
    poller = getattr(request.app.state, "telegram_poller", None)
    machine = getattr(request.app.state, "state_machine", None)
    if settings.TELEGRAM_DELIVERY_MODE == "webhook":
        running = machine is not None
    else:
        running = poller is not None and poller.running
    return TelegramStatusOut(
        enabled=settings.TELEGRAM_ENABLED,
        delivery_mode=settings.TELEGRAM_DELIVERY_MODE,
        running=running,
        active_sessions=len(store),
    )
