from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from telegram import Bot, Update
from telegram.constants import ParseMode
from telegram.error import BadRequest

import main
from loanbot.bot.dispatcher import parse_command, update_to_event
from loanbot.bot.events import ButtonClick, Command, TextMessage
from loanbot.bot.polling import TelegramPoller
from loanbot.core import config
from loanbot.core.errors import ChatTransportError, MissingBotToken
from loanbot.core.session import SessionStore
from loanbot.models.domain_models import SessionState
from loanbot.schemas.telegram_schemas import InlineButton, OutboundMessage
from loanbot.services.telegram_client import TelegramClient
from main import create_app

TOKEN = "123456:TEST-TOKEN"
DATE = 1767225600


def message_update(update_id, chat_id, text=None):
    message = {
        "message_id": update_id,
        "date": DATE,
        "chat": {"id": chat_id, "type": "private"},
        "from": {"id": chat_id, "is_bot": False, "first_name": "Alex"},
    }
    if text is not None:
        message["text"] = text
    return {"update_id": update_id, "message": message}


def callback_update(update_id, chat_id, data, callback_id="cq1", with_message=True):
    query = {
        "id": callback_id,
        "chat_instance": "ci1",
        "from": {"id": chat_id, "is_bot": False, "first_name": "Alex"},
        "data": data,
    }
    if with_message:
        query["message"] = {"message_id": 99, "date": DATE, "chat": {"id": chat_id, "type": "private"}}
    return {"update_id": update_id, "callback_query": query}


def to_update(data, bot=None):
    return Update.de_json(data, bot or Bot(TOKEN))


class FakeBot:
    def __init__(self, fail=None):
        self.sent = []
        self.acks = []
        self.fail = fail

    async def send_message(self, **kwargs):
        if self.fail:
            raise self.fail
        self.sent.append(kwargs)

    async def answer_callback_query(self, callback_query_id):
        if self.fail:
            raise self.fail
        self.acks.append(callback_query_id)


class FakeTelegram:
    """TelegramClient stand-in; `bot` is real so webhook payloads can be parsed."""

    def __init__(self):
        self.bot = Bot(TOKEN)
        self.messages = []
        self.acks = []
        self.webhooks = []
        self.initialized = False

    async def initialize(self):
        self.initialized = True

    async def send_message(self, chat_id, message):
        self.messages.append((chat_id, message))

    async def answer_callback_query(self, callback_id):
        self.acks.append(callback_id)

    async def set_webhook(self, url, secret_token=None):
        self.webhooks.append((url, secret_token))

    async def aclose(self):
        pass


class FakePoller:
    instances = []

    def __init__(self, client, machine, store=None, poll_timeout=30):
        self.client = client
        self.machine = machine
        self.poll_timeout = poll_timeout
        self.running = False
        self.calls = []
        FakePoller.instances.append(self)

    async def start(self):
        self.calls.append("start")
        self.running = True

    async def stop(self):
        self.calls.append("stop")
        self.running = False


# -----------------------------
# Update -> event
# -----------------------------

def test_parse_command_strips_bot_mention():
    command = parse_command("/check@LoanBot 0912345678")
    assert command.name == "check"
    assert command.args == "0912345678"


def test_update_to_event_variants():
    assert update_to_event(to_update(message_update(1, 5, "/start"))) == Command(chat_id=5, name="start")
    assert update_to_event(to_update(message_update(2, 5, "912345678"))) == TextMessage(chat_id=5, text="912345678")
    assert update_to_event(to_update(callback_update(3, 5, "main_menu"))) == ButtonClick(
        chat_id=5, callback_id="cq1", payload="main_menu"
    )


def test_callback_without_message_uses_sender_id():
    event = update_to_event(to_update(callback_update(3, 8, "main_menu", with_message=False)))
    assert event == ButtonClick(chat_id=8, callback_id="cq1", payload="main_menu")


def test_update_without_text_is_skipped():
    assert update_to_event(to_update(message_update(4, 5))) is None


# -----------------------------
# Bot API client
# -----------------------------

@pytest.mark.asyncio
async def test_send_message_builds_inline_keyboard():
    bot = FakeBot()
    client = TelegramClient(bot=bot)

    await client.send_message(5, OutboundMessage(
        text="Hi", buttons=[[InlineButton(label="Menu", payload="main_menu")]],
    ))
    await client.send_message(5, OutboundMessage(text="plain *", markdown=False))

    first, second = bot.sent
    assert first["chat_id"] == 5
    assert first["parse_mode"] == ParseMode.MARKDOWN
    button = first["reply_markup"].inline_keyboard[0][0]
    assert (button.text, button.callback_data) == ("Menu", "main_menu")
    assert second["parse_mode"] is None
    assert second["reply_markup"] is None


@pytest.mark.asyncio
async def test_bot_api_error_raises_transport_error():
    client = TelegramClient(bot=FakeBot(fail=BadRequest("Chat not found")))

    with pytest.raises(ChatTransportError):
        await client.answer_callback_query("cq1")
    with pytest.raises(ChatTransportError):
        await client.send_message(5, OutboundMessage(text="Hi"))


def test_client_builds_bot_from_settings_url():
    client = TelegramClient(token="123:ABC", api_url="https://tg.test/")

    assert client.bot.token == "123:ABC"
    assert client.bot.base_url == "https://tg.test/bot123:ABC"


def test_missing_token(monkeypatch):
    monkeypatch.setattr(config.settings, "TELEGRAM_BOT_TOKEN", None)
    with pytest.raises(MissingBotToken):
        TelegramClient()


# -----------------------------
# Long polling
# -----------------------------

def test_poller_handles_chats_concurrently(machine, store):
    poller = TelegramPoller(TelegramClient(token=TOKEN), machine, store=store, poll_timeout=1)

    assert poller.application.concurrent_updates > 1
    assert not poller.running


@pytest.mark.asyncio
async def test_poller_update_drives_the_state_machine(machine, store, sender):
    poller = TelegramPoller(TelegramClient(token=TOKEN), machine, store=store, poll_timeout=1)
    bot = poller.application.bot

    await poller.handle_update(to_update(message_update(10, 5, "/start"), bot))
    await poller.handle_update(to_update(message_update(11, 5, "912345678"), bot))

    assert store.get(5).state == SessionState.AUTHENTICATED
    assert sender.last().button_count == 3


@pytest.mark.asyncio
async def test_poller_survives_a_crashing_update(machine, store, sender, monkeypatch):
    poller = TelegramPoller(TelegramClient(token=TOKEN), machine, store=store, poll_timeout=1)

    async def broken(event):
        raise RuntimeError("boom")

    monkeypatch.setattr(machine, "handle", broken)

    await poller.handle_update(to_update(message_update(12, 5, "/start")))

    assert sender.messages == []


@pytest.mark.asyncio
async def test_poller_sweeps_idle_sessions(machine, sender):
    store = SessionStore(idle_timeout_seconds=60)
    machine.store = store
    poller = TelegramPoller(TelegramClient(token=TOKEN), machine, store=store, poll_timeout=1)
    await poller.handle_update(to_update(message_update(13, 5, "/start")))
    await poller.handle_update(to_update(message_update(14, 5, "912345678")))
    assert 5 in store

    store.peek(5).last_activity = datetime.now(timezone.utc) - timedelta(hours=2)
    await poller.handle_update(to_update(message_update(15, 6, "hello")))

    assert 5 not in store
    assert store.lock_count == 0


# -----------------------------
# Application wiring
# -----------------------------

def test_startup_without_token_is_fatal(monkeypatch, loan_api):
    monkeypatch.setattr(config.settings, "TELEGRAM_ENABLED", True)
    monkeypatch.setattr(config.settings, "TELEGRAM_BOT_TOKEN", None)
    app = create_app(loan_api=loan_api)

    with pytest.raises(MissingBotToken):
        with TestClient(app):
            pass


def test_webhook_drives_the_state_machine(monkeypatch, loan_api):
    monkeypatch.setattr(config.settings, "TELEGRAM_ENABLED", True)
    monkeypatch.setattr(config.settings, "TELEGRAM_DELIVERY_MODE", "webhook")
    monkeypatch.setattr(config.settings, "TELEGRAM_WEBHOOK_URL", "https://bot.example/api/telegram/webhook")
    monkeypatch.setattr(config.settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret")
    telegram = FakeTelegram()
    app = create_app(loan_api=loan_api, telegram_client=telegram)
    headers = {"X-Telegram-Bot-Api-Secret-Token": "s3cret"}

    with TestClient(app) as client:
        r1 = client.post("/api/telegram/webhook", json=message_update(1, 77, "/start"), headers=headers)
        r2 = client.post("/api/telegram/webhook", json=message_update(2, 77, "912345678"), headers=headers)
        r3 = client.post("/api/telegram/webhook", json=callback_update(3, 77, "foo_bar"), headers=headers)
        status = client.get("/api/telegram/status").json()

    assert [r.status_code for r in (r1, r2, r3)] == [200, 200, 200]
    assert telegram.initialized
    assert telegram.webhooks == [("https://bot.example/api/telegram/webhook", "s3cret")]
    assert telegram.messages[-1][1].button_count == 3
    assert telegram.acks == ["cq1"]
    assert status["delivery_mode"] == "webhook"
    assert status["running"] is True
    assert status["active_sessions"] == 1


def test_webhook_answers_ok_for_unparseable_update(monkeypatch, loan_api):
    monkeypatch.setattr(config.settings, "TELEGRAM_ENABLED", True)
    monkeypatch.setattr(config.settings, "TELEGRAM_DELIVERY_MODE", "webhook")
    monkeypatch.setattr(config.settings, "TELEGRAM_WEBHOOK_URL", None)
    monkeypatch.setattr(config.settings, "TELEGRAM_WEBHOOK_SECRET", None)
    telegram = FakeTelegram()
    app = create_app(loan_api=loan_api, telegram_client=telegram)

    with TestClient(app) as client:
        resp = client.post("/api/telegram/webhook", json={"update_id": 9, "message": {"text": "no chat"}})

    assert resp.status_code == 200
    assert telegram.messages == []


def test_webhook_rejects_bad_secret(monkeypatch, loan_api):
    monkeypatch.setattr(config.settings, "TELEGRAM_ENABLED", True)
    monkeypatch.setattr(config.settings, "TELEGRAM_DELIVERY_MODE", "webhook")
    monkeypatch.setattr(config.settings, "TELEGRAM_WEBHOOK_URL", None)
    monkeypatch.setattr(config.settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret")
    telegram = FakeTelegram()
    app = create_app(loan_api=loan_api, telegram_client=telegram)

    with TestClient(app) as client:
        resp = client.post(
            "/api/telegram/webhook",
            json=message_update(1, 77, "/start"),
            headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"},
        )

    assert resp.status_code == 401
    assert telegram.messages == []
    assert telegram.webhooks == []


def test_polling_mode_starts_and_stops_poller(monkeypatch, loan_api):
    monkeypatch.setattr(config.settings, "TELEGRAM_ENABLED", True)
    monkeypatch.setattr(config.settings, "TELEGRAM_DELIVERY_MODE", "polling")
    monkeypatch.setattr(main, "TelegramPoller", FakePoller)
    FakePoller.instances.clear()
    telegram = FakeTelegram()
    app = create_app(loan_api=loan_api, telegram_client=telegram)

    with TestClient(app) as client:
        status = client.get("/api/telegram/status").json()
        webhook = client.post("/api/telegram/webhook", json=message_update(1, 77, "/start"))

    poller = FakePoller.instances[0]
    assert status["running"] is True
    assert status["delivery_mode"] == "polling"
    assert webhook.status_code == 409
    assert poller.client is telegram
    assert poller.poll_timeout == config.settings.TELEGRAM_POLL_TIMEOUT_SECONDS
    assert poller.calls == ["start", "stop"]
    assert not poller.running
    assert telegram.messages == []
