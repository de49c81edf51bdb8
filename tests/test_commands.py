"""Tests for /start, /ban, /unban and the owner command menu."""
import pytest

from channels.commands import BOT_COMMANDS, setup_owner_commands
from context.blacklist import BlacklistStore
from core.commands import CommandHandler, parse_command
from database.store_memory import InMemoryKVStore
from models.schemas import Message

from conftest import OWNER_ID, make_message

STRANGER = 1001


@pytest.fixture
def blacklist():
    return BlacklistStore(InMemoryKVStore("config"))


@pytest.fixture
def handler(gateway, blacklist):
    return CommandHandler(gateway, blacklist, OWNER_ID, "Welcome to the **relay**!")


def command(text, user_id=STRANGER):
    return Message.model_validate(make_message(message_id=1, user_id=user_id, text=text))


class TestParseCommand:
    def test_simple(self):
        assert parse_command("/start") == ("start", "")

    def test_with_args_and_bot_suffix(self):
        assert parse_command("/BAN@relay_bot  77 ") == ("ban", "77")

    def test_not_a_command(self):
        assert parse_command("hello /start") is None
        assert parse_command(None) is None


class TestStart:
    @pytest.mark.asyncio
    async def test_welcome_for_anyone(self, handler, gateway):
        await handler.handle(command("/start"))
        sent = gateway.calls_to("send_message")
        assert sent == [{"chat_id": STRANGER, "text": "Welcome to the <b>relay</b>!",
                         "reply_to_message_id": None}]
        assert gateway.calls_to("set_my_commands") == []

    @pytest.mark.asyncio
    async def test_owner_gets_command_menu(self, handler, gateway):
        await handler.handle(command("/start", user_id=OWNER_ID))
        assert gateway.calls_to("set_my_commands") == [
            {"commands": BOT_COMMANDS, "scope": {"type": "chat", "chat_id": OWNER_ID}}
        ]
        assert gateway.calls_to("set_chat_menu_button") == [
            {"chat_id": OWNER_ID, "menu_button": {"type": "commands"}}
        ]


class TestBlacklistCommands:
    @pytest.mark.asyncio
    async def test_ban(self, handler, gateway, blacklist):
        await handler.handle(command("/ban 77", user_id=OWNER_ID))
        assert await blacklist.contains(77)
        assert "<code>77</code>" in gateway.calls_to("send_message")[0]["text"]

    @pytest.mark.asyncio
    async def test_ban_twice_reports_success(self, handler, gateway, blacklist):
        await handler.handle(command("/ban 77", user_id=OWNER_ID))
        await handler.handle(command("/ban 77", user_id=OWNER_ID))
        assert await blacklist.get() == [77]
        assert all(c["text"].startswith("✅") for c in gateway.calls_to("send_message"))

    @pytest.mark.asyncio
    async def test_unban(self, handler, blacklist):
        await blacklist.add(77)
        await handler.handle(command("/unban 77", user_id=OWNER_ID))
        assert not await blacklist.contains(77)

    @pytest.mark.asyncio
    async def test_non_owner_refused(self, handler, gateway, blacklist):
        await handler.handle(command("/ban 77"))
        assert await blacklist.get() == []
        assert "permission" in gateway.calls_to("send_message")[0]["text"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["/ban", "/ban abc", "/unban 12x"])
    async def test_usage_on_bad_argument(self, handler, gateway, blacklist, text):
        await handler.handle(command(text, user_id=OWNER_ID))
        assert await blacklist.get() == []
        assert "Usage" in gateway.calls_to("send_message")[0]["text"]


class TestOtherCommands:
    @pytest.mark.asyncio
    async def test_unknown_command(self, handler, gateway):
        assert await handler.handle(command("/help")) == "help"
        assert gateway.calls_to("send_message")[0]["text"] == "Sorry, unknown command: /help"

    @pytest.mark.asyncio
    async def test_menu_failure_does_not_break_start(self, handler, gateway):
        gateway.fail_on.add("set_my_commands")
        # menu failures are swallowed by setup_owner_commands
        await handler.handle(command("/start", user_id=OWNER_ID))
        assert len(gateway.calls_to("send_message")) == 1

    @pytest.mark.asyncio
    async def test_send_failure_is_contained(self, handler, gateway):
        gateway.fail_on.add("send_message")
        await handler.handle(command("/start"))
        # welcome failed, then the error notice failed too; nothing raised
        assert len(gateway.calls_to("send_message")) == 2


class TestSetupOwnerCommands:
    @pytest.mark.asyncio
    async def test_success(self, gateway):
        assert await setup_owner_commands(gateway, OWNER_ID) is True

    @pytest.mark.asyncio
    async def test_failure_returns_false(self, gateway):
        gateway.fail_on.add("set_chat_menu_button")
        assert await setup_owner_commands(gateway, OWNER_ID) is False
