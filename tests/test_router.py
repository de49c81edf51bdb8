"""
Tests for update classification and the end-to-end relay flows.

The gateway is a recording fake; stores are in-memory. Deferred deletions run
on the real event loop where a test shortens the cleanup delay.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from context.blacklist import BlacklistStore
from context.correlation import CorrelationStore
from core.router import build_router
from models.schemas import RouteKind

from conftest import OWNER_ID, bot_message, make_update

USER_ID = 1001


async def ban(stores, user_id=USER_ID):
    assert await BlacklistStore(stores.config).add(user_id)


class TestClassification:
    @pytest.mark.asyncio
    async def test_invalid_payload_is_ignored(self, router, gateway):
        assert await router.process_update({"message": "nope"}) == RouteKind.IGNORED
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_non_message_update_is_ignored(self, router, gateway):
        assert await router.process_update({"update_id": 3, "edited_message": {}}) == RouteKind.IGNORED
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_missing_sender_is_ignored(self, router, gateway):
        update = make_update(message_id=1, user_id=None, text="hi", chat_id=5)
        assert await router.process_update(update) == RouteKind.IGNORED
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_blocked_wins_over_command(self, router, gateway, stores):
        await ban(stores)
        update = make_update(message_id=5, user_id=USER_ID, text="/start")
        assert await router.process_update(update) == RouteKind.BLOCKED

        sent = gateway.calls_to("send_message")
        assert sent == [{"chat_id": USER_ID, "text": "🚫 <b>Unauthorized!</b>",
                         "reply_to_message_id": None}]
        assert gateway.calls_to("copy_message") == []

    @pytest.mark.asyncio
    async def test_blocked_owner_commands_still_blocked(self, router, gateway, stores):
        await ban(stores, OWNER_ID)
        update = make_update(message_id=5, user_id=OWNER_ID, text="/unban 42")
        assert await router.process_update(update) == RouteKind.BLOCKED

    @pytest.mark.asyncio
    async def test_blacklist_read_failure_is_not_blocking(self, router, gateway):
        router.blacklist = BlacklistStore(AsyncMock(get=AsyncMock(side_effect=RuntimeError("down"))))
        update = make_update(message_id=5, user_id=USER_ID, text="hello")
        assert await router.process_update(update) == RouteKind.USER_MESSAGE
        assert len(gateway.calls_to("copy_message")) == 1

    @pytest.mark.asyncio
    async def test_command(self, router, gateway):
        update = make_update(message_id=5, user_id=USER_ID, text="/start")
        assert await router.process_update(update) == RouteKind.COMMAND
        assert gateway.calls_to("send_message")[0]["text"] == "Welcome!"

    @pytest.mark.asyncio
    async def test_owner_plain_message_is_fallback(self, router, gateway):
        update = make_update(message_id=5, user_id=OWNER_ID, text="note to self")
        assert await router.process_update(update) == RouteKind.FALLBACK
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_owner_reply_to_own_message_is_fallback(self, router, gateway):
        own = make_update(message_id=4, user_id=OWNER_ID, text="earlier")["message"]
        update = make_update(message_id=5, user_id=OWNER_ID, text="again", reply_to=own)
        assert await router.process_update(update) == RouteKind.FALLBACK
        assert gateway.calls == []


class TestBlockedCleanup:
    @pytest.mark.asyncio
    async def test_deletions_are_scheduled(self, router, scheduler, stores):
        await ban(stores)
        await router.process_update(make_update(message_id=5, user_id=USER_ID, text="hi"))
        assert len(scheduler.pending()) == 2

    @pytest.mark.asyncio
    async def test_original_kept_when_configured(self, settings, gateway, stores, scheduler):
        settings.relay.delete_blocked_original = False
        router = build_router(settings, gateway, stores, scheduler)
        await ban(stores)
        await router.process_update(make_update(message_id=5, user_id=USER_ID, text="hi"))
        assert len(scheduler.pending()) == 1

    @pytest.mark.asyncio
    async def test_notice_and_original_deleted_after_delay(self, settings, gateway, stores, scheduler):
        settings.relay.blocked_cleanup_delay_ms = 20
        router = build_router(settings, gateway, stores, scheduler)
        await ban(stores)

        await router.process_update(make_update(message_id=5, user_id=USER_ID, text="hi"))
        notice_id = 1000
        assert gateway.calls_to("delete_message") == []

        await asyncio.sleep(0.15)
        deleted = sorted(c["message_id"] for c in gateway.calls_to("delete_message"))
        assert deleted == [5, notice_id]
        assert all(c["chat_id"] == USER_ID for c in gateway.calls_to("delete_message"))
        assert await stores.timers.list_keys() == []

    @pytest.mark.asyncio
    async def test_notice_failure_schedules_only_original(self, router, gateway, scheduler, stores):
        await ban(stores)
        gateway.fail_on.add("send_message")
        assert await router.process_update(
            make_update(message_id=5, user_id=USER_ID, text="hi")
        ) == RouteKind.BLOCKED
        assert len(scheduler.pending()) == 1


class TestRelayFlow:
    @pytest.mark.asyncio
    async def test_user_to_owner_and_back(self, router, gateway, stores):
        # sender → owner
        assert await router.process_update(
            make_update(message_id=5, user_id=USER_ID, text="hello")
        ) == RouteKind.USER_MESSAGE
        assert gateway.calls_to("copy_message") == [{
            "chat_id": OWNER_ID, "from_chat_id": USER_ID,
            "message_id": 5, "reply_to_message_id": None,
        }]
        edit = gateway.calls_to("edit_message_text")[0]
        assert edit["chat_id"] == OWNER_ID and edit["message_id"] == 1000
        assert "(ID: <code>1001</code>)" in edit["text"]
        assert edit["text"].endswith("\nhello")
        assert await stores.relay.get("1000") == "1001_5"

        # owner replies to the relayed copy
        assert await router.process_update(make_update(
            update_id=2, message_id=77, user_id=OWNER_ID, text="hi back",
            reply_to=bot_message(1000),
        )) == RouteKind.OWNER_REPLY
        assert gateway.calls_to("copy_message")[1] == {
            "chat_id": USER_ID, "from_chat_id": OWNER_ID,
            "message_id": 77, "reply_to_message_id": 5,
        }
        assert await stores.relay.get("1001") == f"{OWNER_ID}_77"

        # sender answers the owner's reply: threaded under the owner's message
        await router.process_update(make_update(
            update_id=3, message_id=6, user_id=USER_ID, text="thanks",
            reply_to={**bot_message(1001), "chat": {"id": USER_ID, "type": "private"}},
        ))
        assert gateway.calls_to("copy_message")[2]["reply_to_message_id"] == 77

    @pytest.mark.asyncio
    async def test_reply_to_unknown_copy(self, router, gateway):
        assert await router.process_update(make_update(
            message_id=77, user_id=OWNER_ID, text="hi", reply_to=bot_message(999),
        )) == RouteKind.OWNER_REPLY
        assert gateway.calls_to("copy_message") == []
        notice = gateway.calls_to("send_message")[0]
        assert notice["chat_id"] == OWNER_ID
        assert notice["reply_to_message_id"] == 77
        assert "3 day retention window" in notice["text"]

    @pytest.mark.asyncio
    async def test_expired_correlation_reads_as_unknown(self, router, gateway, clock):
        await router.process_update(make_update(message_id=5, user_id=USER_ID, text="hello"))
        clock.advance(259200 + 1)
        await router.process_update(make_update(
            update_id=2, message_id=77, user_id=OWNER_ID, text="late", reply_to=bot_message(1000),
        ))
        assert len(gateway.calls_to("copy_message")) == 1
        assert "not found" in gateway.calls_to("send_message")[0]["text"]

    @pytest.mark.asyncio
    async def test_reply_copy_failure_notifies_owner(self, router, gateway, stores):
        await CorrelationStore(stores.relay).put(3600, 500, USER_ID, 5)
        gateway.fail_on.add("copy_message")
        await router.process_update(make_update(
            message_id=77, user_id=OWNER_ID, text="hi", reply_to=bot_message(500),
        ))
        notice = gateway.calls_to("send_message")[0]
        assert notice["chat_id"] == OWNER_ID
        assert "<code>1001</code>" in notice["text"]
        assert "simulated failure" in notice["text"]

    @pytest.mark.asyncio
    async def test_caption_is_edited(self, router, gateway):
        await router.process_update(make_update(
            message_id=5, user_id=USER_ID, caption="look", photo=[{"file_id": "p"}],
        ))
        assert gateway.calls_to("edit_message_text") == []
        caption = gateway.calls_to("edit_message_caption")[0]["caption"]
        assert caption.endswith("\nlook")

    @pytest.mark.asyncio
    async def test_sticker_gets_standalone_identity_notice(self, router, gateway):
        await router.process_update(make_update(
            message_id=5, user_id=USER_ID, sticker={"file_id": "s"},
        ))
        notice = gateway.calls_to("send_message")[0]
        assert notice["chat_id"] == OWNER_ID
        assert notice["reply_to_message_id"] == 1000
        assert notice["text"].startswith("From: User1001")

    @pytest.mark.asyncio
    async def test_copy_failure_notifies_sender(self, router, gateway, stores):
        gateway.fail_on.add("copy_message")
        await router.process_update(make_update(message_id=5, user_id=USER_ID, text="hello"))
        notice = gateway.calls_to("send_message")[0]
        assert notice["chat_id"] == USER_ID
        assert "problem forwarding" in notice["text"]
        assert await stores.relay.list_keys() == []

    @pytest.mark.asyncio
    async def test_correlations_are_capped(self, router, stores):
        for message_id in range(1, 13):
            await router.process_update(
                make_update(update_id=message_id, message_id=message_id, user_id=USER_ID, text="x")
            )
        keys = await stores.relay.list_keys()
        assert len(keys) == 10
        assert keys[0] == "1002"
