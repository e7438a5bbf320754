"""
Tests for the Telegram -> WhatsApp relay.
"""

import io

import pytest
from PIL import Image
from unittest.mock import AsyncMock, MagicMock

from wa_tg_bridge.media import MediaTransfer
from wa_tg_bridge.relay_telegram import STATUS_REPLY_MISSING, TelegramRelay
from wa_tg_bridge.schemas import (
    TgAudio,
    TgChat,
    TgContact,
    TgMessage,
    TgMessageEntity,
    TgPhotoSize,
    TgSticker,
    WaMessageKey,
    WaSendResult,
)
from wa_tg_bridge.topics import TopicManager
from wa_tg_bridge.whatsapp_api import WhatsAppGatewayError

from conftest import FORUM_CHAT_ID

JID = "15551234567@s.whatsapp.net"
STATUS_TOPIC = 42


def topic_msg(thread_id=STATUS_TOPIC, message_id=900, **fields) -> TgMessage:
    return TgMessage(
        message_id=message_id,
        chat=TgChat(id=FORUM_CHAT_ID, type="supergroup", is_forum=True),
        message_thread_id=thread_id,
        is_topic_message=True,
        **fields,
    )


@pytest.fixture
def presence():
    coordinator = MagicMock()
    coordinator.typing = AsyncMock()
    coordinator.mark_read = MagicMock()
    return coordinator


@pytest.fixture
def relay(bridge_settings, fake_telegram, fake_whatsapp, store, presence, tmp_path):
    topics = TopicManager(bridge_settings, fake_telegram, fake_whatsapp, store, probe_delay=0)
    media = MediaTransfer(str(tmp_path / "scratch"), fake_whatsapp, fake_telegram)
    return TelegramRelay(bridge_settings, fake_telegram, fake_whatsapp, topics, media, presence)


class TestText:
    @pytest.mark.asyncio
    async def test_text_relayed_with_thumbs_up(
        self, relay, store, fake_telegram, fake_whatsapp, presence
    ):
        await store.upsert_chat(JID, 50)
        msg = topic_msg(thread_id=50, text="hello")

        assert await relay.handle_message(msg) is True
        fake_whatsapp.send_message.assert_awaited_once_with(JID, {"text": "hello"})
        fake_telegram.set_message_reaction.assert_awaited_once_with(FORUM_CHAT_ID, 900, "👍")
        presence.typing.assert_awaited_once_with(JID)
        (jid, keys), _ = presence.mark_read.call_args
        assert jid == JID and keys[0].id == "SENT1"

    @pytest.mark.asyncio
    async def test_spoiler_text_marked(self, relay, store, fake_whatsapp):
        await store.upsert_chat(JID, 50)
        msg = topic_msg(
            thread_id=50, text="secret", entities=[TgMessageEntity(type="spoiler", length=6)]
        )
        await relay.handle_message(msg)
        fake_whatsapp.send_message.assert_awaited_once_with(JID, {"text": "🫥 secret"})

    @pytest.mark.asyncio
    async def test_unacknowledged_send_gets_cross(self, relay, store, fake_telegram, fake_whatsapp, presence):
        await store.upsert_chat(JID, 50)
        fake_whatsapp.send_message.return_value = WaSendResult()

        assert await relay.handle_message(topic_msg(thread_id=50, text="hello")) is False
        fake_telegram.set_message_reaction.assert_awaited_once_with(FORUM_CHAT_ID, 900, "❌")
        presence.mark_read.assert_not_called()

    @pytest.mark.asyncio
    async def test_gateway_failure_gets_cross(self, relay, store, fake_telegram, fake_whatsapp):
        await store.upsert_chat(JID, 50)
        fake_whatsapp.send_message.side_effect = WhatsAppGatewayError("/messages/send", 503, "offline")

        assert await relay.handle_message(topic_msg(thread_id=50, text="hello")) is False
        fake_telegram.set_message_reaction.assert_awaited_once_with(FORUM_CHAT_ID, 900, "❌")

    @pytest.mark.asyncio
    async def test_unmapped_topic_ignored(self, relay, fake_whatsapp, fake_telegram):
        assert await relay.handle_message(topic_msg(thread_id=999, text="hello")) is False
        fake_whatsapp.send_message.assert_not_called()
        fake_telegram.set_message_reaction.assert_not_called()


class TestStatusReplies:
    @pytest.mark.asyncio
    async def test_reply_routed_to_status_author(
        self, relay, store, fake_telegram, fake_whatsapp, presence
    ):
        """A reply in the status topic goes to whoever posted the status."""
        await store.upsert_chat("status@broadcast", STATUS_TOPIC)
        relay.topics.status_index.remember(
            555, WaMessageKey(remote_jid="status@broadcast", id="ST1", participant=JID)
        )
        msg = topic_msg(
            text="nice!",
            reply_to_message=TgMessage(message_id=555, chat=TgChat(id=FORUM_CHAT_ID, type="supergroup")),
        )

        assert await relay.handle_message(msg) is True
        fake_whatsapp.send_message.assert_awaited_once_with(JID, {"text": "nice!"})
        fake_telegram.set_message_reaction.assert_awaited_once_with(FORUM_CHAT_ID, 900, "✅")
        presence.mark_read.assert_not_called()

    @pytest.mark.asyncio
    async def test_reply_to_unknown_status(self, relay, store, fake_telegram, fake_whatsapp):
        await store.upsert_chat("status@broadcast", STATUS_TOPIC)
        msg = topic_msg(
            text="nice!",
            reply_to_message=TgMessage(message_id=556, chat=TgChat(id=FORUM_CHAT_ID, type="supergroup")),
        )

        assert await relay.handle_message(msg) is False
        fake_telegram.send_message.assert_awaited_once_with(
            FORUM_CHAT_ID, STATUS_REPLY_MISSING, thread_id=STATUS_TOPIC
        )
        fake_whatsapp.send_message.assert_not_called()


class TestMedia:
    @pytest.mark.asyncio
    async def test_spoiler_photo_is_view_once(self, relay, store, fake_whatsapp):
        await store.upsert_chat(JID, 50)
        msg = topic_msg(
            thread_id=50,
            photo=[TgPhotoSize(file_id="p", width=10, height=10)],
            caption="psst",
            has_media_spoiler=True,
        )
        assert await relay.handle_message(msg) is True
        fake_whatsapp.send_message.assert_awaited_once_with(
            JID, {"image": b"telegram-bytes", "caption": "psst", "viewOnce": True}
        )

    @pytest.mark.asyncio
    async def test_unusual_audio_converted_to_mp3(self, relay, store, fake_whatsapp):
        await store.upsert_chat(JID, 50)
        relay.media.convert_audio = AsyncMock(return_value=b"mp3-bytes")
        msg = topic_msg(
            thread_id=50,
            audio=TgAudio(file_id="a", file_name="song.flac", mime_type="audio/flac"),
        )

        assert await relay.handle_message(msg) is True
        _, content = fake_whatsapp.send_message.call_args.args
        assert content["audio"] == b"mp3-bytes"
        assert content["mimetype"] == "audio/mpeg"
        assert content["fileName"] == "song.mp3"

    @pytest.mark.asyncio
    async def test_contact_sent_as_vcard(self, relay, store, fake_whatsapp):
        await store.upsert_chat(JID, 50)
        msg = topic_msg(
            thread_id=50, contact=TgContact(phone_number="+4915111", first_name="Bernd")
        )

        assert await relay.handle_message(msg) is True
        _, content = fake_whatsapp.send_message.call_args.args
        assert content["contacts"]["displayName"] == "Bernd"
        assert "TEL;TYPE=CELL:+4915111" in content["contacts"]["contacts"][0]["vcard"]

    @pytest.mark.asyncio
    async def test_rejected_sticker_posted_back_as_png(
        self, relay, store, fake_telegram, fake_whatsapp
    ):
        await store.upsert_chat(JID, 50)
        out = io.BytesIO()
        Image.new("RGBA", (64, 64)).save(out, format="PNG")
        fake_telegram.download_file.return_value = out.getvalue()
        fake_whatsapp.send_message.side_effect = WhatsAppGatewayError("/messages/send", 400, "bad sticker")

        msg = topic_msg(thread_id=50, sticker=TgSticker(file_id="s"))
        assert await relay.handle_message(msg) is False

        fake_telegram.send_photo.assert_awaited_once()
        args, kwargs = fake_telegram.send_photo.call_args
        assert kwargs["caption"] == "Sticker (fallback)"
        assert kwargs["thread_id"] == 50
        fake_telegram.set_message_reaction.assert_awaited_once_with(FORUM_CHAT_ID, 900, "❌")

    @pytest.mark.asyncio
    async def test_service_message_not_relayed(self, relay, store, fake_whatsapp, presence):
        await store.upsert_chat(JID, 50)
        assert await relay.handle_message(topic_msg(thread_id=50)) is False
        fake_whatsapp.send_message.assert_not_called()
        presence.typing.assert_not_called()
