# == tests/test_message_parser.py ==
from wa_tg_bridge.content import ContentKind
from wa_tg_bridge.schemas import (
    TelegramUpdate,
    TgChat,
    TgMessage,
    TgMessageEntity,
    TgPhotoSize,
    TgSticker,
    TgVoice,
    TgAudio,
    TgContact,
    TgLocation,
)
from wa_tg_bridge import message_parser


def topic_message(**fields):
    return TgMessage(
        message_id=7,
        chat=TgChat(id=-100, type="supergroup", is_forum=True),
        message_thread_id=42,
        is_topic_message=True,
        **fields,
    )


# ---------------------------------------------------------------------------
# JIDs
# ---------------------------------------------------------------------------


def test_phone_from_jid_drops_device_suffix():
    assert message_parser.phone_from_jid("15551234567:12@s.whatsapp.net") == "15551234567"
    assert message_parser.phone_from_jid("15551234567@s.whatsapp.net") == "15551234567"


def test_jid_predicates():
    assert message_parser.is_group_jid("1203630@g.us")
    assert message_parser.is_user_jid("1555@s.whatsapp.net")
    assert message_parser.is_reserved_jid("status@broadcast")
    assert message_parser.is_reserved_jid("call@broadcast")
    assert not message_parser.is_reserved_jid("1555@s.whatsapp.net")


def test_to_user_jid_strips_formatting():
    assert message_parser.to_user_jid("+1 (555) 123-4567") == "15551234567@s.whatsapp.net"
    assert message_parser.to_user_jid("1203630@g.us") == "1203630@g.us"


# ---------------------------------------------------------------------------
# WhatsApp classification
# ---------------------------------------------------------------------------


def test_classify_whatsapp_text_and_extended_text(make_wa_message):
    plain = message_parser.classify_whatsapp(make_wa_message(text="hi"))
    assert plain.kind is ContentKind.TEXT
    assert plain.text == "hi"

    extended = message_parser.classify_whatsapp(
        make_wa_message(message={"extendedTextMessage": {"text": "with link"}})
    )
    assert extended.kind is ContentKind.TEXT
    assert extended.text == "with link"


def test_classify_whatsapp_image_keeps_caption(make_wa_message):
    content = message_parser.classify_whatsapp(
        make_wa_message(message={"imageMessage": {"caption": "look", "mimetype": "image/jpeg"}})
    )
    assert content.kind is ContentKind.IMAGE
    assert content.text == "look"
    assert content.download_type == "image"
    assert content.is_media


def test_classify_whatsapp_round_video_wins_over_video(make_wa_message):
    content = message_parser.classify_whatsapp(
        make_wa_message(message={"videoMessage": {"ptv": True, "mimetype": "video/mp4"}})
    )
    assert content.kind is ContentKind.VIDEO_NOTE


def test_classify_whatsapp_gif_video(make_wa_message):
    content = message_parser.classify_whatsapp(
        make_wa_message(message={"videoMessage": {"gifPlayback": True}})
    )
    assert content.kind is ContentKind.VIDEO
    assert content.gif_playback is True


def test_classify_whatsapp_voice_vs_audio(make_wa_message):
    voice = message_parser.classify_whatsapp(
        make_wa_message(message={"audioMessage": {"ptt": True}})
    )
    audio = message_parser.classify_whatsapp(
        make_wa_message(message={"audioMessage": {"mimetype": "audio/mpeg"}})
    )
    assert voice.kind is ContentKind.VOICE
    assert audio.kind is ContentKind.AUDIO


def test_classify_whatsapp_unwraps_ephemeral(make_wa_message):
    content = message_parser.classify_whatsapp(
        make_wa_message(
            message={
                "ephemeralMessage": {
                    "message": {"documentMessage": {"fileName": "a.pdf", "caption": "doc"}}
                }
            }
        )
    )
    assert content.kind is ContentKind.DOCUMENT
    assert content.file_name == "a.pdf"
    assert content.text == "doc"


def test_classify_whatsapp_location_and_contact(make_wa_message):
    location = message_parser.classify_whatsapp(
        make_wa_message(
            message={"locationMessage": {"degreesLatitude": 52.5, "degreesLongitude": 13.4}}
        )
    )
    assert location.kind is ContentKind.LOCATION
    assert (location.latitude, location.longitude) == (52.5, 13.4)

    contact = message_parser.classify_whatsapp(
        make_wa_message(
            message={
                "contactMessage": {
                    "displayName": "Alice",
                    "vcard": "BEGIN:VCARD\nTEL;type=CELL;waid=4915:+49 15 123\nEND:VCARD",
                }
            }
        )
    )
    assert contact.kind is ContentKind.CONTACT
    assert contact.contact_name == "Alice"
    assert contact.contact_phone == "+49 15 123"


def test_classify_whatsapp_sticker_defaults_to_webp(make_wa_message):
    content = message_parser.classify_whatsapp(make_wa_message(message={"stickerMessage": {}}))
    assert content.kind is ContentKind.STICKER
    assert content.mime_type == "image/webp"


def test_classify_whatsapp_unknown_payload_is_unsupported(make_wa_message):
    content = message_parser.classify_whatsapp(
        make_wa_message(message={"protocolMessage": {"type": 0}})
    )
    assert content.kind is ContentKind.UNSUPPORTED


# ---------------------------------------------------------------------------
# Telegram classification
# ---------------------------------------------------------------------------


def test_extract_message_entity_prefers_message():
    msg = TgMessage(message_id=1, chat=TgChat(id=1, type="private"), text="dm")
    update = TelegramUpdate(update_id=1, message=msg)
    assert message_parser.extract_message_entity(update) is msg
    assert message_parser.extract_message_entity(TelegramUpdate(update_id=2)) is None


def test_find_photo_with_max_size_returns_largest():
    msg = topic_message(
        photo=[
            TgPhotoSize(file_id="small", width=90, height=90),
            TgPhotoSize(file_id="large", width=1280, height=720),
            TgPhotoSize(file_id="medium", width=320, height=320),
        ]
    )
    assert message_parser.find_photo_with_max_size(msg).file_id == "large"


def test_is_forum_topic_message():
    assert message_parser.is_forum_topic_message(topic_message(text="x"))
    general = TgMessage(message_id=1, chat=TgChat(id=-100, type="supergroup"), text="x")
    assert not message_parser.is_forum_topic_message(general)


def test_classify_telegram_text_with_spoiler():
    msg = topic_message(
        text="secret", entities=[TgMessageEntity(type="spoiler", offset=0, length=6)]
    )
    content = message_parser.classify_telegram(msg)
    assert content.kind is ContentKind.TEXT
    assert content.spoiler is True


def test_classify_telegram_photo_with_media_spoiler():
    msg = topic_message(
        photo=[TgPhotoSize(file_id="p1", width=10, height=10)],
        caption="hidden",
        has_media_spoiler=True,
    )
    content = message_parser.classify_telegram(msg)
    assert content.kind is ContentKind.IMAGE
    assert content.file_id == "p1"
    assert content.text == "hidden"
    assert content.spoiler is True


def test_classify_telegram_voice_audio_sticker():
    assert message_parser.classify_telegram(
        topic_message(voice=TgVoice(file_id="v"))
    ).kind is ContentKind.VOICE

    audio = message_parser.classify_telegram(
        topic_message(audio=TgAudio(file_id="a", mime_type="audio/flac", title="Song"))
    )
    assert audio.kind is ContentKind.AUDIO
    assert audio.title == "Song"

    sticker = message_parser.classify_telegram(
        topic_message(sticker=TgSticker(file_id="s", is_animated=True))
    )
    assert sticker.kind is ContentKind.STICKER
    assert sticker.animated is True


def test_classify_telegram_location_and_contact():
    location = message_parser.classify_telegram(
        topic_message(location=TgLocation(latitude=1.5, longitude=2.5))
    )
    assert location.kind is ContentKind.LOCATION

    contact = message_parser.classify_telegram(
        topic_message(contact=TgContact(phone_number="+1555", first_name="Bob"))
    )
    assert contact.kind is ContentKind.CONTACT
    assert contact.contact == {"first_name": "Bob", "last_name": "", "phone_number": "+1555"}


def test_classify_telegram_service_message_is_unsupported():
    assert message_parser.classify_telegram(topic_message()).kind is ContentKind.UNSUPPORTED


def test_build_vcard():
    vcard = message_parser.build_vcard("Bob", "Smith", "+1555")
    assert vcard.startswith("BEGIN:VCARD")
    assert "FN:Bob Smith" in vcard
    assert "TEL;TYPE=CELL:+1555" in vcard
    assert message_parser.parse_vcard_phone(vcard) == "+1555"
