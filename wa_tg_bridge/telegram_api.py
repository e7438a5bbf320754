"""
Telegram HTTP API helpers.

Responsibilities:
- Use Settings for configuration.
- Provide a small Bot API client for the calls the bridge needs:
  * messages and media into forum topics (send*)
  * forum topic management (createForumTopic / editForumTopic)
  * reactions, chat actions, pins
  * file download (getFile + file URL)
  * getUpdates / setWebhook / getWebhookInfo / setMyCommands
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from . import config
from .schemas import TelegramUpdate, TelegramWebhookInfo, TgForumTopic, TgMessage

log = logging.getLogger("wa-tg-bridge.telegram")

TELEGRAM_API_BASE = "https://api.telegram.org"

# Descriptions Telegram uses when a forum thread no longer exists
_TOPIC_MISSING_MARKERS = ("thread not found", "topic_deleted", "topic_id_invalid")

MediaInput = Union[bytes, str]


class TelegramAPIError(Exception):
    """A Bot API call answered with ok=false."""

    def __init__(self, method: str, error_code: Optional[int], description: str):
        super().__init__(f"{method} failed ({error_code}): {description}")
        self.method = method
        self.error_code = error_code
        self.description = description or ""

    @property
    def topic_missing(self) -> bool:
        if self.error_code != 400:
            return False
        desc = self.description.lower()
        return any(marker in desc for marker in _TOPIC_MISSING_MARKERS)


class TelegramBotAPI:
    """Thin async wrapper over the Bot API, one httpx client per call."""

    def __init__(self, token: Optional[str], api_base: str = TELEGRAM_API_BASE):
        self.token = token
        self.api_base = api_base.rstrip("/")

    @classmethod
    def from_settings(cls, settings=None) -> "TelegramBotAPI":
        settings = settings or config.settings
        return cls(settings.telegram_bot_token, settings.telegram_api_base)

    def _ensure_bot_token(self) -> str:
        if not self.token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN is not set; cannot call Telegram API.")
        return self.token

    def _bot_url(self, method: str) -> str:
        token = self._ensure_bot_token()
        return f"{self.api_base}/bot{token}/{method.lstrip('/')}"

    def file_url(self, file_path: str) -> str:
        return f"{self.api_base}/file/bot{self._ensure_bot_token()}/{file_path}"

    async def call(
        self,
        method: str,
        payload: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        timeout: float = 30.0,
    ) -> Any:
        """
        Invoke a Bot API method and return its `result`.

        Multipart is used when `files` is given; every other call is JSON.
        """
        url = self._bot_url(method)
        body = {k: v for k, v in (payload or {}).items() if v is not None}

        async with httpx.AsyncClient() as client:
            if files:
                form = {k: v if isinstance(v, str) else _form_value(v) for k, v in body.items()}
                resp = await client.post(url, data=form, files=files, timeout=timeout)
            else:
                resp = await client.post(url, json=body, timeout=timeout)

        try:
            data = resp.json()
        except ValueError:
            resp.raise_for_status()
            raise TelegramAPIError(method, resp.status_code, "non-JSON response")

        if not data.get("ok"):
            raise TelegramAPIError(
                method, data.get("error_code"), data.get("description", "")
            )
        return data.get("result")

    # -- messages ----------------------------------------------------------

    async def send_message(
        self,
        chat_id: int,
        text: str,
        thread_id: Optional[int] = None,
        parse_mode: Optional[str] = None,
    ) -> TgMessage:
        result = await self.call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "message_thread_id": thread_id,
                "parse_mode": parse_mode,
            },
        )
        return TgMessage.model_validate(result)

    async def send_media(
        self,
        method: str,
        field: str,
        chat_id: int,
        media: MediaInput,
        *,
        filename: str = "file",
        mime_type: Optional[str] = None,
        thread_id: Optional[int] = None,
        caption: Optional[str] = None,
        **extra: Any,
    ) -> TgMessage:
        """
        Send one media item. `media` is raw bytes (uploaded as multipart) or
        a URL / file_id string passed through as-is.
        """
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "message_thread_id": thread_id,
            "caption": caption or None,
            **extra,
        }
        if isinstance(media, str):
            payload[field] = media
            result = await self.call(method, payload, timeout=60.0)
        else:
            files = {field: (filename, media, mime_type or "application/octet-stream")}
            result = await self.call(method, payload, files=files, timeout=120.0)
        return TgMessage.model_validate(result)

    async def send_photo(self, chat_id, photo: MediaInput, **kwargs) -> TgMessage:
        kwargs.setdefault("filename", "photo.jpg")
        kwargs.setdefault("mime_type", "image/jpeg")
        return await self.send_media("sendPhoto", "photo", chat_id, photo, **kwargs)

    async def send_video(self, chat_id, video: MediaInput, **kwargs) -> TgMessage:
        kwargs.setdefault("filename", "video.mp4")
        kwargs.setdefault("mime_type", "video/mp4")
        return await self.send_media("sendVideo", "video", chat_id, video, **kwargs)

    async def send_animation(self, chat_id, animation: MediaInput, **kwargs) -> TgMessage:
        kwargs.setdefault("filename", "animation.mp4")
        kwargs.setdefault("mime_type", "video/mp4")
        return await self.send_media("sendAnimation", "animation", chat_id, animation, **kwargs)

    async def send_video_note(self, chat_id, video_note: MediaInput, **kwargs) -> TgMessage:
        kwargs.setdefault("filename", "video_note.mp4")
        kwargs.setdefault("mime_type", "video/mp4")
        kwargs.pop("caption", None)  # video notes carry no caption
        return await self.send_media("sendVideoNote", "video_note", chat_id, video_note, **kwargs)

    async def send_audio(self, chat_id, audio: MediaInput, **kwargs) -> TgMessage:
        kwargs.setdefault("filename", "audio.mp3")
        kwargs.setdefault("mime_type", "audio/mpeg")
        return await self.send_media("sendAudio", "audio", chat_id, audio, **kwargs)

    async def send_voice(self, chat_id, voice: MediaInput, **kwargs) -> TgMessage:
        kwargs.setdefault("filename", "voice.ogg")
        kwargs.setdefault("mime_type", "audio/ogg")
        return await self.send_media("sendVoice", "voice", chat_id, voice, **kwargs)

    async def send_document(self, chat_id, document: MediaInput, **kwargs) -> TgMessage:
        return await self.send_media("sendDocument", "document", chat_id, document, **kwargs)

    async def send_sticker(self, chat_id, sticker: MediaInput, **kwargs) -> TgMessage:
        kwargs.setdefault("filename", "sticker.webp")
        kwargs.setdefault("mime_type", "image/webp")
        kwargs.pop("caption", None)
        return await self.send_media("sendSticker", "sticker", chat_id, sticker, **kwargs)

    async def send_location(
        self, chat_id: int, latitude: float, longitude: float, thread_id: Optional[int] = None
    ) -> TgMessage:
        result = await self.call(
            "sendLocation",
            {
                "chat_id": chat_id,
                "latitude": latitude,
                "longitude": longitude,
                "message_thread_id": thread_id,
            },
        )
        return TgMessage.model_validate(result)

    async def send_contact(
        self,
        chat_id: int,
        phone_number: str,
        first_name: str,
        thread_id: Optional[int] = None,
    ) -> TgMessage:
        result = await self.call(
            "sendContact",
            {
                "chat_id": chat_id,
                "phone_number": phone_number,
                "first_name": first_name,
                "message_thread_id": thread_id,
            },
        )
        return TgMessage.model_validate(result)

    # -- topics, reactions, actions ----------------------------------------

    async def create_forum_topic(
        self, chat_id: int, name: str, icon_color: Optional[int] = None
    ) -> TgForumTopic:
        result = await self.call(
            "createForumTopic",
            {"chat_id": chat_id, "name": name[:128], "icon_color": icon_color},
        )
        return TgForumTopic.model_validate(result)

    async def edit_forum_topic(self, chat_id: int, thread_id: int, name: str) -> bool:
        return bool(
            await self.call(
                "editForumTopic",
                {"chat_id": chat_id, "message_thread_id": thread_id, "name": name[:128]},
            )
        )

    async def send_chat_action(
        self, chat_id: int, action: str = "typing", thread_id: Optional[int] = None
    ) -> bool:
        return bool(
            await self.call(
                "sendChatAction",
                {"chat_id": chat_id, "action": action, "message_thread_id": thread_id},
                timeout=10.0,
            )
        )

    async def set_message_reaction(self, chat_id: int, message_id: int, emoji: str) -> bool:
        return bool(
            await self.call(
                "setMessageReaction",
                {
                    "chat_id": chat_id,
                    "message_id": message_id,
                    "reaction": [{"type": "emoji", "emoji": emoji}],
                },
                timeout=10.0,
            )
        )

    async def pin_chat_message(self, chat_id: int, message_id: int) -> bool:
        return bool(
            await self.call(
                "pinChatMessage",
                {"chat_id": chat_id, "message_id": message_id, "disable_notification": True},
            )
        )

    async def set_my_commands(self, commands: List[Dict[str, str]]) -> bool:
        return bool(await self.call("setMyCommands", {"commands": commands}))

    # -- files ---------------------------------------------------------------

    async def get_file_direct_url(self, file_id: str) -> Optional[str]:
        """
        Given a Telegram file_id, return a direct HTTPS URL for that file.

        Note:
          - This URL is temporary and should be used only to download once.
        """
        try:
            result = await self.call("getFile", {"file_id": file_id}, timeout=10.0)
        except TelegramAPIError as e:
            log.warning("getFile failed: %s", e)
            return None
        file_path = (result or {}).get("file_path")
        if not file_path:
            return None
        return self.file_url(file_path)

    async def download_file(self, file_url: str) -> bytes:
        """Download a Telegram file via HTTPS."""
        async with httpx.AsyncClient() as client:
            resp = await client.get(file_url, timeout=60.0)
            resp.raise_for_status()
            return resp.content

    # -- updates / webhook ----------------------------------------------------

    async def get_updates(self, offset: int = 0, timeout: int = 25) -> List[TelegramUpdate]:
        result = await self.call(
            "getUpdates",
            {"offset": offset, "timeout": timeout, "allowed_updates": ["message"]},
            timeout=timeout + 10.0,
        )
        return [TelegramUpdate.model_validate(item) for item in result or []]

    async def set_webhook(self, url: str) -> Dict[str, Any]:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                self._bot_url("setWebhook"),
                data={"url": url, "allowed_updates": '["message"]'},
                timeout=10.0,
            )
            resp.raise_for_status()
            return resp.json()

    async def get_webhook_info(self) -> TelegramWebhookInfo:
        async with httpx.AsyncClient() as client:
            resp = await client.get(self._bot_url("getWebhookInfo"), timeout=10.0)
            resp.raise_for_status()
            data = resp.json()
            log.info("Webhook info: %s", data)
            return TelegramWebhookInfo.model_validate(data.get("result") or {})


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


async def set_webhook() -> Dict[str, Any]:
    """
    Configure Telegram webhook to point to this service.

    Requires:
      - TELEGRAM_BOT_TOKEN
      - PUBLIC_BASE_URL
      - TELEGRAM_WEBHOOK_SECRET

    This is the programmatic equivalent of the curl command:

      curl "https://api.telegram.org/botTOKEN/setWebhook" \
           -d "url=https://your-domain.example/webhook/SECRET"
    """
    settings = config.settings
    api = TelegramBotAPI.from_settings(settings)
    api._ensure_bot_token()

    if not settings.public_base_url:
        raise RuntimeError("PUBLIC_BASE_URL is not set; cannot compute webhook URL.")
    if not settings.telegram_webhook_secret:
        raise RuntimeError(
            "TELEGRAM_WEBHOOK_SECRET is not set; webhook would be unprotected."
        )

    webhook_url = webhook_url_for(settings)
    log.info("Setting Telegram webhook to: %s", webhook_url)

    data = await api.set_webhook(webhook_url)
    if not data.get("ok"):
        log.error("Failed to set webhook: %s", data)
    else:
        log.info("Webhook set response: %s", data)
    return data


async def get_webhook_info() -> TelegramWebhookInfo:
    """
    Inspect current webhook status from Telegram.

    Returns TelegramWebhookInfo model.
    """
    api = TelegramBotAPI.from_settings()
    api._ensure_bot_token()
    return await api.get_webhook_info()


def webhook_url_for(settings) -> str:
    base = str(settings.public_base_url).rstrip("/")
    return f"{base}/webhook/{settings.telegram_webhook_secret}"
