"""
Media transfer between the two platforms.

- download from either side into memory
- ffmpeg conversions (audio to MP3, round video notes, animated stickers)
- Pillow fallback for stickers Telegram refuses
- upload into a Telegram topic or a WhatsApp chat

Conversions fail closed: the caller gets the original bytes (or None where
there is no sensible original) and a warning in the log. Scratch files live
in `temp_dir` only for the duration of one call.
"""

import asyncio
import io
import logging
import mimetypes
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import aiofiles
import ffmpeg
import httpx
from PIL import Image, UnidentifiedImageError

from .content import ContentKind, UnhandledContentKind, WhatsAppContent
from .schemas import TgMessage, WaSendResult
from .telegram_api import TelegramAPIError, TelegramBotAPI
from .whatsapp_api import WhatsAppGateway, WhatsAppGatewayError

log = logging.getLogger("wa-tg-bridge.media")

AUDIO_FILTER = {"vn": None, "ar": 44100, "ac": 2, "b:a": "128k"}
VIDEO_NOTE_FILTER = "scale=240:240:force_original_aspect_ratio=increase,crop=240:240"
VIDEO_NOTE_MAX_SECONDS = 60
STICKER_FILTER = (
    "scale=512:512:force_original_aspect_ratio=decrease,"
    "pad=512:512:(ow-iw)/2:(oh-ih)/2:color=0x00000000"
)
STICKER_SIZE = (512, 512)

# Containers WhatsApp plays inline without conversion
WHATSAPP_AUDIO_TYPES = ("audio/mpeg", "audio/mp3", "audio/mp4", "audio/aac", "audio/ogg")


class TranscodeError(RuntimeError):
    pass


class Transcoder:
    """Runs an ffmpeg-python stream as a non-blocking subprocess."""

    def __init__(self, binary: str = "ffmpeg"):
        self.binary = binary

    async def run(self, stream) -> None:
        args = stream.compile(cmd=self.binary, overwrite_output=True)
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise
        if proc.returncode != 0:
            tail = (stderr or b"").decode("utf-8", "replace")[-300:]
            raise TranscodeError(f"ffmpeg exited with {proc.returncode}: {tail}")


class MediaTransfer:
    def __init__(
        self,
        temp_dir: str,
        whatsapp: WhatsAppGateway,
        telegram: TelegramBotAPI,
        transcoder: Optional[Transcoder] = None,
    ):
        self.temp_dir = Path(temp_dir)
        self.whatsapp = whatsapp
        self.telegram = telegram
        self.transcoder = transcoder or Transcoder()
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    # -- scratch files ------------------------------------------------------------

    @contextmanager
    def scratch_path(self, suffix: str) -> Iterator[Path]:
        path = self.temp_dir / f"{uuid.uuid4().hex}{suffix}"
        try:
            yield path
        finally:
            path.unlink(missing_ok=True)

    async def _write(self, path: Path, data: bytes) -> None:
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)

    async def _read(self, path: Path) -> bytes:
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    def empty_temp_dir(self) -> None:
        """Remove everything under the scratch directory (shutdown)."""
        for entry in self.temp_dir.iterdir():
            if entry.is_dir():
                shutil.rmtree(entry, ignore_errors=True)
            else:
                entry.unlink(missing_ok=True)

    async def _transcode(self, data: bytes, in_suffix: str, out_suffix: str, build) -> Optional[bytes]:
        """
        Feed `data` through ffmpeg. `build(src, dst)` returns the output
        stream. Returns None on any failure; both scratch files are removed.
        """
        with self.scratch_path(in_suffix) as src, self.scratch_path(out_suffix) as dst:
            try:
                await self._write(src, data)
                await self.transcoder.run(build(str(src), str(dst)))
                output = await self._read(dst)
            except (TranscodeError, OSError) as e:
                # OSError covers a missing ffmpeg binary
                log.warning("Media conversion failed: %s", e)
                return None
        if not output:
            log.warning("Media conversion produced no output")
            return None
        return output

    # -- conversions --------------------------------------------------------------

    async def convert_audio(self, data: bytes) -> bytes:
        """Any audio to 128k stereo MP3; original bytes on failure."""
        converted = await self._transcode(
            data,
            ".audio",
            ".mp3",
            lambda src, dst: ffmpeg.input(src).output(dst, **AUDIO_FILTER),
        )
        return converted if converted is not None else data

    async def convert_to_circular_video(self, data: bytes) -> bytes:
        converted = await self._transcode(
            data,
            ".mp4",
            "_note.mp4",
            lambda src, dst: ffmpeg.input(src).output(
                dst, vf=VIDEO_NOTE_FILTER, t=VIDEO_NOTE_MAX_SECONDS, format="mp4"
            ),
        )
        return converted if converted is not None else data

    async def convert_animated_sticker(self, data: bytes) -> Optional[bytes]:
        """512x512 padded animated WebP, or None when conversion fails."""
        return await self._transcode(
            data,
            ".sticker",
            ".webp",
            lambda src, dst: ffmpeg.input(src).output(
                dst, vf=STICKER_FILTER, loop=0, an=None, vsync=0, format="webp"
            ),
        )

    async def sticker_to_png(self, data: bytes) -> Optional[bytes]:
        return await asyncio.to_thread(_sticker_to_png, data)

    # -- downloads ----------------------------------------------------------------

    async def download_whatsapp(self, content: WhatsAppContent) -> Optional[bytes]:
        if not content.is_media or content.media_node is None:
            return None
        try:
            data = await self.whatsapp.download_content(content.media_node, content.download_type)
        except (WhatsAppGatewayError, httpx.HTTPError, ValueError) as e:
            # ValueError: undecodable base64 or JSON from the gateway
            log.error("Failed to download WhatsApp %s: %s", content.kind.value, e)
            return None
        if not data:
            log.error("Empty download for WhatsApp %s", content.kind.value)
            return None
        log.info("Downloaded WhatsApp %s (%d bytes)", content.kind.value, len(data))
        return data

    async def download_telegram(self, file_id: str) -> Optional[bytes]:
        try:
            url = await self.telegram.get_file_direct_url(file_id)
            if not url:
                return None
            data = await self.telegram.download_file(url)
        except (TelegramAPIError, httpx.HTTPError) as e:
            log.error("Failed to download Telegram file: %s", e)
            return None
        return data or None

    # -- uploads ------------------------------------------------------------------

    async def upload_to_telegram(
        self,
        kind: ContentKind,
        data: bytes,
        chat_id: int,
        thread_id: Optional[int],
        caption: Optional[str] = None,
        file_name: Optional[str] = None,
        mime_type: Optional[str] = None,
        title: Optional[str] = None,
    ) -> TgMessage:
        """
        Post one attachment into a topic. Platform errors propagate so the
        relay can tell a deleted topic from a rejected file.
        """
        api = self.telegram
        common: Dict[str, Any] = {"thread_id": thread_id, "caption": caption or None}

        if kind is ContentKind.IMAGE:
            return await api.send_photo(chat_id, data, **common)
        if kind is ContentKind.VIDEO:
            return await api.send_video(chat_id, data, **common)
        if kind is ContentKind.ANIMATION:
            return await api.send_animation(chat_id, data, **common)
        if kind is ContentKind.VIDEO_NOTE:
            return await api.send_video_note(chat_id, data, thread_id=thread_id)
        if kind is ContentKind.VOICE:
            return await api.send_voice(chat_id, data, **common)
        if kind is ContentKind.AUDIO:
            return await api.send_audio(chat_id, data, title=title or "Audio", **common)
        if kind is ContentKind.DOCUMENT:
            name = file_name or "document"
            return await api.send_document(
                chat_id,
                data,
                filename=name,
                mime_type=mime_type or _guess_type(name),
                **common,
            )
        if kind is ContentKind.STICKER:
            return await api.send_sticker(chat_id, data, thread_id=thread_id)
        raise UnhandledContentKind(kind, "upload_to_telegram")

    async def upload_to_whatsapp(
        self,
        jid: str,
        kind: ContentKind,
        data: bytes,
        caption: str = "",
        view_once: bool = False,
        file_name: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> WaSendResult:
        content: Dict[str, Any]
        if kind is ContentKind.IMAGE:
            content = {"image": data, "caption": caption, "viewOnce": view_once}
        elif kind is ContentKind.VIDEO:
            content = {"video": data, "caption": caption, "viewOnce": view_once}
        elif kind is ContentKind.ANIMATION:
            content = {"video": data, "caption": caption, "gifPlayback": True, "viewOnce": view_once}
        elif kind is ContentKind.VIDEO_NOTE:
            content = {"video": data, "caption": caption, "ptv": True, "viewOnce": view_once}
        elif kind is ContentKind.VOICE:
            content = {"audio": data, "ptt": True, "mimetype": "audio/ogg; codecs=opus"}
        elif kind is ContentKind.AUDIO:
            name = file_name or "audio.mp3"
            content = {
                "audio": data,
                "mimetype": mime_type or _guess_type(name, "audio/mpeg"),
                "fileName": name,
                "caption": caption,
            }
        elif kind is ContentKind.DOCUMENT:
            name = file_name or "document"
            content = {
                "document": data,
                "fileName": name,
                "mimetype": mime_type or _guess_type(name),
                "caption": caption,
            }
        elif kind is ContentKind.STICKER:
            content = {"sticker": data}
        else:
            raise UnhandledContentKind(kind, "upload_to_whatsapp")

        return await self.whatsapp.send_message(jid, content)


def _guess_type(file_name: str, default: str = "application/octet-stream") -> str:
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or default


def _sticker_to_png(data: bytes) -> Optional[bytes]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = img.convert("RGBA").resize(STICKER_SIZE)
            out = io.BytesIO()
            img.save(out, format="PNG")
            return out.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        log.warning("Sticker to PNG conversion failed: %s", e)
        return None


def needs_audio_conversion(mime_type: Optional[str]) -> bool:
    return (mime_type or "").split(";")[0].strip().lower() not in WHATSAPP_AUDIO_TYPES
