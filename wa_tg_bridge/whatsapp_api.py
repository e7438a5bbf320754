"""
WhatsApp gateway HTTP client.

The WhatsApp Web session itself lives in a small sidecar (a Baileys socket)
which POSTs socket events to `/whatsapp/{secret}` and exposes the calls below
over REST. Binary content travels base64-encoded in both directions.
"""

import base64
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from . import config
from .schemas import WaChat, WaContact, WaGroupMetadata, WaMessageKey, WaSendResult

log = logging.getLogger("wa-tg-bridge.whatsapp")


class WhatsAppGatewayError(Exception):
    """The gateway answered with a non-2xx status or an error body."""

    def __init__(self, path: str, status_code: Optional[int], detail: str):
        super().__init__(f"gateway {path} failed ({status_code}): {detail}")
        self.path = path
        self.status_code = status_code
        self.detail = detail


def _encode_content(content: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in content.items():
        if isinstance(value, (bytes, bytearray)):
            out[key] = {"base64": base64.b64encode(bytes(value)).decode("ascii")}
        else:
            out[key] = value
    return out


class WhatsAppGateway:
    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings=None) -> "WhatsAppGateway":
        settings = settings or config.settings
        return cls(settings.whatsapp_gateway_url, settings.whatsapp_gateway_token)

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient() as client:
            if method == "GET":
                resp = await client.get(
                    url, params=params, headers=self._headers(), timeout=timeout or self.timeout
                )
            else:
                resp = await client.post(
                    url, json=payload or {}, headers=self._headers(), timeout=timeout or self.timeout
                )

        if resp.status_code >= 400:
            raise WhatsAppGatewayError(path, resp.status_code, resp.text[:500])
        if not resp.content:
            return None
        data = resp.json()
        if isinstance(data, dict) and data.get("error"):
            raise WhatsAppGatewayError(path, resp.status_code, str(data["error"]))
        return data

    # -- session ----------------------------------------------------------------

    async def me(self) -> Optional[Dict[str, Any]]:
        """Identity of the logged-in account, None while not connected."""
        data = await self._request("GET", "/me")
        return (data or {}).get("user")

    # -- messages ---------------------------------------------------------------

    async def send_message(self, jid: str, content: Dict[str, Any]) -> WaSendResult:
        """
        Send one message. `content` uses the socket's own shape, e.g.
        {"text": ...}, {"image": <bytes>, "caption": ...}, {"location": {...}}.
        """
        data = await self._request(
            "POST",
            "/messages/send",
            {"jid": jid, "content": _encode_content(content)},
            timeout=120.0,
        )
        return WaSendResult.model_validate(data or {})

    async def download_content(self, media_node: Dict[str, Any], media_type: str) -> bytes:
        data = await self._request(
            "POST",
            "/media/download",
            {"message": media_node, "type": media_type},
            timeout=120.0,
        )
        encoded = (data or {}).get("base64")
        if not encoded:
            raise WhatsAppGatewayError("/media/download", None, "empty media payload")
        return base64.b64decode(encoded)

    async def read_messages(self, keys: List[WaMessageKey]) -> None:
        await self._request(
            "POST", "/messages/read", {"keys": [key.to_wire() for key in keys]}
        )

    async def send_presence_update(self, presence: str, jid: Optional[str] = None) -> None:
        await self._request("POST", "/presence", {"type": presence, "jid": jid}, timeout=10.0)

    # -- lookups ----------------------------------------------------------------

    async def group_metadata(self, jid: str) -> WaGroupMetadata:
        data = await self._request("GET", f"/groups/{quote(jid)}")
        return WaGroupMetadata.model_validate(data or {"id": jid})

    async def profile_picture_url(self, jid: str) -> Optional[str]:
        data = await self._request(
            "GET", f"/profile-picture/{quote(jid)}", params={"type": "image"}
        )
        return (data or {}).get("url")

    async def fetch_status(self, jid: str) -> Optional[str]:
        data = await self._request("GET", f"/status/{quote(jid)}")
        return (data or {}).get("status")

    async def contacts(self) -> List[WaContact]:
        """Contacts currently held in the gateway's in-memory store."""
        data = await self._request("GET", "/contacts")
        return [WaContact.model_validate(item) for item in data or []]

    async def fetch_contacts(self) -> List[WaContact]:
        """Contacts fetched fresh from WhatsApp by the gateway."""
        data = await self._request("GET", "/contacts/fetch", timeout=60.0)
        return [WaContact.model_validate(item) for item in data or []]

    async def chats(self) -> List[WaChat]:
        data = await self._request("GET", "/chats")
        return [WaChat.model_validate(item) for item in data or []]
