"""
FastAPI application wiring WhatsApp and Telegram into one bridge process.

Orchestration layer:
- Builds the Bridge in the lifespan (store connect + load, periodic jobs).
- Uses typed schemas (pydantic) for both inbound event streams.
- Defines FastAPI routes:
  * POST /webhook/{secret}       – Telegram webhook endpoint
  * POST /whatsapp/{secret}      – WhatsApp gateway event endpoint
  * GET  /healthz                – health check
  * POST /telegram/set_webhook   – configure webhook
  * GET  /telegram/webhook_info  – inspect webhook status
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from . import telegram_api
from .bridge import Bridge
from .config import settings
from .schemas import TelegramUpdate, WaGatewayEvent
from .store import MappingStore, StoreUnavailableError

logging.basicConfig(level=logging.INFO)
log = logging.getLogger("wa-tg-bridge.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = MappingStore(settings.database_url)
    try:
        await store.connect()
    except StoreUnavailableError as e:
        log.critical("Mapping store unavailable, refusing to start: %s", e)
        raise
    await store.load_all()

    bridge = Bridge(settings, store)
    await bridge.start()
    app.state.bridge = bridge
    try:
        yield
    finally:
        await bridge.shutdown()
        app.state.bridge = None


app = FastAPI(lifespan=lifespan)


def _bridge() -> Bridge:
    bridge: Optional[Bridge] = getattr(app.state, "bridge", None)
    if bridge is None:
        raise HTTPException(status_code=503, detail="Bridge not ready")
    return bridge


def _check_secret(secret: str, expected: Optional[str], source: str) -> None:
    if expected and secret != expected:
        log.warning("Invalid %s webhook secret", source)
        raise HTTPException(status_code=403, detail="Forbidden")


# ---------------------------------------------------------------------------
# FastAPI endpoints
# ---------------------------------------------------------------------------


@app.post("/webhook/{secret}")
async def telegram_webhook(secret: str, update: TelegramUpdate):
    """
    Telegram webhook endpoint – secret is a simple path-level shared secret.

    Telegram is configured (via telegram_api.set_webhook) to call:

      PUBLIC_BASE_URL/webhook/TELEGRAM_WEBHOOK_SECRET
    """
    _check_secret(secret, settings.telegram_webhook_secret, "Telegram")
    bridge = _bridge()

    try:
        await bridge.handle_telegram_update(update)
    except Exception as e:
        log.exception("Error while handling Telegram update: %s", e)
        # Return 200 so Telegram doesn't hammer retries forever.
        return JSONResponse({"ok": False, "error": str(e)}, status_code=200)

    return {"ok": True}


@app.post("/whatsapp/{secret}")
async def whatsapp_webhook(secret: str, event: WaGatewayEvent):
    """
    Gateway event endpoint. The sidecar POSTs every socket event here as
    {"event": "<name>", "data": ...}.
    """
    _check_secret(secret, settings.whatsapp_webhook_secret, "WhatsApp")
    bridge = _bridge()

    try:
        await bridge.handle_gateway_event(event)
    except Exception as e:
        log.exception("Error while handling gateway event %s: %s", event.event, e)
        return JSONResponse({"ok": False, "error": str(e)}, status_code=200)

    return {"ok": True}


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.post("/telegram/set_webhook")
async def http_set_webhook():
    """
    Convenience endpoint to configure the Telegram webhook.

    NOTE: In production you probably want to:
      - Restrict access to this endpoint (e.g. IP allowlist, auth).
      - Or run `wa-tg-bridge set-webhook` from a one-off shell instead.
    """
    try:
        result = await telegram_api.set_webhook()
    except Exception as e:
        log.exception("Failed to set webhook: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    return result


@app.get("/telegram/webhook_info")
async def http_webhook_info():
    """
    Inspect current Telegram webhook status.

    This simply wraps telegram_api.get_webhook_info().
    """
    try:
        result = await telegram_api.get_webhook_info()
    except Exception as e:
        log.exception("Failed to get webhook info: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    return result
