#!/usr/bin/env python3
"""
wa_tg_bridge – WhatsApp ↔ Telegram forum-topic bridge.

Public modules:
- wa_tg_bridge.app            – FastAPI app & routing
- wa_tg_bridge.bridge         – component wiring, event routing, periodic jobs
- wa_tg_bridge.cli            – click management commands
- wa_tg_bridge.config         – Settings via pydantic-settings
- wa_tg_bridge.schemas        – Pydantic models (Telegram + gateway events)
- wa_tg_bridge.content        – normalized message content
- wa_tg_bridge.message_parser
- wa_tg_bridge.store          – durable chat/user/contact mappings
- wa_tg_bridge.topics         – forum topic lifecycle
- wa_tg_bridge.contacts       – contact name resolution
- wa_tg_bridge.media          – downloads, uploads, ffmpeg conversions
- wa_tg_bridge.presence       – typing indicators & read receipts
- wa_tg_bridge.leases         – short-lived per-message locks
- wa_tg_bridge.relay_whatsapp – WhatsApp → Telegram
- wa_tg_bridge.relay_telegram – Telegram → WhatsApp
- wa_tg_bridge.commands       – private-chat command console
- wa_tg_bridge.telegram_api
- wa_tg_bridge.whatsapp_api
"""
# This file mainly exists to mark the package and for docs.
