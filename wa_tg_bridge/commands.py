"""
Operator command console in the bot's private chat.

Commands are `/name arg arg ...`; anything unknown shows the menu. Every
handler replies in the chat it was invoked from.
"""

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional

from .config import FEATURE_FLAGS
from .message_parser import format_phone, to_user_jid
from .schemas import TgMessage

if TYPE_CHECKING:
    from .bridge import Bridge

log = logging.getLogger("wa-tg-bridge.commands")

BOT_COMMANDS = [
    {"command": "start", "description": "Show bot info"},
    {"command": "status", "description": "Show bridge status"},
    {"command": "settings", "description": "Open settings panel"},
    {"command": "whatsapp", "description": "WhatsApp bot settings"},
    {"command": "bridge", "description": "Bridge configuration"},
    {"command": "send", "description": "Send WhatsApp message"},
    {"command": "sync", "description": "Sync WhatsApp contacts"},
    {"command": "contacts", "description": "View WhatsApp contacts"},
    {"command": "searchcontact", "description": "Search WhatsApp contacts"},
    {"command": "updatetopics", "description": "Update topic names"},
    {"command": "config", "description": "Configure features"},
]

FEATURE_LABELS = {
    "statusSync": "📊 Status Sync",
    "profilePicSync": "📸 Profile Pic Sync",
    "autoUpdateContactNames": "🔄 Auto Update Contacts",
    "autoUpdateTopicNames": "📝 Auto Update Topics",
    "readReceipts": "📖 Read Receipts",
    "presenceUpdates": "👁️ Presence Updates",
    "biDirectional": "🔄 Bi-Directional",
    "callLogs": "📞 Call Logs",
}

FEATURE_HELP = {
    "statusSync": "Sync WhatsApp status updates",
    "profilePicSync": "Sync profile picture updates",
    "autoUpdateContactNames": "Auto update contact names",
    "autoUpdateTopicNames": "Auto update topic names",
    "readReceipts": "Send read receipts",
    "presenceUpdates": "Send presence updates",
    "biDirectional": "Enable bi-directional messaging",
    "callLogs": "Enable call notifications",
}

MENU = (
    "ℹ️ *Available Commands*\n\n"
    "🏠 *Main Commands:*\n"
    "/start - Show bot info\n"
    "/status - Show bridge status\n"
    "/settings - Open settings panel\n\n"
    "🤖 *WhatsApp Commands:*\n"
    "/send <number> <msg> - Send WhatsApp message\n"
    "/sync - Sync WhatsApp contacts\n"
    "/contacts - View WhatsApp contacts\n"
    "/searchcontact <name/phone> - Search contacts\n\n"
    "🌉 *Bridge Commands:*\n"
    "/whatsapp - WhatsApp bot settings\n"
    "/bridge - Bridge configuration\n"
    "/updatetopics - Update topic names\n"
    "/config <feature> <value> - Configure features"
)


def _tick(enabled: bool) -> str:
    return "✅" if enabled else "❌"


class CommandConsole:
    def __init__(self, bridge: "Bridge"):
        self.bridge = bridge
        self._handlers: Dict[str, Callable[[int, List[str]], Awaitable[None]]] = {
            "/start": self.cmd_start,
            "/status": self.cmd_status,
            "/send": self.cmd_send,
            "/sync": self.cmd_sync,
            "/contacts": self.cmd_contacts,
            "/searchcontact": self.cmd_search_contact,
            "/updatetopics": self.cmd_update_topics,
            "/settings": self.cmd_settings,
            "/whatsapp": self.cmd_whatsapp,
            "/bridge": self.cmd_bridge,
            "/config": self.cmd_config,
        }

    @property
    def settings(self):
        return self.bridge.settings

    async def reply(self, chat_id: int, text: str, markdown: bool = True) -> None:
        await self.bridge.telegram.send_message(
            chat_id, text, parse_mode="Markdown" if markdown else None
        )

    async def handle(self, msg: TgMessage) -> bool:
        """Run the command in `msg`; False when the text is not a command."""
        text = (msg.text or "").strip()
        if not text.startswith("/"):
            return False

        command, *args = text.split()
        # "/status@MyBot" in groups
        command = command.split("@", 1)[0].lower()
        handler = self._handlers.get(command, self.cmd_menu)
        chat_id = msg.chat.id
        try:
            await handler(chat_id, args)
        except Exception as e:
            log.exception("Error handling command %s: %s", command, e)
            await self.reply(chat_id, f"❌ Command error: {e}", markdown=False)
        return True

    async def register_commands(self) -> bool:
        try:
            await self.bridge.telegram.set_my_commands(BOT_COMMANDS)
        except Exception as e:
            log.error("Failed to register Telegram bot commands: %s", e)
            return False
        log.info("Telegram bot commands registered")
        return True

    # -- info panels --------------------------------------------------------------

    def _feature_lines(self, names: Optional[List[str]] = None) -> str:
        names = names or list(FEATURE_FLAGS)
        return "\n".join(
            f"• {FEATURE_LABELS[name]}: {_tick(self.settings.feature(name))}" for name in names
        )

    def _connection(self) -> str:
        return "✅ Connected" if self.bridge.whatsapp_connected else "❌ Disconnected"

    async def cmd_start(self, chat_id: int, args: List[str]) -> None:
        stats = self.bridge.store.stats()
        await self.reply(
            chat_id,
            "🤖 *WhatsApp-Telegram Bridge*\n\n"
            f"Status: {'✅ Ready' if self.bridge.started else '⏳ Initializing...'}\n"
            f"Linked Chats: {stats['chats']}\n"
            f"Contacts: {stats['contacts']}\n"
            f"Users: {stats['users']}\n\n"
            "Use /settings to configure the bridge",
        )

    async def cmd_status(self, chat_id: int, args: List[str]) -> None:
        stats = self.bridge.store.stats()
        user = self.bridge.whatsapp_user or {}
        await self.reply(
            chat_id,
            "📊 *Bridge Status*\n\n"
            f"🔗 WhatsApp: {self._connection()}\n"
            f"👤 User: {user.get('name') or 'Unknown'}\n"
            f"💬 Chats: {stats['chats']}\n"
            f"👥 Users: {stats['users']}\n"
            f"📞 Contacts: {stats['contacts']}\n\n"
            "🎛️ *Feature Status:*\n"
            + self._feature_lines(
                ["statusSync", "profilePicSync", "autoUpdateContactNames", "autoUpdateTopicNames", "callLogs"]
            ),
        )

    async def cmd_settings(self, chat_id: int, args: List[str]) -> None:
        await self.reply(
            chat_id,
            "⚙️ *Settings Panel*\n\n"
            "Choose a category to configure:\n\n"
            "🤖 /whatsapp - WhatsApp Bot Settings\n"
            "🌉 /bridge - Bridge Settings\n"
            "🔧 /config - View/Edit Configuration\n\n"
            "📊 Current Status:\n"
            f"• WhatsApp: {self._connection()}\n"
            f"• Bridge: {'✅ Active' if self.bridge.started else '❌ Inactive'}\n"
            f"• Contacts: {self.bridge.store.stats()['contacts']} synced",
        )

    async def cmd_whatsapp(self, chat_id: int, args: List[str]) -> None:
        user = self.bridge.whatsapp_user or {}
        await self.reply(
            chat_id,
            "🤖 *WhatsApp Bot Settings*\n\n"
            f"📱 *Connection Status:* {self._connection()}\n"
            f"👤 *User:* {user.get('name') or 'Not connected'}\n"
            f"🔢 *User ID:* {user.get('id') or 'N/A'}\n\n"
            "⚙️ *Available Commands:*\n"
            "• /sync - Force sync contacts\n"
            "• /send <number> <message> - Send message\n"
            "• /contacts - View all contacts\n"
            "• /searchcontact <query> - Search contacts\n\n"
            "🔧 *Configuration:*\n"
            f"• Gateway: {self.settings.whatsapp_gateway_url}",
        )

    async def cmd_bridge(self, chat_id: int, args: List[str]) -> None:
        stats = self.bridge.store.stats()
        await self.reply(
            chat_id,
            "🌉 *Bridge Settings*\n\n"
            f"🔗 *Status:* {'✅ Active' if self.bridge.started else '❌ Inactive'}\n"
            f"💬 *Mapped Chats:* {stats['chats']}\n"
            f"👥 *Users:* {stats['users']}\n"
            f"📞 *Contacts:* {stats['contacts']}\n\n"
            "🎛️ *Feature Status:*\n"
            + self._feature_lines()
            + "\n\n⚙️ *Management Commands:*\n"
            "• /updatetopics - Update all topic names\n"
            "• /sync - Sync WhatsApp contacts\n"
            "• /config <feature> <true/false> - Toggle features",
        )

    async def cmd_menu(self, chat_id: int, args: List[str]) -> None:
        await self.reply(chat_id, MENU)

    # -- actions ------------------------------------------------------------------

    async def cmd_send(self, chat_id: int, args: List[str]) -> None:
        if len(args) < 2:
            await self.reply(
                chat_id,
                "❌ Usage: /send <number> <message>\nExample: /send 1234567890 Hello!",
                markdown=False,
            )
            return

        number, text = args[0], " ".join(args[1:])
        result = await self.bridge.whatsapp.send_message(to_user_jid(number), {"text": text})
        if result.key is not None and result.key.id:
            await self.reply(chat_id, f"✅ Message sent to {number}", markdown=False)
        else:
            await self.reply(chat_id, "⚠️ Message sent but no confirmation", markdown=False)

    async def cmd_sync(self, chat_id: int, args: List[str]) -> None:
        await self.reply(chat_id, "🔄 Syncing contacts...")
        await self.bridge.contacts.sync()
        await self.reply(
            chat_id,
            f"✅ Synced contacts from WhatsApp (Total: {self.bridge.store.stats()['contacts']})",
        )

    async def cmd_contacts(self, chat_id: int, args: List[str]) -> None:
        total = self.bridge.store.stats()["contacts"]
        if not total:
            await self.reply(chat_id, "📞 No contacts found")
            return
        lines = self.bridge.contacts.listing(limit=50)
        await self.reply(
            chat_id,
            f"📞 Contacts ({total} total, showing first {len(lines)})\n\n" + "\n".join(lines),
            markdown=False,
        )

    async def cmd_search_contact(self, chat_id: int, args: List[str]) -> None:
        if not args:
            await self.reply(
                chat_id,
                "❌ Usage: /searchcontact <name or phone>\nExample: /searchcontact John",
                markdown=False,
            )
            return

        query = " ".join(args)
        matches = self.bridge.contacts.search(query, limit=20)
        if not matches:
            await self.reply(chat_id, f'❌ No contacts found for "{query}"', markdown=False)
            return
        body = "\n".join(f"📱 {name} ({format_phone(phone)})" for phone, name in matches)
        await self.reply(chat_id, f"🔍 Search Results ({len(matches)} found)\n\n{body}", markdown=False)

    async def cmd_update_topics(self, chat_id: int, args: List[str]) -> None:
        await self.reply(chat_id, "📝 Updating topic names...")
        count = await self.bridge.topics.update_topic_names()
        await self.reply(chat_id, f"✅ Updated {count} topic names")

    async def cmd_config(self, chat_id: int, args: List[str]) -> None:
        if not args:
            features = "\n".join(f"• {name} - {FEATURE_HELP[name]}" for name in FEATURE_FLAGS)
            await self.reply(
                chat_id,
                "🔧 Configuration\n\n"
                "Usage: /config <feature> <value>\n\n"
                f"📊 Available Features:\n{features}\n\n"
                "📝 Examples:\n"
                "• /config statusSync true\n"
                "• /config profilePicSync false",
                markdown=False,
            )
            return

        if len(args) != 2:
            await self.reply(chat_id, "❌ Usage: /config <feature> <true/false>", markdown=False)
            return

        feature, value = args
        if feature not in FEATURE_FLAGS:
            await self.reply(
                chat_id,
                f"❌ Invalid feature. Valid features: {', '.join(FEATURE_FLAGS)}",
                markdown=False,
            )
            return

        enabled = value.lower() == "true"
        self.settings.set_feature(feature, enabled)
        log.info("Feature %s set to %s", feature, enabled)
        await self.reply(
            chat_id,
            f"✅ Set {feature} to {'✅ enabled' if enabled else '❌ disabled'}",
            markdown=False,
        )
