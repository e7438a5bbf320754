"""
CLI interface for wa-tg-bridge management commands.

Provides command-line access to:
- serve: Run the bridge (FastAPI app under uvicorn)
- status: Display bridge configuration and status
- startup-check: Diagnose store, gateway and webhook before going live
- webhook_info: Inspect current Telegram webhook status
- set_webhook: Configure Telegram webhook
- mappings: List persisted chat <-> topic mappings
"""

import asyncio
import json
import logging
from typing import Optional

import click
import uvicorn

from . import config
from .config import settings, Settings
from .store import MappingStore, StoreUnavailableError
from .telegram_api import get_webhook_info, set_webhook, webhook_url_for
from .whatsapp_api import WhatsAppGateway

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("wa-tg-bridge.cli")


@click.group()
@click.option(
    "--config-file",
    type=click.Path(exists=True),
    help="Path to environment file with configuration",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], debug: bool) -> None:
    """WhatsApp-Telegram Bridge CLI management tool."""
    global settings

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
        log.debug("Debug mode enabled")

    # Load configuration from specified file if provided
    if config_file:
        log.info(f"Loading configuration from: {config_file}")
        from pydantic_settings import SettingsConfigDict

        class LocalSettings(Settings):
            model_config = SettingsConfigDict(
                env_file=config_file,
                env_file_encoding="utf-8",
                extra="ignore",
            )

        # Replace global settings for this CLI session
        config.settings = LocalSettings()
        settings = config.settings
        log.debug("Configuration loaded from custom file")

    # Log key configuration values (in debug mode only for security)
    log.debug("Configuration loaded:")
    log.debug(f"  telegram_bot_token: {'*' * 10 if settings.telegram_bot_token else 'None'}")
    log.debug(f"  telegram_chat_id: {settings.telegram_chat_id}")
    log.debug(f"  public_base_url: {settings.public_base_url}")
    log.debug(f"  telegram_webhook_secret: {'*' * 8 if settings.telegram_webhook_secret else 'None'}")
    log.debug(f"  whatsapp_gateway_url: {settings.whatsapp_gateway_url}")

    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--host", default="0.0.0.0", help="Bind host")
@click.option("--port", default=8000, type=int, help="Bind port")
@click.option("--reload", is_flag=True, help="Enable autoreload (dev)")
@click.option("--log-level", default="info", help="Uvicorn log level")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, reload: bool, log_level: str) -> None:
    """Run the bridge HTTP service."""
    log.info(f"Starting bridge on {host}:{port} (updates via {settings.telegram_update_mode})")
    try:
        uvicorn.run(
            "wa_tg_bridge.app:app",
            host=host,
            port=port,
            log_level=log_level,
            reload=reload,
        )
    except (KeyboardInterrupt, SystemExit):
        pass


@cli.command(name="webhook-info")
@click.option("--format", "output_format", type=click.Choice(["json", "table"]), default="table", help="Output format")
@click.pass_context
def webhook_info(ctx: click.Context, output_format: str) -> None:
    """Display current Telegram webhook information."""
    log.info("Getting webhook information")

    async def _get_webhook_info():
        try:
            info = await get_webhook_info()
            log.debug(f"Webhook info received: {info.model_dump()}")

            if output_format == "json":
                click.echo(json.dumps(info.model_dump(), indent=2))
            else:
                click.echo("Telegram Webhook Information:")
                click.echo(f"  URL: {info.url or 'Not set'}")
                click.echo(f"  Custom certificate: {info.has_custom_certificate}")
                click.echo(f"  Pending updates: {info.pending_update_count}")
                click.echo(f"  Last error date: {info.last_error_date or 'None'}")
                click.echo(f"  Last error message: {info.last_error_message or 'None'}")
                click.echo(f"  IP address: {info.ip_address or 'Not set'}")

            log.info("Webhook information retrieved successfully")

        except Exception as e:
            log.error(f"Error getting webhook info: {e}", exc_info=ctx.obj.get("debug", False))
            click.echo(f"Error getting webhook info: {e}", err=True)
            raise click.ClickException(f"Failed to get webhook info: {e}")

    asyncio.run(_get_webhook_info())


@cli.command(name="set-webhook")
@click.option("--dry-run", is_flag=True, help="Show what would be set without actually setting it")
@click.pass_context
def set_webhook_cmd(ctx: click.Context, dry_run: bool) -> None:
    """Configure Telegram webhook for this bridge."""
    log.info(f"Setting webhook (dry_run={dry_run})")

    async def _set_webhook():
        try:
            webhook_url = webhook_url_for(settings)

            if dry_run:
                click.echo(f"Would set webhook to: {webhook_url}")
                log.info("Dry run completed - no actual webhook set")
                return

            click.echo(f"Setting webhook to: {webhook_url}")
            result = await set_webhook()
            log.debug(f"set_webhook() result: {result}")

            if result.get("ok"):
                click.echo("✓ Webhook configured successfully")
                click.echo(f"  URL: {webhook_url}")
                description = result.get("description")
                if description:
                    click.echo(f"  Telegram response: {description}")
            else:
                error_msg = result.get("description", "Unknown error")
                click.echo("✗ Failed to configure webhook", err=True)
                click.echo(f"  Error: {error_msg}", err=True)
                raise click.ClickException("Webhook configuration failed")

        except click.ClickException:
            raise
        except Exception as e:
            log.error(f"Error setting webhook: {e}", exc_info=ctx.obj.get("debug", False))
            click.echo(f"Error setting webhook: {e}", err=True)
            raise click.ClickException(f"Failed to set webhook: {e}")

    asyncio.run(_set_webhook())


@cli.command(name="startup-check")
@click.option(
    "--auto-fix-webhook/--no-auto-fix-webhook",
    default=True,
    help="Automatically configure webhook if not set (webhook mode only)",
)
@click.pass_context
def startup_check_cmd(ctx: click.Context, auto_fix_webhook: bool) -> None:
    """Run startup diagnostics: Telegram, mapping store, WhatsApp gateway."""

    async def _run():
        click.echo("Running startup checks…")

        bot_token_ok = bool(settings.telegram_bot_token)
        click.echo(f"Bot token configured: {'✓' if bot_token_ok else '✗'}")
        chat_ok = bool(settings.telegram_chat_id)
        click.echo(f"Forum chat configured: {'✓' if chat_ok else '✗'}")

        # Webhook (polling mode needs none)
        polling = settings.telegram_update_mode == "polling"
        webhook_ok = polling
        webhook_error: Optional[str] = None
        if polling:
            click.echo("Webhook configured: – (polling mode)")
        elif not bot_token_ok:
            webhook_error = "Bot token missing"
        else:
            try:
                info = await get_webhook_info()
                webhook_ok = bool(info.url)
                if webhook_ok:
                    click.echo(f"Webhook configured: ✓ ({info.url})")
                else:
                    click.echo("Webhook configured: ✗")
                    if auto_fix_webhook:
                        click.echo("Attempting to configure webhook…")
                        result = await set_webhook()
                        if result.get("ok"):
                            refreshed = await get_webhook_info()
                            webhook_ok = bool(refreshed.url)
                            click.echo(
                                f"Webhook configured successfully at {refreshed.url or 'unknown URL'}"
                            )
                        else:
                            webhook_error = result.get("description", "Unknown error")
                            click.echo(f"Webhook configuration failed: {webhook_error}", err=True)
            except Exception as exc:  # pragma: no cover - logging path
                webhook_error = str(exc)
                click.echo(f"Webhook check failed: {exc}", err=True)

        # Mapping store
        store_ok = False
        store_error: Optional[str] = None
        store = MappingStore(settings.database_url)
        try:
            await store.connect()
            store_ok = True
            click.echo("Mapping store reachable: ✓")
        except StoreUnavailableError as exc:
            store_error = str(exc)
            click.echo(f"Mapping store reachable: ✗ ({exc})", err=True)
        finally:
            await store.close()

        # WhatsApp gateway
        gateway_ok = False
        gateway_error: Optional[str] = None
        try:
            user = await WhatsAppGateway.from_settings(settings).me()
            gateway_ok = True
            if user:
                click.echo(f"WhatsApp gateway: ✓ (logged in as {user.get('id', 'unknown')})")
            else:
                click.echo("WhatsApp gateway: ✓ (not logged in yet)")
        except Exception as exc:  # pragma: no cover - logging path
            gateway_error = str(exc)
            click.echo(f"WhatsApp gateway: ✗ ({exc})", err=True)

        click.echo("\nStartup summary:")
        click.echo(f"  Bot token configured: {'✓' if bot_token_ok else '✗'}")
        click.echo(f"  Forum chat configured: {'✓' if chat_ok else '✗'}")
        click.echo(f"  Webhook configured: {'✓' if webhook_ok else '✗'}")
        if webhook_error and not webhook_ok:
            click.echo(f"  Webhook error: {webhook_error}")
        click.echo(f"  Mapping store reachable: {'✓' if store_ok else '✗'}")
        if store_error:
            click.echo(f"  Mapping store error: {store_error}")
        click.echo(f"  WhatsApp gateway reachable: {'✓' if gateway_ok else '✗'}")
        if gateway_error:
            click.echo(f"  WhatsApp gateway error: {gateway_error}")

        if not (bot_token_ok and chat_ok and webhook_ok and store_ok and gateway_ok):
            raise click.ClickException("Startup check reported failures")

    asyncio.run(_run())


@cli.command()
@click.option("--limit", default=50, type=int, help="Maximum chats to list")
@click.pass_context
def mappings(ctx: click.Context, limit: int) -> None:
    """List persisted chat <-> topic mappings."""

    async def _list():
        store = MappingStore(settings.database_url)
        try:
            await store.connect()
            cache = await store.load_all()
        except StoreUnavailableError as e:
            raise click.ClickException(f"Mapping store unavailable: {e}")
        finally:
            await store.close()

        stats = store.stats()
        click.echo(
            f"Chats: {stats['chats']}  Users: {stats['users']}  Contacts: {stats['contacts']}"
        )
        chats = sorted(cache.chats.values(), key=lambda m: m.last_activity, reverse=True)
        for mapping in chats[:limit]:
            click.echo(
                f"  {mapping.whatsapp_jid} -> topic {mapping.telegram_topic_id}"
                f" (last activity {mapping.last_activity:%Y-%m-%d %H:%M})"
            )

    asyncio.run(_list())


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Display bridge configuration and current status."""
    log.info("Displaying bridge status")

    click.echo("WhatsApp-Telegram Bridge Status:")
    click.echo()

    click.echo("Configuration:")
    click.echo(f"  Bot token configured: {'✓' if settings.telegram_bot_token else '✗'}")
    click.echo(f"  Forum chat ID: {settings.telegram_chat_id or 'Not configured'}")
    click.echo(f"  Update mode: {settings.telegram_update_mode}")
    click.echo(f"  Public base URL: {settings.public_base_url or 'Not configured'}")
    click.echo(f"  Webhook secret configured: {'✓' if settings.telegram_webhook_secret else '✗'}")
    click.echo(f"  WhatsApp gateway URL: {settings.whatsapp_gateway_url}")
    click.echo(f"  Gateway secret configured: {'✓' if settings.whatsapp_webhook_secret else '✗'}")
    click.echo(f"  Database URL: {settings.database_url}")

    click.echo()
    click.echo("Features:")
    for name in config.FEATURE_FLAGS:
        click.echo(f"  {name}: {'✓' if settings.feature(name) else '✗'}")

    if settings.telegram_update_mode == "polling" or not settings.telegram_bot_token:
        return

    async def _check_webhook():
        try:
            info = await get_webhook_info()
            click.echo()
            click.echo("Webhook Status:")
            click.echo(f"  Configured URL: {info.url or 'Not set'}")

            if info.url:
                status_indicator = "✓ Active" if not info.last_error_message else "⚠ Active with errors"
                click.echo(f"  Status: {status_indicator}")
            else:
                click.echo("  Status: ✗ Not configured")

            if info.last_error_message:
                click.echo(f"  Last error: {info.last_error_message}")
                log.warning(f"Webhook last error: {info.last_error_message}")

        except Exception as e:
            click.echo()
            click.echo("Webhook Status:")
            click.echo(f"  Error checking status: {e}")
            log.error(f"Error checking webhook status: {e}", exc_info=ctx.obj.get("debug", False))

    asyncio.run(_check_webhook())


if __name__ == "__main__":
    cli()
