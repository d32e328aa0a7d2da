"""
Discord entrypoint: wires the chat core to slash commands.

Replies are plain text. Global settings are owner-only; guild settings are
open to guild administrators and the owner.
"""

import asyncio
import logging
import os
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from relaybot.chat.attachments import AttachmentFetcher
from relaybot.chat.errors import ChatError
from relaybot.chat.history import conversation_key
from relaybot.chat.service import ChatService
from relaybot.config.loader import get_config
from relaybot.config.store import ConfigStore, DEFAULT_STATE_FILE
from relaybot.discord.adapter import build_chat_request, can_manage_guild, is_owner, parse_megabytes
from relaybot.discord.errors import format_chat_error, handle_app_command_error, notify_owner_error
from relaybot.llm.errors import format_user_friendly_error, mask_api_key
from relaybot.llm.model_service import DEFAULT_MODEL, RESPONSE_TIMEOUT_SECONDS, ModelService

if os.environ.get("DEBUG"):
    logging.basicConfig(level=logging.DEBUG)
    logging.getLogger("httpx").setLevel(logging.DEBUG)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s: %(message)s")

MAX_MESSAGE_CHARS = 2000

config = get_config()

store = ConfigStore(config.get("state_file") or DEFAULT_STATE_FILE)
model_service = ModelService(
    provider_cfg=config["provider"],
    model=config.get("model") or DEFAULT_MODEL,
    system_prompt=config.get("system_prompt"),
    timeout=config.get("response_timeout_seconds", RESPONSE_TIMEOUT_SECONDS),
)
chat_service = ChatService(store, model_service, AttachmentFetcher())

logging.info(f"🚀 Bot starting | model: {model_service.model} | state: {store.path}")

intents = discord.Intents.default()
activity = discord.CustomActivity(name=(config.get("status_message") or "/chat")[:128])
discord_bot = commands.Bot(intents=intents, activity=activity, command_prefix=None)


def owner_only():
    return app_commands.check(lambda i: is_owner(config, i.user.id))


def guild_admin_only():
    return app_commands.check(lambda i: can_manage_guild(config, i))


def _mb(num_bytes: int) -> str:
    return f"{num_bytes / 1024 / 1024:.1f} MB"


def split_message(text: str, max_len: int = MAX_MESSAGE_CHARS) -> list[str]:
    return [text[i:i + max_len] for i in range(0, len(text), max_len)] or [""]


def describe_settings(interaction: discord.Interaction) -> str:
    g = store.get_global()
    eff = store.get_effective_settings(interaction.guild_id)
    lines = [
        f"**Global chat:** {'on' if g.chat_enabled else 'off (disabled by owner)'}",
        f"**Minimum interval:** {g.rate_limit_ms / 1000:.1f} s",
        f"**Default attachment limit:** {_mb(g.default_max_attachment_bytes)}"
        + (" (locked)" if g.enforce_default_max_attachment else ""),
    ]
    if interaction.guild_id is not None:
        source = {"locked": "locked by owner", "tenant": "custom", "global": "global default"}
        lines.append(f"**Chat on this server:** {'on' if eff.tenant_chat_enabled else 'off'}")
        lines.append(
            f"**Attachment limit on this server:** {_mb(eff.max_attachment_bytes)} "
            f"({source[eff.attachment_limit_source]})"
        )
    if is_owner(config, interaction.user.id):
        keys = "\n".join(f"**{i}.** {mask_api_key(k)}" for i, k in enumerate(g.api_keys, 1))
        lines.append("**API keys:**\n" + (keys or "No API key registered yet."))
    return "\n".join(lines)


# ── /chat ────────────────────────────────────────────────────────────────────

@discord_bot.tree.command(name="chat", description="Talk to the model")
@app_commands.describe(
    message="Text sent to the model",
    grounding="Enable web search for up-to-date answers",
    file1="Optional image or PDF",
    file2="Optional image or PDF",
    file3="Optional image or PDF",
)
async def chat_command(
    interaction: discord.Interaction,
    message: str = "",
    grounding: bool = False,
    file1: Optional[discord.Attachment] = None,
    file2: Optional[discord.Attachment] = None,
    file3: Optional[discord.Attachment] = None,
) -> None:
    request = build_chat_request(interaction, message, grounding, (file1, file2, file3))
    try:
        admitted = chat_service.admit(request)
    except ChatError as e:
        logging.info(f"Chat rejected (uid:{request.user_id}): {e}")
        await interaction.response.send_message(format_chat_error(e), ephemeral=True)
        return

    await interaction.response.defer(thinking=True)
    try:
        result = await chat_service.complete(admitted)
    except ChatError as e:
        logging.warning(f"Chat failed (uid:{request.user_id}): {e}")
        if e.__cause__ is not None:
            await notify_owner_error(discord_bot, config, e.__cause__, f"/chat in {interaction.channel_id}")
        await interaction.followup.send(format_chat_error(e))
        return
    except Exception as e:
        logging.exception("Unexpected /chat failure")
        await notify_owner_error(discord_bot, config, e, f"/chat in {interaction.channel_id}")
        await interaction.followup.send(format_user_friendly_error(e))
        return

    footer = "\n-# Web search enabled" if result.used_grounding else ""
    if result.attachment_summary:
        footer = f"\n-# Attachments:\n{result.attachment_summary}" + footer
    chunks = split_message(result.text + footer)
    allowed = discord.AllowedMentions.none()
    for chunk in chunks:
        await interaction.followup.send(chunk, allowed_mentions=allowed)


@discord_bot.tree.command(name="clear", description="Clear the conversation history of this channel or DM")
async def clear_command(interaction: discord.Interaction) -> None:
    chat_service.clear_history(conversation_key(interaction.channel_id, interaction.user.id))
    await interaction.response.send_message("✅ Conversation history cleared. Starting fresh!", ephemeral=True)
    logging.info(f"History cleared by {interaction.user.id} in {interaction.channel_id}")


# ── /config ──────────────────────────────────────────────────────────────────

config_group = app_commands.Group(name="config", description="Bot settings")


@config_group.command(name="show", description="Show the current settings")
async def config_show(interaction: discord.Interaction) -> None:
    await interaction.response.send_message(describe_settings(interaction), ephemeral=True)


@config_group.command(name="chat", description="Enable or disable /chat globally")
@owner_only()
async def config_chat(interaction: discord.Interaction, enabled: bool) -> None:
    chat_service.update_global({"chat_enabled": enabled})
    await interaction.response.send_message(f"Global chat {'enabled' if enabled else 'disabled'}.", ephemeral=True)


@config_group.command(name="rate-limit", description="Minimum seconds between requests per user")
@owner_only()
async def config_rate_limit(interaction: discord.Interaction, seconds: app_commands.Range[float, 0, 3600]) -> None:
    settings = chat_service.update_global({"rate_limit_ms": round(seconds * 1000)})
    await interaction.response.send_message(
        f"Minimum interval set to {settings.rate_limit_ms / 1000:.1f}s.", ephemeral=True
    )


@config_group.command(name="max-attachment", description="Default attachment size limit in MB")
@owner_only()
async def config_max_attachment(interaction: discord.Interaction, megabytes: str) -> None:
    settings = chat_service.update_global({"default_max_attachment_bytes": parse_megabytes(megabytes)})
    await interaction.response.send_message(
        f"Default attachment limit set to {_mb(settings.default_max_attachment_bytes)}.", ephemeral=True
    )


@config_group.command(name="lock-attachment", description="Force the default attachment limit on every server")
@owner_only()
async def config_lock_attachment(interaction: discord.Interaction, locked: bool) -> None:
    chat_service.update_global({"enforce_default_max_attachment": locked})
    await interaction.response.send_message(
        "Server attachment limits are now " + ("locked to the default." if locked else "allowed."), ephemeral=True
    )


@config_group.command(name="add-key", description="Register a model API key")
@owner_only()
async def config_add_key(interaction: discord.Interaction, api_key: str) -> None:
    settings = chat_service.add_credential(api_key)
    logging.info(f"API key {mask_api_key(api_key)} added by {interaction.user.id}")
    await interaction.response.send_message(f"API key added ({len(settings.api_keys)} configured).", ephemeral=True)


@config_group.command(name="remove-key", description="Remove a model API key by its number in /config show")
@owner_only()
async def config_remove_key(interaction: discord.Interaction, number: app_commands.Range[int, 1]) -> None:
    _, removed = chat_service.remove_credential_at(number - 1)
    logging.info(f"API key {mask_api_key(removed)} removed by {interaction.user.id}")
    await interaction.response.send_message(f"API key number {number} removed.", ephemeral=True)


@config_group.command(name="guild-chat", description="Enable or disable /chat on this server")
@guild_admin_only()
async def config_guild_chat(interaction: discord.Interaction, enabled: bool) -> None:
    chat_service.update_tenant(interaction.guild_id, {"chat_enabled": enabled})
    await interaction.response.send_message(
        f"Chat {'enabled' if enabled else 'disabled'} on this server.", ephemeral=True
    )


@config_group.command(name="guild-max-attachment", description="Attachment size limit in MB for this server")
@guild_admin_only()
async def config_guild_max_attachment(interaction: discord.Interaction, megabytes: str) -> None:
    if store.get_global().enforce_default_max_attachment:
        await interaction.response.send_message("The bot owner has locked the attachment limit.", ephemeral=True)
        return
    tenant = chat_service.update_tenant(interaction.guild_id, {"max_attachment_bytes": parse_megabytes(megabytes)})
    await interaction.response.send_message(
        f"Attachment limit for this server set to {_mb(tenant.max_attachment_bytes)}.", ephemeral=True
    )


@config_group.command(name="guild-clear-max-attachment", description="Use the global attachment limit on this server")
@guild_admin_only()
async def config_guild_clear_max_attachment(interaction: discord.Interaction) -> None:
    chat_service.update_tenant(interaction.guild_id, {"max_attachment_bytes": None})
    await interaction.response.send_message("This server now uses the global attachment limit.", ephemeral=True)


discord_bot.tree.add_command(config_group)


@discord_bot.tree.error
async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
    await handle_app_command_error(interaction, error, discord_bot, config)


# ── Events ───────────────────────────────────────────────────────────────────

@discord_bot.event
async def on_ready() -> None:
    if client_id := config.get("client_id"):
        logging.info(f"\n\nBOT INVITE URL:\nhttps://discord.com/oauth2/authorize?client_id={client_id}&scope=bot+applications.commands\n")
    synced = await discord_bot.tree.sync()
    logging.info(f"Synced {len(synced)} slash commands")


async def run_bot() -> None:
    try:
        await discord_bot.start(config["bot_token"])
    finally:
        await chat_service.fetcher.aclose()


def main() -> None:
    try:
        asyncio.run(run_bot())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
