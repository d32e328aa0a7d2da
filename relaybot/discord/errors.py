from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

import discord

from relaybot.chat import errors as chat_errors
from relaybot.llm.errors import parse_error_message


def _mb(num_bytes: int) -> str:
    return f"{num_bytes / 1024 / 1024:.1f}"


def format_chat_error(error: chat_errors.ChatError) -> str:
    """
    User-facing text for a classified chat/config failure.
    """
    if isinstance(error, chat_errors.ChatDisabled):
        if error.scope == "global":
            return "/chat has been disabled globally by the bot owner."
        return "/chat has been disabled on this server."
    if isinstance(error, chat_errors.NoCredentialsConfigured):
        return "No model API key is configured. Add one with /config add-key to enable chat."
    if isinstance(error, chat_errors.EmptyRequest):
        return "Send a message or attach a valid file to talk to the model."
    if isinstance(error, chat_errors.AttachmentTooLarge):
        return f"The file {error.filename} exceeds the {_mb(error.max_bytes)} MB limit."
    if isinstance(error, chat_errors.AttachmentUnsupportedType):
        return f"The file type {error.mime_type} is not supported. Send images or PDFs."
    if isinstance(error, chat_errors.AttachmentTooLargeAfterDownload):
        return f"The file {error.filename} exceeds the allowed limit after download."
    if isinstance(error, chat_errors.AttachmentDownloadFailed):
        return f"Could not download {error.filename}. Please try again."
    if isinstance(error, chat_errors.RateLimited):
        return f"Wait {error.retry_after_s}s before sending another message."
    if isinstance(error, chat_errors.AllCredentialsExhausted):
        return "None of the configured API keys could be used. Check them with /config show."
    if isinstance(error, chat_errors.PersistenceFailure):
        return "The change is active but could not be saved to disk; it will be lost on restart."
    if isinstance(error, chat_errors.DuplicateCredential):
        return "This API key is already registered."
    if isinstance(error, chat_errors.EmptyCredential):
        return "The API key cannot be empty."
    if isinstance(error, chat_errors.IndexOutOfRange):
        return "No API key found at that position. Use the number shown by /config show."
    if isinstance(error, chat_errors.InvalidArgument):
        return f"Invalid value: {error}"
    return "Sorry, something went wrong. Please try again in a moment."


async def notify_owner_error(
    discord_bot: discord.Client,
    config: dict[str, Any],
    error: BaseException,
    context: str = "",
) -> None:
    """
    Send a concise error notification to the bot owner.
    """
    try:
        owner_id = config.get("owner_id")
        if not owner_id:
            return

        msg = (
            "🤖 **Bot Error Notification**\n"
            f"⏰ Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"📝 Context: {context}\n\nError: {parse_error_message(error)}"
        )
        try:
            user = discord_bot.get_user(int(owner_id)) or await discord_bot.fetch_user(int(owner_id))
            await user.send(msg)
        except Exception as e:  # noqa: BLE001
            logging.warning("Could not notify owner %s: %s", owner_id, e)
    except Exception as e:  # noqa: BLE001
        logging.warning("Failed to notify owner: %s", e)


async def send_ephemeral(interaction: discord.Interaction, content: str) -> None:
    if not interaction.response.is_done():
        await interaction.response.send_message(content, ephemeral=True)
    else:
        await interaction.followup.send(content, ephemeral=True)


async def handle_app_command_error(
    interaction: discord.Interaction,
    error: Exception,
    discord_bot: discord.Client,
    config: dict[str, Any],
) -> None:
    """
    Standard handler for slash command errors.
    """
    original = getattr(error, "original", error)
    if isinstance(original, chat_errors.ChatError):
        logging.info("Command %s rejected: %s", getattr(interaction.command, "name", "unknown"), original)
        content = format_chat_error(original)
    elif isinstance(error, discord.app_commands.CheckFailure):
        content = "You don't have permission to use this command."
    else:
        logging.exception("App command error: %s", error)
        await notify_owner_error(
            discord_bot,
            config,
            original,
            f"App command error: {getattr(interaction.command, 'name', 'unknown')}",
        )
        content = "An error occurred while running this command; the owner has been notified."
    try:
        await send_ephemeral(interaction, content)
    except discord.HTTPException as e:
        logging.warning("Failed to send error reply: %s", e)
