"""
Translation between Discord interactions and the chat core's plain types.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Optional

import discord

from relaybot.chat.attachments import AttachmentDescriptor
from relaybot.chat.errors import InvalidArgument
from relaybot.chat.service import ChatRequest


def descriptor_from_attachment(attachment: discord.Attachment) -> AttachmentDescriptor:
    return AttachmentDescriptor(
        name=attachment.filename,
        url=attachment.url,
        size=attachment.size,
        content_type=attachment.content_type,
    )


def build_chat_request(
    interaction: discord.Interaction,
    prompt: str,
    use_grounding: bool = False,
    attachments: Iterable[Optional[discord.Attachment]] = (),
) -> ChatRequest:
    return ChatRequest(
        user_id=interaction.user.id,
        tenant_id=interaction.guild_id,
        channel_id=interaction.channel_id,
        prompt=prompt or "",
        use_grounding=bool(use_grounding),
        attachments=[descriptor_from_attachment(a) for a in attachments if a is not None],
    )


def parse_megabytes(raw: Any) -> int:
    """'8', '8.5' or '8,5' (MB) -> bytes."""
    try:
        megabytes = float(str(raw).strip().replace(",", "."))
    except ValueError:
        raise InvalidArgument(f"'{raw}' is not a number of megabytes") from None
    if not math.isfinite(megabytes) or megabytes <= 0:
        raise InvalidArgument(f"'{raw}' is not a positive number of megabytes")
    return round(megabytes * 1024 * 1024)


def is_owner(config: dict[str, Any], user_id: int) -> bool:
    owner_id = str(config.get("owner_id") or "").strip()
    return bool(owner_id) and owner_id == str(user_id)


def can_manage_guild(config: dict[str, Any], interaction: discord.Interaction) -> bool:
    if interaction.guild_id is None:
        return False
    perms = interaction.permissions
    return is_owner(config, interaction.user.id) or bool(perms and perms.administrator)
