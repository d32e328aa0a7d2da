"""
Chat request pipeline.

A ChatRequest passes a fixed series of gates (chat enabled, keys present,
non-empty, attachment policy, cooldown) before any network work starts.
Once the cooldown slot is taken, any later failure gives it back.

The admin operations that have to keep the key pool and the cooldown
ledger in step with the stored settings also live here.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Optional, Protocol

from relaybot.config.store import ConfigStore, GlobalSettings, TenantSettings
from relaybot.llm.credentials import CredentialPool
from relaybot.llm.model_service import ModelReply

from .attachments import (
    AttachmentDescriptor,
    summarize_attachments,
    to_content_part,
    validate_declared,
    validate_downloaded,
)
from .errors import ChatDisabled, EmptyRequest, NoCredentialsConfigured, RateLimited
from .history import ConversationHistory, Turn, conversation_key
from .rate_limiter import RateLimiter


EMPTY_REPLY_TEXT = "I couldn't come up with an answer right now."


@dataclass
class ChatRequest:
    user_id: Hashable
    prompt: str = ""
    tenant_id: Optional[Hashable] = None
    channel_id: Optional[Hashable] = None
    use_grounding: bool = False
    attachments: list[AttachmentDescriptor] = field(default_factory=list)


@dataclass
class ChatResult:
    text: str
    used_grounding: bool
    attachment_summary: str = ""
    attachment_names: list[str] = field(default_factory=list)


@dataclass
class AdmittedChat:
    """A request that passed every gate and holds its user's cooldown slot."""

    request: ChatRequest
    prompt: str
    api_keys: list[str]
    max_bytes: int
    mime_types: list[str]


class Fetcher(Protocol):
    async def fetch(self, descriptor: AttachmentDescriptor) -> bytes: ...


class Generator(Protocol):
    pool: CredentialPool

    async def generate(self, api_keys, history, user_turn, use_grounding=False) -> ModelReply: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChatService:
    def __init__(
        self,
        store: ConfigStore,
        model: Generator,
        fetcher: Fetcher,
        rate_limiter: RateLimiter | None = None,
        history: ConversationHistory | None = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store = store
        self.model = model
        self.fetcher = fetcher
        self.rate_limiter = rate_limiter or RateLimiter()
        self.history = history or ConversationHistory()
        self.clock = clock

    @property
    def pool(self) -> CredentialPool:
        return self.model.pool

    # ── /chat ───────────────────────────────────────────────────────────────

    def admit(self, request: ChatRequest) -> AdmittedChat:
        """
        Run every check that needs no I/O and take the user's cooldown slot.

        Raises the first failing gate's ChatError; nothing is recorded unless
        all of them pass.
        """
        settings = self.store.get_effective_settings(request.tenant_id)
        if not settings.global_chat_enabled:
            raise ChatDisabled("global")
        if not settings.chat_enabled:
            raise ChatDisabled("tenant")

        api_keys = self.store.get_global().api_keys
        if not api_keys:
            raise NoCredentialsConfigured()

        prompt = (request.prompt or "").strip()
        if not prompt and not request.attachments:
            raise EmptyRequest()

        max_bytes = settings.max_attachment_bytes
        mime_types = [validate_declared(a, max_bytes) for a in request.attachments]

        admission = self.rate_limiter.try_admit(request.user_id, self.clock(), settings.rate_limit_ms)
        if not admission.admitted:
            raise RateLimited(admission.retry_after_s)

        return AdmittedChat(request, prompt, api_keys, max_bytes, mime_types)

    async def complete(self, admitted: AdmittedChat) -> ChatResult:
        """Download attachments, call the model and record the exchange."""
        request = admitted.request
        key = conversation_key(request.channel_id, request.user_id)
        try:
            parts: list[dict[str, Any]] = (
                [{"type": "text", "text": admitted.prompt}] if admitted.prompt else []
            )
            for descriptor, mime_type in zip(request.attachments, admitted.mime_types):
                data = await self.fetcher.fetch(descriptor)
                validate_downloaded(descriptor.name, data, admitted.max_bytes)
                parts.append(to_content_part(mime_type, data))

            user_turn = Turn("user", parts)
            reply = await self.model.generate(
                admitted.api_keys, self.history.read(key), user_turn, request.use_grounding
            )
        except BaseException:
            self.rate_limiter.release(request.user_id)
            raise

        text = reply.text or EMPTY_REPLY_TEXT
        self.history.append(key, user_turn, Turn("model", [{"type": "text", "text": text}]))

        names = [a.name for a in request.attachments]
        logging.info(
            "Chat served (uid:%s, guild:%s, att:%d, grounding:%s)",
            request.user_id, request.tenant_id, len(names), reply.used_grounding,
        )
        return ChatResult(
            text=text,
            used_grounding=reply.used_grounding,
            attachment_summary=summarize_attachments(names),
            attachment_names=names,
        )

    async def handle(self, request: ChatRequest) -> ChatResult:
        return await self.complete(self.admit(request))

    def clear_history(self, key: str | None = None) -> None:
        if key is None:
            self.history.clear_all()
        else:
            self.history.clear(key)

    # ── Admin operations ────────────────────────────────────────────────────

    def _sync_pool(self) -> None:
        self.pool.sync(len(self.store.get_global().api_keys))

    def update_global(self, partial: dict[str, Any]) -> GlobalSettings:
        before = self.store.get_global()
        try:
            return self.store.update_global(partial)
        finally:
            after = self.store.get_global()
            if after.rate_limit_ms != before.rate_limit_ms:
                self.rate_limiter.clear()
            if after.api_keys != before.api_keys:
                for key in set(before.api_keys) - set(after.api_keys):
                    self.pool.evict(key)
                self._sync_pool()

    def update_tenant(self, tenant_id: Hashable, partial: dict[str, Any]) -> TenantSettings:
        return self.store.update_tenant(tenant_id, partial)

    def add_credential(self, api_key: str) -> GlobalSettings:
        try:
            return self.store.add_credential(api_key)
        finally:
            self._sync_pool()

    def remove_credential_at(self, index: int) -> tuple[GlobalSettings, str]:
        before = self.store.get_global().api_keys
        try:
            return self.store.remove_credential_at(index)
        finally:
            after = self.store.get_global().api_keys
            if len(after) < len(before):
                self.pool.credential_removed(before[index], index, len(after))
