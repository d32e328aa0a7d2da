"""
relaybot/llm/model_service.py

Gemini calls through the OpenAI-compatible endpoint, one AsyncOpenAI client
per API key, with key rotation handled by CredentialPool.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Sequence

from openai import AsyncOpenAI

from relaybot.chat.history import Turn

from .credentials import CredentialPool


DEFAULT_MODEL = "gemini-2.5-pro"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
RESPONSE_TIMEOUT_SECONDS = 60


@dataclass
class ModelReply:
    text: str
    used_grounding: bool = False


def build_openai_client(provider_cfg: dict, api_key: str) -> AsyncOpenAI:
    return AsyncOpenAI(
        base_url=provider_cfg.get("base_url") or DEFAULT_BASE_URL,
        api_key=api_key,
        default_headers=provider_cfg.get("extra_headers"),
    )


def build_extra_body(provider_cfg: dict, use_grounding: bool) -> dict | None:
    base = provider_cfg.get("extra_body") or {}
    grounding = (provider_cfg.get("grounding_extra_body") or {}) if use_grounding else {}
    merged = base | grounding
    return merged if merged else None


def to_openai_messages(
    history: Sequence[Turn], user_turn: Turn, system_prompt: str | None = None
) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for turn in [*history, user_turn]:
        if turn.role == "model":
            messages.append({"role": "assistant", "content": turn.text})
        else:
            messages.append({"role": "user", "content": list(turn.parts)})
    return messages


class ModelService:
    def __init__(
        self,
        provider_cfg: dict,
        model: str = DEFAULT_MODEL,
        pool: CredentialPool | None = None,
        system_prompt: str | None = None,
        timeout: float = RESPONSE_TIMEOUT_SECONDS,
    ):
        self.provider_cfg = provider_cfg
        self.model = model
        self.system_prompt = system_prompt
        self.timeout = timeout
        self.pool = pool or CredentialPool(lambda key: build_openai_client(provider_cfg, key))

    async def generate(
        self,
        api_keys: Sequence[str],
        history: Sequence[Turn],
        user_turn: Turn,
        use_grounding: bool = False,
    ) -> ModelReply:
        messages = to_openai_messages(history, user_turn, self.system_prompt)
        extra_body = build_extra_body(self.provider_cfg, use_grounding)

        async def _call(client: AsyncOpenAI) -> str:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self.model, messages=messages, extra_body=extra_body
                ),
                timeout=self.timeout,
            )
            choice = response.choices[0] if response.choices else None
            return (choice.message.content or "") if choice else ""

        text = await self.pool.dispatch(api_keys, _call)
        return ModelReply(text=text.strip(), used_grounding=use_grounding)
