from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Hashable, Literal


MAX_TURNS = 10  # user + model message pairs kept per conversation


@dataclass
class Turn:
    role: Literal["user", "model"]
    parts: list[dict[str, Any]] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(p["text"] for p in self.parts if p.get("type") == "text")


def conversation_key(channel_id: Hashable | None, user_id: Hashable) -> str:
    # Channels and DMs live in separate key spaces so their ids never collide.
    if channel_id is not None:
        return f"channel:{channel_id}"
    return f"dm:{user_id}"


class ConversationHistory:
    """Bounded per-conversation window of recent turns, oldest dropped first."""

    def __init__(self, max_turns: int = MAX_TURNS):
        self.max_entries = max_turns * 2
        self._histories: dict[str, list[Turn]] = {}

    def read(self, key: str) -> list[Turn]:
        return list(self._histories.get(key, ()))

    def append(self, key: str, user_turn: Turn, model_turn: Turn) -> None:
        turns = self._histories.get(key, []) + [user_turn, model_turn]
        self._histories[key] = turns[-self.max_entries:]

    def clear(self, key: str) -> None:
        self._histories.pop(key, None)

    def clear_all(self) -> None:
        self._histories.clear()

    def __len__(self) -> int:
        return len(self._histories)
