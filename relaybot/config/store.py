"""
Persisted runtime settings: global owner settings layered with per-guild
overrides, plus the API key list.

The whole state is one YAML document, read lazily on first access and
rewritten in full on every mutation. Callers only ever see copies.
"""

from __future__ import annotations

import copy
import logging
import math
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from relaybot.chat.errors import (
    DuplicateCredential,
    EmptyCredential,
    IndexOutOfRange,
    InvalidArgument,
    PersistenceFailure,
)


logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "bot-state.yaml"

DEFAULT_RATE_LIMIT_MS = 10_000
MAX_RATE_LIMIT_MS = 3_600_000
DEFAULT_MAX_ATTACHMENT_BYTES = 8 * 1024 * 1024
MIN_ATTACHMENT_BYTES = 1024


@dataclass
class GlobalSettings:
    chat_enabled: bool = True
    rate_limit_ms: int = DEFAULT_RATE_LIMIT_MS
    default_max_attachment_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES
    enforce_default_max_attachment: bool = False
    api_keys: list[str] = field(default_factory=list)


@dataclass
class TenantSettings:
    chat_enabled: bool = True
    max_attachment_bytes: Optional[int] = None  # None = inherit global default


@dataclass(frozen=True)
class EffectiveSettings:
    chat_enabled: bool
    global_chat_enabled: bool
    tenant_chat_enabled: bool
    max_attachment_bytes: int
    rate_limit_ms: int
    attachment_limit_locked: bool
    attachment_limit_source: str  # "global", "locked" or "tenant"


def resolve_settings(
    global_settings: GlobalSettings, tenant: TenantSettings | None
) -> EffectiveSettings:
    """
    Combine the global layer with one guild layer.

    The owner's enforcement flag always wins over a guild override, even one
    set before the flag was turned on.
    """
    tenant_chat = tenant.chat_enabled if tenant else True
    override = tenant.max_attachment_bytes if tenant else None

    if global_settings.enforce_default_max_attachment:
        max_bytes, source = global_settings.default_max_attachment_bytes, "locked"
    elif override is None:
        max_bytes, source = global_settings.default_max_attachment_bytes, "global"
    else:
        max_bytes, source = override, "tenant"

    return EffectiveSettings(
        chat_enabled=global_settings.chat_enabled and tenant_chat,
        global_chat_enabled=global_settings.chat_enabled,
        tenant_chat_enabled=tenant_chat,
        max_attachment_bytes=max_bytes,
        rate_limit_ms=global_settings.rate_limit_ms,
        attachment_limit_locked=global_settings.enforce_default_max_attachment,
        attachment_limit_source=source,
    )


# ── Field sanitizers ────────────────────────────────────────────────────────
# Each returns None when the value is unusable so the field is left untouched.

def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _clamp_rate_limit(value: Any) -> int | None:
    number = _as_number(value)
    if number is None:
        return None
    return min(MAX_RATE_LIMIT_MS, max(0, round(number)))


def _clamp_attachment_bytes(value: Any) -> int | None:
    number = _as_number(value)
    if number is None:
        return None
    return max(MIN_ATTACHMENT_BYTES, round(number))


def _clean_api_keys(value: Any) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        return None
    keys: list[str] = []
    for item in value:
        key = item.strip() if isinstance(item, str) else ""
        if key and key not in keys:
            keys.append(key)
    return keys


def _apply_global(target: GlobalSettings, partial: Any) -> GlobalSettings:
    if not isinstance(partial, dict):
        return target
    if isinstance(partial.get("chat_enabled"), bool):
        target.chat_enabled = partial["chat_enabled"]
    if (rate := _clamp_rate_limit(partial.get("rate_limit_ms"))) is not None:
        target.rate_limit_ms = rate
    if (size := _clamp_attachment_bytes(partial.get("default_max_attachment_bytes"))) is not None:
        target.default_max_attachment_bytes = size
    if isinstance(partial.get("enforce_default_max_attachment"), bool):
        target.enforce_default_max_attachment = partial["enforce_default_max_attachment"]
    if (keys := _clean_api_keys(partial.get("api_keys"))) is not None:
        target.api_keys = keys
    return target


def _apply_tenant(target: TenantSettings, partial: Any) -> TenantSettings:
    if not isinstance(partial, dict):
        return target
    if isinstance(partial.get("chat_enabled"), bool):
        target.chat_enabled = partial["chat_enabled"]
    if "max_attachment_bytes" in partial:
        raw = partial["max_attachment_bytes"]
        if raw is None:
            target.max_attachment_bytes = None
        elif (size := _clamp_attachment_bytes(raw)) is not None:
            target.max_attachment_bytes = size
    return target


def _tenant_key(tenant_id: Any) -> str:
    key = "" if tenant_id is None else str(tenant_id).strip()
    if not key:
        raise InvalidArgument("a guild id is required")
    return key


# ── Store ───────────────────────────────────────────────────────────────────

class ConfigStore:
    """
    Process-wide settings store backed by a single YAML file.

    Mutations update the in-memory copy first and then rewrite the file; a
    failed write raises PersistenceFailure but the new values stay active.
    """

    def __init__(self, path: str | Path = DEFAULT_STATE_FILE):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._global: GlobalSettings | None = None
        self._tenants: dict[str, TenantSettings] = {}

    # ── Loading / persistence ───────────────────────────────────────────────

    def _ensure_loaded(self) -> None:
        if self._global is not None:
            return
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
            if not isinstance(data, dict):
                raise ValueError(f"state root must be a mapping, got {type(data).__name__}")
        except FileNotFoundError:
            logger.info("Settings file %s not found, writing defaults", self.path)
            self._reset_to_defaults()
            return
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.warning("Failed to load %s, using defaults: %s", self.path, e)
            self._reset_to_defaults()
            return

        self._global = _apply_global(GlobalSettings(), data.get("global"))
        self._tenants = {}
        guilds = data.get("guilds")
        if isinstance(guilds, dict):
            for tenant_id, raw in guilds.items():
                if str(tenant_id).strip():
                    self._tenants[str(tenant_id).strip()] = _apply_tenant(TenantSettings(), raw)

    def _reset_to_defaults(self) -> None:
        self._global = GlobalSettings()
        self._tenants = {}
        try:
            self._write()
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not write default settings to %s: %s", self.path, e)

    def _write(self) -> None:
        document = {
            "global": asdict(self._global),
            "guilds": {k: asdict(v) for k, v in sorted(self._tenants.items())},
        }
        text = yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
        self.path.write_text(text, encoding="utf-8")

    def _persist(self) -> None:
        try:
            self._write()
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to persist settings to %s: %s", self.path, e)
            raise PersistenceFailure(str(self.path), str(e)) from e

    # ── Reads ───────────────────────────────────────────────────────────────

    def get_global(self) -> GlobalSettings:
        with self._lock:
            self._ensure_loaded()
            return copy.deepcopy(self._global)

    def get_tenant(self, tenant_id: Any) -> TenantSettings:
        key = _tenant_key(tenant_id)
        with self._lock:
            self._ensure_loaded()
            return copy.deepcopy(self._tenants.setdefault(key, TenantSettings()))

    def get_effective_settings(self, tenant_id: Any = None) -> EffectiveSettings:
        """Never fails; DMs (no guild) resolve against the global layer only."""
        with self._lock:
            self._ensure_loaded()
            key = "" if tenant_id is None else str(tenant_id).strip()
            tenant = self._tenants.setdefault(key, TenantSettings()) if key else None
            return resolve_settings(self._global, tenant)

    # ── Mutations ───────────────────────────────────────────────────────────

    def update_global(self, partial: dict[str, Any]) -> GlobalSettings:
        with self._lock:
            self._ensure_loaded()
            _apply_global(self._global, partial)
            self._persist()
            return copy.deepcopy(self._global)

    def update_tenant(self, tenant_id: Any, partial: dict[str, Any]) -> TenantSettings:
        key = _tenant_key(tenant_id)
        with self._lock:
            self._ensure_loaded()
            tenant = _apply_tenant(self._tenants.setdefault(key, TenantSettings()), partial)
            self._persist()
            return copy.deepcopy(tenant)

    def add_credential(self, api_key: Any) -> GlobalSettings:
        trimmed = api_key.strip() if isinstance(api_key, str) else ""
        if not trimmed:
            raise EmptyCredential()
        with self._lock:
            self._ensure_loaded()
            if trimmed in self._global.api_keys:
                raise DuplicateCredential()
            self._global.api_keys.append(trimmed)
            self._persist()
            return copy.deepcopy(self._global)

    def remove_credential_at(self, index: Any) -> tuple[GlobalSettings, str]:
        with self._lock:
            self._ensure_loaded()
            keys = self._global.api_keys
            if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(keys):
                raise IndexOutOfRange(index, len(keys))
            removed = keys.pop(index)
            self._persist()
            return copy.deepcopy(self._global), removed
