"""
YAML configuration validator for config.yaml.

Validates structure, required fields, and common misconfigurations.
"""

from __future__ import annotations

import logging
from typing import Any


logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def validate_config(cfg: dict[str, Any], config_path: str = "config.yaml") -> None:
    """
    Validation of config.yaml structure and content.

    Logs detailed error messages before raising.

    Args:
        cfg: The loaded config dictionary (after environment overrides)
        config_path: Path to config file (for error messages)

    Raises:
        ConfigValidationError: If validation fails
    """
    errors = []
    warnings = []

    if not isinstance(cfg, dict):
        raise ConfigValidationError(f"Config root must be a mapping, got {type(cfg).__name__}")

    # ── Bot token ───────────────────────────────────────────────────────────
    if not cfg.get("bot_token"):
        errors.append("Missing 'bot_token' (set it in config.yaml or DISCORD_TOKEN)")
    elif not isinstance(cfg["bot_token"], str):
        errors.append(f"'bot_token' must be a string, got {type(cfg['bot_token']).__name__}")

    if not cfg.get("owner_id"):
        warnings.append("No 'owner_id' set; nobody will be able to change global settings")

    # ── Provider section ────────────────────────────────────────────────────
    provider = cfg.get("provider")
    if provider is None:
        errors.append("Missing required top-level key: 'provider'")
    elif not isinstance(provider, dict):
        errors.append(f"'provider' must be a mapping, got {type(provider).__name__}")
    else:
        if "base_url" not in provider:
            errors.append("Provider missing required 'base_url'")
        for key in ("extra_body", "grounding_extra_body", "extra_headers"):
            if key in provider and not isinstance(provider[key], dict):
                errors.append(
                    f"'provider.{key}' must be a mapping, got {type(provider[key]).__name__}"
                )
        if not provider.get("grounding_extra_body"):
            warnings.append("No 'provider.grounding_extra_body'; web grounding requests are sent as plain chats")

    # ── Model ───────────────────────────────────────────────────────────────
    if "model" in cfg and not isinstance(cfg["model"], str):
        errors.append(f"'model' must be a string, got {type(cfg['model']).__name__}")

    if "system_prompt" in cfg and cfg["system_prompt"] is not None and not isinstance(cfg["system_prompt"], str):
        errors.append(f"'system_prompt' must be a string, got {type(cfg['system_prompt']).__name__}")

    if "state_file" in cfg and not isinstance(cfg["state_file"], str):
        errors.append(f"'state_file' must be a string, got {type(cfg['state_file']).__name__}")

    if "response_timeout_seconds" in cfg:
        timeout = cfg["response_timeout_seconds"]
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            errors.append(f"'response_timeout_seconds' must be a positive number, got {timeout!r}")

    # ── Log warnings ────────────────────────────────────────────────────────
    for warning in warnings:
        logger.warning("Config warning: %s", warning)

    # ── Log errors and raise if any ─────────────────────────────────────────
    if errors:
        logger.error("=" * 70)
        logger.error("CONFIG VALIDATION FAILED (%s)", config_path)
        logger.error("=" * 70)
        for i, error in enumerate(errors, 1):
            logger.error("[%d] %s", i, error)
        logger.error("=" * 70)
        logger.error("Please fix the errors above and restart the bot.")
        logger.error("=" * 70)
        raise ConfigValidationError(f"Config validation failed with {len(errors)} error(s)")
