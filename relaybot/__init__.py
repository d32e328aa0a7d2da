"""
Top-level package for the Discord model-relay bot.

This package hosts:
- static config loading and the persisted global/guild settings store
- the chat admission pipeline (cooldowns, attachment policy, history window)
- model API access with API key rotation and failover
- Discord slash commands and error rendering
"""
