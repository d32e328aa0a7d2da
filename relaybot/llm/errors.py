from __future__ import annotations


def mask_api_key(api_key: str | None) -> str:
    """Short, log-safe rendering of an API key."""
    if not api_key:
        return "—"
    key = api_key.strip()
    if len(key) <= 8:
        return "*" * max(0, len(key) - 2) + key[-2:]
    return f"{key[:4]}…{key[-4:]}"


def parse_error_message(error: BaseException) -> str:
    """
    Map raw upstream exceptions into short, human-readable messages.
    Used for owner notifications and logs.
    """
    s, t = str(error), type(error).__name__
    if "429" in s or t == "RateLimitError":
        return "⚠️ Rate Limited: the model API is temporarily rate-limited for this key."
    if "401" in s or "Unauthorized" in s or t == "AuthenticationError":
        return "❌ Authentication Error: invalid API key."
    if "403" in s or t == "PermissionDeniedError":
        return "❌ Forbidden: this key has no access to the model."
    if "404" in s or t == "NotFoundError":
        return "❌ Not Found: the requested model was not found."
    if t in ("TimeoutError", "APITimeoutError"):
        return "❌ Timeout: the model did not answer in time."
    if "Connection" in t or "ECONNREFUSED" in s or "ETIMEDOUT" in s:
        return "❌ Connection Error: unable to reach the model API."
    return f"❌ {t}: {s.split(chr(10))[0][:100]}"


def format_user_friendly_error(error: BaseException) -> str:
    """
    Short, safe error message suitable for end users.
    """
    s, t = str(error), type(error).__name__
    if "429" in s or t == "RateLimitError":
        return "The model is busy right now, please try again shortly."
    if "401" in s or "Unauthorized" in s or t == "AuthenticationError":
        return "None of the configured API keys could be used. Check them with /config show."
    if t in ("TimeoutError", "APITimeoutError"):
        return "The model took too long to answer, please try again."
    if "Connection" in t or "ECONNREFUSED" in s or "ETIMEDOUT" in s:
        return "Could not reach the model service, please try again later."
    return "Sorry, something went wrong talking to the model. Please try again in a moment."
