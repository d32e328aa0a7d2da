"""
Error taxonomy for the chat admission pipeline and the settings store.

Every failure the core reports is a ``ChatError`` subclass carrying the
context a caller needs to render it (file name, limit, wait time, ...).
"""

from __future__ import annotations


class ChatError(Exception):
    """Base error for every classified chat/config failure."""


class ChatDisabled(ChatError):
    def __init__(self, scope: str = "global"):
        # scope is "global" or "tenant"
        self.scope = scope
        super().__init__(f"chat is disabled ({scope})")


class NoCredentialsConfigured(ChatError):
    def __init__(self) -> None:
        super().__init__("no API keys configured")


class EmptyRequest(ChatError):
    def __init__(self) -> None:
        super().__init__("request has neither text nor attachments")


class AttachmentError(ChatError):
    def __init__(self, filename: str, message: str):
        self.filename = filename
        super().__init__(message)


class AttachmentTooLarge(AttachmentError):
    def __init__(self, filename: str, size: int, max_bytes: int):
        self.size = size
        self.max_bytes = max_bytes
        super().__init__(filename, f"{filename} is {size} bytes (limit {max_bytes})")


class AttachmentUnsupportedType(AttachmentError):
    def __init__(self, filename: str, mime_type: str):
        self.mime_type = mime_type
        super().__init__(filename, f"{filename} has unsupported type {mime_type}")


class AttachmentTooLargeAfterDownload(AttachmentError):
    def __init__(self, filename: str, size: int, max_bytes: int):
        self.size = size
        self.max_bytes = max_bytes
        super().__init__(
            filename, f"{filename} is {size} bytes after download (limit {max_bytes})"
        )


class AttachmentDownloadFailed(AttachmentError):
    def __init__(self, filename: str, reason: str):
        self.reason = reason
        super().__init__(filename, f"failed to download {filename}: {reason}")


class RateLimited(ChatError):
    def __init__(self, retry_after_s: int):
        self.retry_after_s = retry_after_s
        super().__init__(f"rate limited, retry after {retry_after_s}s")


class AllCredentialsExhausted(ChatError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"all {attempts} configured API key(s) failed")


class PersistenceFailure(ChatError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"could not persist settings to {path}: {reason}")


class InvalidArgument(ChatError):
    pass


class DuplicateCredential(ChatError):
    def __init__(self) -> None:
        super().__init__("this API key is already registered")


class EmptyCredential(ChatError):
    def __init__(self) -> None:
        super().__init__("the API key cannot be empty")


class IndexOutOfRange(ChatError):
    def __init__(self, index: object, count: int):
        self.index = index
        self.count = count
        super().__init__(f"no API key at position {index!r} (have {count})")
