"""
Attachment policy: size and MIME checks before and after download.

Only images and PDFs are forwarded to the model. The declared size and type
come from the platform and are not trusted, so the size is checked again
once the bytes are in hand.
"""

from __future__ import annotations

import logging
import os
from base64 import b64encode
from dataclasses import dataclass
from typing import Optional

import httpx

from .errors import (
    AttachmentDownloadFailed,
    AttachmentTooLarge,
    AttachmentTooLargeAfterDownload,
    AttachmentUnsupportedType,
)


SUPPORTED_MIME_PREFIXES = ("image/", "application/pdf")
FALLBACK_MIME_TYPE = "application/octet-stream"
MAX_SUMMARY_NAMES = 3
DOWNLOAD_TIMEOUT_SECONDS = 30

MIME_TYPES_BY_EXTENSION = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
}


@dataclass
class AttachmentDescriptor:
    name: str
    url: str
    size: Optional[int] = None
    content_type: Optional[str] = None


def is_supported_mime(mime_type: str | None) -> bool:
    return bool(mime_type) and mime_type.startswith(SUPPORTED_MIME_PREFIXES)


def infer_mime_type(filename: str | None, provided: str | None = None) -> str:
    """
    Resolve the MIME type to use for a file.

    A provided type wins only if it is already supported; otherwise the
    extension decides, then the provided type as-is, then a generic binary.
    """
    if is_supported_mime(provided):
        return provided
    ext = os.path.splitext(filename or "")[1].lower()
    if by_ext := MIME_TYPES_BY_EXTENSION.get(ext):
        return by_ext
    return provided or FALLBACK_MIME_TYPE


def validate_declared(descriptor: AttachmentDescriptor, max_bytes: int) -> str:
    """Check declared metadata; returns the resolved MIME type."""
    if descriptor.size and descriptor.size > max_bytes:
        raise AttachmentTooLarge(descriptor.name, descriptor.size, max_bytes)
    mime_type = infer_mime_type(descriptor.name, descriptor.content_type)
    if not is_supported_mime(mime_type):
        raise AttachmentUnsupportedType(descriptor.name, mime_type)
    return mime_type


def validate_downloaded(filename: str, data: bytes, max_bytes: int) -> None:
    if len(data) > max_bytes:
        raise AttachmentTooLargeAfterDownload(filename, len(data), max_bytes)


def to_content_part(mime_type: str, data: bytes) -> dict:
    """Inline a downloaded file as an OpenAI-style content part."""
    url = f"data:{mime_type};base64,{b64encode(data).decode()}"
    return {"type": "image_url", "image_url": {"url": url}}


def summarize_attachments(names: list[str]) -> str:
    lines = [f"• {n}" for n in names[:MAX_SUMMARY_NAMES]]
    if len(names) > MAX_SUMMARY_NAMES:
        lines.append(f"... and {len(names) - MAX_SUMMARY_NAMES} more")
    return "\n".join(lines)


class AttachmentFetcher:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS)

    async def fetch(self, descriptor: AttachmentDescriptor) -> bytes:
        try:
            response = await self._client.get(descriptor.url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AttachmentDownloadFailed(
                descriptor.name, f"HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logging.warning("Download of %s failed: %s", descriptor.name, e)
            raise AttachmentDownloadFailed(descriptor.name, type(e).__name__) from e
        return response.content

    async def aclose(self) -> None:
        await self._client.aclose()
