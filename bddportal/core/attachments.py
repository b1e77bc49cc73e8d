"""MIME detection and naming of attachments embedded by step code."""

from __future__ import annotations

import json
import mimetypes
import re

OCTET_STREAM = "application/octet-stream"

MIME_TYPE_PATTERN = re.compile(r"^[\w.+-]+/[\w.+-]+(\s*;.*)?$")

SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
    (b"PK\x05\x06", "application/zip"),
    (b"\x1f\x8b", "application/gzip"),
)

TEXT_SAMPLE_SIZE = 8192


def is_valid_mime_type(value: str | None) -> bool:
    """Return True for values of the form ``type/subtype``."""
    return bool(value) and MIME_TYPE_PATTERN.match(value.strip()) is not None


def _detect_text(data: bytes) -> str | None:
    sample = data[:TEXT_SAMPLE_SIZE]
    if b"\x00" in sample:
        return None
    try:
        text = sample.decode("utf-8")
    except UnicodeDecodeError:
        return None

    stripped = text.strip()
    if stripped.startswith(("{", "[")) and len(data) <= TEXT_SAMPLE_SIZE:
        try:
            json.loads(data.decode("utf-8"))
            return "application/json"
        except ValueError:
            pass
    if stripped.startswith("<?xml"):
        return "application/xml"
    return "text/plain"


def detect_mime_type(data: bytes, name: str | None = None) -> str:
    """Guess the MIME type of attachment content.

    Parameters
    ----------
    data : bytes
        Attachment content
    name : str | None
        Attachment name, used when the content has no known signature

    Returns
    -------
    str
        Detected MIME type, ``application/octet-stream`` when unknown
    """
    for signature, mime_type in SIGNATURES:
        if data.startswith(signature):
            return mime_type

    if name:
        guessed, _ = mimetypes.guess_type(name, strict=False)
        if guessed:
            return guessed

    if data:
        detected = _detect_text(data)
        if detected:
            return detected
    return OCTET_STREAM


def resolve_attachment(name: str | None, mime_type: str | None, data: bytes) -> tuple[str, str]:
    """Compute the effective MIME type and display name of an attachment.

    Returns
    -------
    tuple[str, str]
        ``(mime_type, name)``; the name falls back to the MIME category
        (``image``, ``text``, ...)
    """
    effective_type = mime_type.strip() if is_valid_mime_type(mime_type) else detect_mime_type(data, name)
    display_name = name if name else effective_type.split("/", 1)[0]
    return effective_type, display_name
