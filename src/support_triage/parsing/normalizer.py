from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Mapping, Optional

from support_triage.models import BodyContentType, NormalizedEmail

NO_SUBJECT = "No Subject"
UNKNOWN_SENDER = "Unknown Sender"
NO_CONTENT = "No content available"


def decode_body_data(data: str) -> str:
    """Decode Gmail's base64url body data, tolerating missing padding."""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        return ""
    return raw.decode("utf-8", errors="replace")


def header_value(headers: Any, name: str) -> Optional[str]:
    """Case-insensitive lookup in Gmail's [{"name": ..., "value": ...}] header list."""
    wanted = name.lower()
    for header in headers or []:
        if not isinstance(header, Mapping):
            continue
        if str(header.get("name") or "").lower() == wanted:
            value = header.get("value")
            return None if value is None else str(value)
    return None


def _collect_parts(part: Mapping[str, Any], mime_type: str, found: List[str]) -> None:
    # Depth-first, so parts keep the order they have in the message.
    data = (part.get("body") or {}).get("data")
    if part.get("mimeType") == mime_type and data:
        found.append(decode_body_data(data))
    for child in part.get("parts") or []:
        if isinstance(child, Mapping):
            _collect_parts(child, mime_type, found)


def extract_body(payload: Mapping[str, Any], snippet: Optional[str] = None) -> tuple[str, BodyContentType]:
    """
    Pick the body text of a Gmail payload.

    Multipart: all text/plain parts joined (text/html parts if there is no
    plain text). Single part: its body. Otherwise the snippet, and finally
    a fixed placeholder.
    """
    if payload.get("parts"):
        texts: List[str] = []
        for child in payload.get("parts") or []:
            if isinstance(child, Mapping):
                _collect_parts(child, "text/plain", texts)
        texts = [t for t in texts if t]
        if texts:
            return "\n".join(texts), BodyContentType.TEXT

        htmls: List[str] = []
        for child in payload.get("parts") or []:
            if isinstance(child, Mapping):
                _collect_parts(child, "text/html", htmls)
        htmls = [h for h in htmls if h]
        if htmls:
            return "\n".join(htmls), BodyContentType.HTML
    else:
        data = (payload.get("body") or {}).get("data")
        if data:
            text = decode_body_data(data)
            if text:
                content_type = (
                    BodyContentType.HTML
                    if payload.get("mimeType") == "text/html"
                    else BodyContentType.TEXT
                )
                return text, content_type

    if snippet:
        return snippet, BodyContentType.TEXT
    return NO_CONTENT, BodyContentType.TEXT


def _internal_date_ms(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def normalize(raw_message: Mapping[str, Any]) -> NormalizedEmail:
    """
    Turn one raw Gmail message resource into a NormalizedEmail.

    Never raises for missing pieces; each one falls back to a default.
    """
    payload: Dict[str, Any] = raw_message.get("payload") or {}
    headers = payload.get("headers") or []

    subject = (header_value(headers, "Subject") or "").strip() or NO_SUBJECT
    sender = (header_value(headers, "From") or "").strip() or UNKNOWN_SENDER
    body, content_type = extract_body(payload, raw_message.get("snippet"))

    return NormalizedEmail(
        id=str(raw_message.get("id") or ""),
        thread_id=str(raw_message.get("threadId") or raw_message.get("id") or ""),
        subject=subject,
        sender=sender,
        received_at=_internal_date_ms(raw_message.get("internalDate")),
        body=body,
        body_content_type=content_type,
    )


def normalize_thread(raw_thread: Mapping[str, Any]) -> List[NormalizedEmail]:
    """Normalize every message of a thread, oldest first."""
    emails = [normalize(m) for m in raw_thread.get("messages") or [] if isinstance(m, Mapping)]
    # Stable sort keeps provider order for messages without a timestamp.
    emails.sort(key=lambda e: e.received_at)
    return emails


def is_placeholder_subject(subject: str) -> bool:
    return subject.strip() in ("", NO_SUBJECT)


def is_placeholder_body(body: str) -> bool:
    return body.strip() in ("", NO_CONTENT)
