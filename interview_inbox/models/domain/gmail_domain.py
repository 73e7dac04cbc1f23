# interview_inbox/models/domain/gmail_domain.py
"""
Gmail Domain Models
Shapes handed between the credential resolver, the mailbox client and the poller.
"""

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class AccessCredential:
    """Short-lived access token obtained by a live refresh for one owner."""

    owner_id: str
    access_token: str
    expires_at: datetime | None = None


class RawMessage:
    """
    Domain model for a Gmail message fetched with format=full.

    Only the top-level body and the first level of multipart parts are read;
    nested multipart containers are ignored.
    """

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.thread_id = data.get("threadId")
        self.label_ids = data.get("labelIds", [])
        self.snippet = data.get("snippet", "")
        self.payload = data.get("payload") or {}
        self.raw_data = data

        self._parse_headers()
        self._parse_body()

    def _parse_headers(self):
        """Parse email headers from payload (names are matched case-insensitively)."""
        headers = self.payload.get("headers", [])
        self.headers = {h["name"].lower(): h.get("value", "") for h in headers if h.get("name")}

        self.subject = self.header("subject")
        self.sender = self.header("from")
        self.recipient = self.header("to")

    def _parse_body(self):
        """Decode the top-level body, or concatenate the top-level parts in order."""
        self.body = ""

        body_data = (self.payload.get("body") or {}).get("data")
        if body_data:
            self.body = _decode_base64_data(body_data)
            return

        chunks = []
        for part in self.body_parts:
            part_data = (part.get("body") or {}).get("data")
            if part_data:
                chunks.append(_decode_base64_data(part_data))
        self.body = "".join(chunks)

    @property
    def body_parts(self) -> list[dict]:
        return self.payload.get("parts") or []

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)


def _decode_base64_data(data: str) -> str:
    """Decode base64 (URL-safe or standard) body data; undecodable input yields ""."""
    try:
        normalized = data.replace("+", "-").replace("/", "_")
        decoded_bytes = base64.urlsafe_b64decode(normalized + "=" * (-len(normalized) % 4))
        return decoded_bytes.decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""
