"""
Content normalization for inbound interview emails.

Pure functions, no I/O: isolate the new text of a reply, normalize the sender
address, and read/write the workflow tag carried in subjects.
"""

import re

# Checked in this order; the first pattern that matches anywhere decides the cut,
# even if a later pattern would match earlier in the body.
QUOTE_MARKER_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"On\s.+wrote:", re.IGNORECASE),
    re.compile(r"From:.+\n", re.IGNORECASE),
    re.compile(r"<div class=\"gmail_quote\">", re.IGNORECASE),
)

HTML_TAG_PATTERN = re.compile(r"<[^>]+>")
ADDRESS_PATTERN = re.compile(r"<([^>]+)>")
WORKFLOW_TAG_PATTERN = re.compile(r"\[InterviewID: ([^\]]+)\]")


def extract_new_content(raw_body: str | None) -> str:
    """
    Strip quoted reply history and HTML from a message body.

    Args:
        raw_body: Decoded message body (plain text, HTML, or both concatenated)

    Returns:
        str: The new message text, trimmed. Empty for missing or non-text input.
    """
    if not isinstance(raw_body, str):
        return ""

    cleaned = raw_body
    for pattern in QUOTE_MARKER_PATTERNS:
        match = pattern.search(cleaned)
        if match:
            cleaned = cleaned[: match.start()].strip()
            break

    return HTML_TAG_PATTERN.sub("", cleaned).strip()


def extract_address(header_value: str | None) -> str:
    """Return the bracketed address of 'Display Name <addr>', else the trimmed value."""
    if not header_value:
        return ""

    match = ADDRESS_PATTERN.search(header_value)
    return match.group(1) if match else header_value.strip()


def extract_workflow_id_from_subject(subject: str | None) -> str | None:
    if not subject:
        return None

    match = WORKFLOW_TAG_PATTERN.search(subject)
    return match.group(1) if match else None


def tag_subject(subject: str, workflow_id: str) -> str:
    """Append the [InterviewID: ...] tag unless the subject already carries one."""
    if extract_workflow_id_from_subject(subject):
        return subject
    return f"{subject} [InterviewID: {workflow_id}]"
