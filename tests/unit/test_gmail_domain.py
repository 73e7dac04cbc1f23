from conftest import encode_body, make_gmail_payload

from interview_inbox.models.domain.gmail_domain import RawMessage


def test_single_body_payload_is_decoded():
    message = RawMessage(make_gmail_payload("m1", body="Friday works."))

    assert message.id == "m1"
    assert message.body == "Friday works."
    assert message.sender == "Jane Candidate <jane@example.com>"
    assert message.recipient == "recruiter@example.com"
    assert message.subject == "Interview availability"


def test_headers_are_case_insensitive():
    payload = make_gmail_payload("m1")
    payload["payload"]["headers"] = [{"name": "FROM", "value": "x@example.com"}]

    message = RawMessage(payload)

    assert message.sender == "x@example.com"
    assert message.header("from") == "x@example.com"
    assert message.header("reply-to", "none") == "none"
    assert message.subject == ""


def test_top_level_parts_are_concatenated_in_order():
    payload = {
        "id": "m2",
        "payload": {
            "headers": [],
            "body": {"size": 0},
            "parts": [
                {"mimeType": "text/plain", "body": {"data": encode_body("plain part. ")}},
                {"mimeType": "text/html", "body": {"data": encode_body("<p>html part</p>")}},
            ],
        },
    }

    assert RawMessage(payload).body == "plain part. <p>html part</p>"


def test_nested_multipart_is_not_recursed():
    payload = {
        "id": "m3",
        "payload": {
            "headers": [],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": encode_body("top")}},
                {
                    "mimeType": "multipart/alternative",
                    "body": {"size": 0},
                    "parts": [{"mimeType": "text/plain", "body": {"data": encode_body("nested")}}],
                },
            ],
        },
    }

    message = RawMessage(payload)

    assert message.body == "top"
    assert len(message.body_parts) == 2


def test_undecodable_body_degrades_to_empty():
    payload = {"id": "m4", "payload": {"headers": [], "body": {"data": "@@@not base64@@@"}}}

    assert RawMessage(payload).body == ""


def test_missing_payload():
    message = RawMessage({"id": "m5"})

    assert message.body == ""
    assert message.headers == {}
