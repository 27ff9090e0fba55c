"""Tests for log-field redaction and client-facing error sanitizing."""

from amora.logging import _redact_pii, mask_email, sanitize_error_message


def test_credentials_are_dropped_from_log_fields():
    event = _redact_pii(
        None,
        "info",
        {
            "event": "token_refreshed",
            "refresh_token": "eyJhbGciOiJIUzI1NiJ9.e30.sig",
            "access_token": "eyJhbGciOiJIUzI1NiJ9.e30.sig",
            "password": "Sup3rSecret!",
            "jti": "5f0c",
            "identity_id": "user-1",
        },
    )

    assert event["refresh_token"] == "[redacted]"
    assert event["access_token"] == "[redacted]"
    assert event["password"] == "[redacted]"
    assert event["jti"] == "[redacted]"
    assert event["identity_id"] == "user-1"


def test_emails_and_coordinates_are_coarsened():
    event = _redact_pii(
        None,
        "info",
        {"email": "ana@example.com", "latitude": 48.856613, "longitude": 2.352222},
    )

    assert event["email"] == "a***@example.com"
    assert event["latitude"] == 48.86
    assert event["longitude"] == 2.35


def test_mask_email_without_domain():
    assert mask_email("not-an-email") == "***"


def test_sanitize_strips_tokens_and_addresses():
    message = sanitize_error_message(
        "lookup failed for ana@example.com with Bearer abc.def.ghi"
    )

    assert "ana@example.com" not in message
    assert "abc.def.ghi" not in message
    assert message.startswith("lookup failed for")


def test_sanitize_strips_bare_jwt():
    message = sanitize_error_message("bad eyJhbGciOiJIUzI1NiJ9.e30.c2ln here")

    assert "eyJ" not in message
    assert message.endswith("here")
