"""
Tests for the controller's log processors.
"""
from dbclaim.config.logging import REDACTED, add_severity_level, redact_credentials


def test_credential_fields_are_masked():
    event = {"event": "user_created", "user": "app1", "password": "s3cret!", "dsn": "host=pg password=x"}

    result = redact_credentials(None, "info", event)

    assert result["password"] == REDACTED
    assert result["dsn"] == REDACTED
    assert result["user"] == "app1"
    assert result["event"] == "user_created"


def test_events_without_credentials_are_untouched():
    event = {"event": "claim_ready", "claim": "team-a/tenant1"}

    assert redact_credentials(None, "info", dict(event)) == event


def test_severity_mirrors_level():
    assert add_severity_level(None, "warning", {"level": "warning"})["severity"] == "WARNING"
