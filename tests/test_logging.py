import contextvars

from vidtube import logging as vt_logging


def test_redact_pii_masks_sensitive_keys():
    event = vt_logging._redact_pii(
        None,
        "info",
        {
            "event": "login_succeeded",
            "email": "alice@example.com",
            "refresh_token": "abcdefghij",
            "account_id": "acc-123456",
            "password": "pw",
        },
    )
    assert event["email"] == "al***om"
    assert event["refresh_token"] == "ab***ij"
    assert event["account_id"] == "acc-123456"
    # Too short to mask usefully
    assert event["password"] == "pw"


def test_correlation_id_added_when_set():
    def run():
        assert vt_logging._add_correlation_id(None, "info", {"event": "x"}) == {"event": "x"}
        cid = vt_logging.set_correlation_id("req-1")
        assert cid == "req-1"
        event = vt_logging._add_correlation_id(None, "info", {"event": "x"})
        assert event["correlation_id"] == "req-1"
        assert vt_logging.set_correlation_id() != "req-1"

    contextvars.copy_context().run(run)


def test_module_exports_no_error_sanitizer():
    assert not hasattr(vt_logging, "sanitize_error_message")
