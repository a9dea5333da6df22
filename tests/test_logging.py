import os

from todoauth.logging import configure_logging, get_logger


def test_configure_logging_applies_level(capsys):
    configure_logging("error")
    try:
        log = get_logger("tests.level_filter")
        log.info("quiet_event")
        log.error("loud_event")
        out = capsys.readouterr().out
        assert "quiet_event" not in out
        assert "loud_event" in out
    finally:
        configure_logging(os.getenv("LOG_LEVEL", "INFO"))


def test_secrets_are_redacted(capsys):
    log = get_logger("tests.redaction")
    log.warning("login_attempt", password="hunter2", user_id="u1")
    out = capsys.readouterr().out
    assert "hunter2" not in out
    assert "u1" in out
