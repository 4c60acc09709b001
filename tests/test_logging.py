"""Tests for the structlog processors."""
import pytest
from orderevents.logging import add_component, mask_email, mask_emails, setup_logging


def test_component_from_dotted_event():
    event_dict = add_component(None, "info", {"event": "queue.message_dead_lettered"})
    assert event_dict["component"] == "queue"


def test_component_keeps_explicit_value():
    event_dict = add_component(None, "warning", {"event": "redis.health_check_failed", "component": "queue"})
    assert event_dict["component"] == "queue"

    assert "component" not in add_component(None, "info", {"event": "http_request"})


def test_mask_email():
    assert mask_email("a@x.com") == "a***@x.com"
    assert mask_email("alice@example.org") == "a***@example.org"
    assert mask_email("not-an-address") == "not-an-address"


def test_mask_emails_masks_known_fields_only():
    event_dict = mask_emails(None, "info", {
        "event": "notification.sent",
        "recipient": "alice@example.org",
        "subject": "Your order O1 was received",
    })

    assert event_dict["recipient"] == "a***@example.org"
    assert event_dict["subject"] == "Your order O1 was received"


def test_setup_logging_rejects_unknown_level():
    with pytest.raises(ValueError):
        setup_logging(json_output=True, level="LOUD")
