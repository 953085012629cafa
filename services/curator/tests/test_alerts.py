from unittest.mock import Mock

import requests

from services.curator.errors import InsufficientYieldError
from shared.schemas.messages import AlertMessage
from shared.utils.alerts import AlertNotifier, alert_subject, render_alert

ALERT = AlertMessage(
    title="Not enough positive articles",
    reason="Only 4 articles passed filtering (minimum: 5)",
    week_id="2026-W03",
    details="Scored: 40\nPassed: 4",
    action_items=["Add sources", "Assemble the edition manually"],
)


def test_subject_names_week_and_title():
    assert alert_subject(ALERT) == "[ALERT] Good Brief 2026-W03 - Not enough positive articles"
    assert alert_subject(ALERT.model_copy(update={"week_id": None})) == "[ALERT] Good Brief - Not enough positive articles"


def test_render_alert_includes_reason_details_and_actions():
    body = render_alert(ALERT, run_url="https://ci.example/run/1")

    assert "Only 4 articles passed filtering" in body
    assert "Scored: 40" in body
    assert "1. Add sources" in body
    assert "2. Assemble the edition manually" in body
    assert "https://ci.example/run/1" in body


def test_pipeline_abort_carries_alert():
    error = InsufficientYieldError("Only 4 articles passed", week_id="2026-W03")
    alert = error.alert
    assert alert.title == "Not enough positive articles"
    assert alert.week_id == "2026-W03"
    assert alert.action_items


def test_send_posts_rendered_alert():
    session = Mock()
    notifier = AlertNotifier(webhook_url="https://hooks.example/abc", session=session)

    assert notifier.send(ALERT) is True

    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args[0] == "https://hooks.example/abc"
    assert "Only 4 articles passed filtering" in kwargs["json"]["text"]
    session.post.return_value.raise_for_status.assert_called_once()


def test_send_without_webhook_returns_false():
    session = Mock()
    assert AlertNotifier(webhook_url="", session=session).send(ALERT) is False
    session.post.assert_not_called()


def test_delivery_failure_is_retried_then_reported(monkeypatch):
    monkeypatch.setattr("shared.utils.retry.time.sleep", lambda seconds: None)
    session = Mock()
    session.post.side_effect = requests.ConnectionError("down")

    notifier = AlertNotifier(webhook_url="https://hooks.example/abc", session=session)

    assert notifier.send(ALERT) is False
    assert session.post.call_count == notifier.max_retries + 1
