"""
Tests for the notification worker task
"""
from unittest.mock import patch

import pytest
from celery.exceptions import Retry

from app.core.errors import NotificationError
from app.workers.celery_app import celery_app
from app.workers.tasks import send_audit_link_task


TASK_KWARGS = {
    "to": "dana@example.com",
    "auditor_name": "Dana Reyes",
    "template_name": "Warehouse Safety",
    "access_link": "https://audits.example.com/execute/abc",
}


def test_task_routed_to_notifications_queue():
    route = celery_app.conf.task_routes["app.workers.tasks.send_audit_link_task"]
    assert route == {"queue": "notifications"}


def test_sends_email():
    with patch("app.workers.tasks.email_notifier") as mock_notifier:
        mock_notifier.configured = True
        result = send_audit_link_task.run(**TASK_KWARGS)

    assert result == {"status": "sent", "to": "dana@example.com"}
    notification = mock_notifier.send_audit_link.call_args.args[0]
    assert notification.template_name == "Warehouse Safety"
    assert notification.access_link.endswith("/execute/abc")


def test_skips_when_smtp_not_configured():
    with patch("app.workers.tasks.email_notifier") as mock_notifier:
        mock_notifier.configured = False
        result = send_audit_link_task.run(**TASK_KWARGS)

    assert result["status"] == "skipped"
    mock_notifier.send_audit_link.assert_not_called()


def test_retries_on_delivery_failure():
    with patch("app.workers.tasks.email_notifier") as mock_notifier, \
         patch.object(send_audit_link_task, "retry", return_value=Retry()) as mock_retry:
        mock_notifier.configured = True
        mock_notifier.send_audit_link.side_effect = NotificationError("Email dispatch failed: timeout")

        with pytest.raises(Retry):
            send_audit_link_task.run(**TASK_KWARGS)

    assert isinstance(mock_retry.call_args.kwargs["exc"], NotificationError)


def test_gives_up_after_max_retries():
    send_audit_link_task.push_request(retries=send_audit_link_task.max_retries)
    try:
        with patch("app.workers.tasks.email_notifier") as mock_notifier:
            mock_notifier.configured = True
            mock_notifier.send_audit_link.side_effect = NotificationError("Email dispatch failed: timeout")

            result = send_audit_link_task.run(**TASK_KWARGS)
    finally:
        send_audit_link_task.pop_request()

    assert result["status"] == "failed"
    assert "timeout" in result["error"]
