"""
Celery background tasks

Notification delivery is the only background work: SMTP calls are blocking
and may be slow, so NOTIFY_VIA_WORKER moves them off the request path.
Failed deliveries are retried by Celery with the policy in celery_app.
"""
import logging

from app.workers.celery_app import celery_app
from app.core.errors import NotificationError
from app.adapters.notifier import AuditLinkNotification, email_notifier

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="app.workers.tasks.send_audit_link_task",
)
def send_audit_link_task(
    self,
    to: str,
    auditor_name: str,
    template_name: str,
    access_link: str,
):
    """Email an auditor the direct access link for a newly launched session"""
    notification = AuditLinkNotification(
        to=to,
        auditor_name=auditor_name,
        template_name=template_name,
        access_link=access_link,
    )

    if not email_notifier.configured:
        # Retrying cannot help until the worker is reconfigured
        logger.warning(f"SMTP not configured, dropping audit link for {to}")
        return {"status": "skipped", "reason": "smtp_not_configured"}

    try:
        email_notifier.send_audit_link(notification)
    except NotificationError as e:
        if self.request.retries >= (self.max_retries or 0):
            logger.error(f"Giving up on audit link for {to} after {self.request.retries} retries: {e}")
            return {"status": "failed", "error": str(e)}
        raise self.retry(exc=e)

    return {"status": "sent", "to": to}
