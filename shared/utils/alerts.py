"""
Operator alerting for conditions that need a human.

Alerts are rendered from a Jinja2 template and posted to a chat webhook.
Delivery is best effort: ``send`` never raises, so a broken alert channel
cannot hide the failure that triggered the alert.
"""

import os
from datetime import datetime, timezone
from typing import Optional

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

from shared.app_logging.logger import get_logger
from shared.config.settings import AlertSettings, get_settings
from shared.schemas.messages import AlertMessage
from shared.utils.retry import RetryError, retry

logger = get_logger("curator.alerts")

TEMPLATE_DIR = os.getenv(
    "ALERT_TEMPLATE_DIR", os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")
)

_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR), autoescape=select_autoescape()
)


def render_alert(alert: AlertMessage, run_url: Optional[str] = None, service: str = "curator") -> str:
    """Render the alert body (Slack-flavoured markdown)."""
    tmpl = _env.get_template("alert.md.j2")
    return tmpl.render(
        alert=alert,
        run_url=run_url,
        service=service,
        sent_at=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
    )


def alert_subject(alert: AlertMessage) -> str:
    if alert.week_id:
        return f"[ALERT] Good Brief {alert.week_id} - {alert.title}"
    return f"[ALERT] Good Brief - {alert.title}"


class AlertNotifier:
    """Fire-and-forget notifications to the operator webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        alert_settings: Optional[AlertSettings] = None,
        service: Optional[str] = None,
    ):
        if alert_settings is None:
            settings = get_settings()
            alert_settings = settings.alerts
            service = service or settings.service_name
        self.webhook_url = webhook_url if webhook_url is not None else alert_settings.webhook_url
        self.timeout = timeout or alert_settings.timeout
        self.run_url = alert_settings.run_url
        self.max_retries = alert_settings.max_retries
        self.service = service or "curator"
        self._session = session or requests.Session()

    def _post(self, payload: dict) -> None:
        @retry(max_retries=self.max_retries, retryable_exceptions=(requests.RequestException,))
        def post():
            response = self._session.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()

        post()

    def send(self, alert: AlertMessage) -> bool:
        """Send an alert. Returns True when the webhook accepted it."""
        subject = alert_subject(alert)

        if not self.webhook_url:
            logger.error(f"Cannot send alert (ALERT_WEBHOOK_URL not set): {subject}")
            logger.error(f"Alert details: {alert.model_dump()}")
            return False

        try:
            body = render_alert(alert, run_url=self.run_url, service=self.service)
            logger.info(f"Sending alert: {subject}")
            self._post({"text": body})
        except RetryError as e:
            logger.error(f"Failed to deliver alert {subject!r}: {e.__cause__ or e}")
            return False
        except Exception as e:
            logger.error(f"Failed to deliver alert {subject!r}: {e}")
            return False

        logger.info("✓ Alert sent")
        return True
