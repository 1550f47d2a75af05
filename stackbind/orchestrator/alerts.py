"""
Deploy alerts.

A failed (or cancelled) deploy sends exactly one alert. Sending is best
effort: a sender failure is logged and never replaces the deploy error.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Optional, Protocol

import requests

logger = logging.getLogger("stackbind.alerts")

STATUS_FAILURE = "failure"
STATUS_CANCELLED = "cancelled"


@dataclass(frozen=True)
class Alert:
    title: str
    status: str
    stack: str
    environment: str
    version: str
    description: str
    duration: Optional[float] = None

    def summary(self) -> str:
        took = f" after {self.duration:.1f}s" if self.duration is not None else ""
        return (
            f"[{self.status.upper()}] {self.title}: {self.stack} ({self.environment}, "
            f"{self.version}){took}\n{self.description}"
        )


class AlertSender(Protocol):
    def send(self, alert: Alert) -> None: ...


class LoggingAlertSender:
    def send(self, alert: Alert) -> None:
        logger.error(alert.summary(), extra={"alert_status": alert.status})


class WebhookAlertSender:
    """
    POST the alert as JSON.
    `text` (Slack) and `content` (Discord) carry the rendered summary.
    """

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, alert: Alert) -> None:
        summary = alert.summary()
        payload = {"text": summary, "content": summary, "alert": asdict(alert)}
        response = self.session.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()


def send_alert_safely(sender: Optional[AlertSender], alert: Alert) -> bool:
    """Send one alert; returns False when the sender failed."""
    if sender is None:
        return False
    try:
        sender.send(alert)
        return True
    except requests.exceptions.RequestException as e:
        logger.error(f"Failed to deliver alert for {alert.stack}: {e}")
    except Exception as e:
        logger.exception(f"Alert sender crashed for {alert.stack}: {e}")
    return False
