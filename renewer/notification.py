"""
Notification system for certificate renewal events.

Posts a message card to a Microsoft Teams incoming webhook when a renewal
succeeds or fails. Runs that skip renewal are not announced.
"""

import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, TYPE_CHECKING

import requests

from .logger import get_logger

if TYPE_CHECKING:
    from .config_loader import NotificationsConfig, TeamsNotificationConfig


@dataclass
class NotificationContext:
    """Context data for a notification."""
    cert_path: str
    status: str  # "SUCCESS" or "FAILED"
    expiry_date: Optional[datetime] = None
    new_expiry_date: Optional[datetime] = None
    failure_reason: Optional[str] = None
    host: str = field(default_factory=socket.gethostname)


class NotificationSender(ABC):
    """Abstract base class for notification senders."""

    @abstractmethod
    def send(self, context: NotificationContext) -> bool:
        """
        Send a notification.

        Args:
            context: Notification context with certificate details

        Returns:
            True if notification was sent successfully, False otherwise
        """
        pass


def _format_date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC") if value else "N/A"


class TeamsWebhookNotifier(NotificationSender):
    """Send notifications to Microsoft Teams via incoming webhook."""

    def __init__(self, config: "TeamsNotificationConfig"):
        self.config = config
        self.logger = get_logger()

    def build_payload(self, context: NotificationContext) -> dict:
        """Build the Teams message card for a renewal outcome."""
        success = context.status == "SUCCESS"
        facts = [
            {"name": "Host", "value": context.host},
            {"name": "Certificate", "value": context.cert_path},
            {"name": "Previous Expiry", "value": _format_date(context.expiry_date)},
            {"name": "Status", "value": context.status},
        ]
        if success:
            facts.insert(3, {"name": "New Expiry", "value": _format_date(context.new_expiry_date)})
        else:
            facts.append({"name": "Reason", "value": context.failure_reason or "N/A"})

        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": "28a745" if success else "dc3545",
            "summary": f"Certificate Renewal {context.status}",
            "sections": [
                {
                    "activityTitle": f"Certificate Renewal {context.status}",
                    "facts": facts,
                    "markdown": True,
                }
            ],
        }

    def send(self, context: NotificationContext) -> bool:
        """Send notification to Teams via webhook."""
        if not self.config.webhook_url:
            self.logger.warning("No Teams webhook_url configured, skipping Teams notification")
            return False

        try:
            response = requests.post(
                self.config.webhook_url,
                json=self.build_payload(context),
                headers={"Content-Type": "application/json"},
                timeout=30,
            )
        except requests.RequestException as e:
            self.logger.error(f"Failed to send Teams notification: {e}")
            return False

        if response.status_code == 200:
            self.logger.info(f"Teams notification sent for {context.cert_path}")
            return True

        self.logger.error(f"Teams webhook error: {response.status_code} - {response.text}")
        return False


class NotificationManager:
    """
    Manages all notification channels.

    Notification failures are logged and never affect the renewal outcome.
    """

    def __init__(self, config: "NotificationsConfig"):
        self.config = config
        self.logger = get_logger()
        self.notifiers: List[NotificationSender] = []

        if config.teams.enabled:
            self.notifiers.append(TeamsWebhookNotifier(config.teams))
            self.logger.debug("Teams notifications enabled")

    def notify(self, context: NotificationContext) -> None:
        """
        Send notifications through all enabled channels.

        This method never raises exceptions - all errors are logged
        but don't affect the renewal outcome.

        Args:
            context: Notification context with certificate details
        """
        if not self.notifiers:
            return

        self.logger.debug(f"Sending notifications for {context.cert_path} ({context.status})")

        for notifier in self.notifiers:
            notifier_name = type(notifier).__name__
            try:
                delivered = notifier.send(context)
            except Exception as e:
                self.logger.error(f"Notification failed ({notifier_name}): {e}")
                continue
            if not delivered:
                self.logger.warning(f"Notification not delivered ({notifier_name})")

    def is_enabled(self) -> bool:
        """Check if any notification channel is enabled."""
        return len(self.notifiers) > 0
