#Purpose: The notification gateway "adapter/client".
#Sole responsibility: talk to the email/SMS gateway via HTTP and report success/failure.
#Encapsulates gateway-specific details:
#URL construction (/messages/email, /messages/sms)
#timeouts and HTTP error handling
#It should not contain dispatch rules or template content.

from dotenv import load_dotenv
import os
import logging
from typing import Any, Dict, Mapping, Optional
import requests

from candidates.models import Channel
from .models import Recipient, TemplateKind

# Read gateway base URL from environment
# Example in .env:
# NOTIFY_BASE_URL=https://notify.internal.example
# NOTIFY_API_KEY=...
load_dotenv()
BASE_URL = os.getenv("NOTIFY_BASE_URL")
API_KEY = os.getenv("NOTIFY_API_KEY")

logger = logging.getLogger(__name__)


class NotificationGatewayError(Exception):
    """Custom exception for notification gateway errors."""
    pass


class HttpNotificationClient:
    """
    Notification gateway client

    Sole responsibility:
    - POST one message per recipient to the gateway
    - Convert gateway errors into a False result (the batcher records them)
    """
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: int = 10,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url or BASE_URL
        self.api_key = api_key or API_KEY
        self.timeout = timeout  # seconds to wait for the gateway before giving up
        self.session = session or requests.Session()

        if not self.base_url:
            raise ValueError("Notification gateway URL not set. Please set NOTIFY_BASE_URL in the .env file.")

    def build_payload(self, recipient: Recipient, template_kind: TemplateKind,
                      variables: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "to": recipient.address,
            "name": recipient.name,
            "template": template_kind.value,
            "variables": dict(variables),
        }

    def send(self, recipient: Recipient, channel: Channel, template_kind: TemplateKind,
             variables: Mapping[str, Any]) -> bool:
        """
        calls the gateway /messages/<channel> endpoint.

        Returns True when the gateway accepted the message.
        """
        url = f"{self.base_url.rstrip('/')}/messages/{channel.value}"
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            response = self.session.post(
                url,
                json=self.build_payload(recipient, template_kind, variables),
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("gateway rejected %s to %s: %s", template_kind.value, recipient.address, exc)
            return False

        data = response.json() if response.content else {}
        # gateway answers {"status": "queued"} or {"status": "error", "message": ...}
        if data.get("status", "queued") == "error":
            raise NotificationGatewayError(data.get("message", "Unknown error"))
        return True
