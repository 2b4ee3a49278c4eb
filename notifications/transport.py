"""
Transports deliver one rendered notification to one recipient.

Every transport exposes:

    send(recipient, channel, template_kind, variables) -> bool

True means delivered, False (or an exception) means this recipient failed.
Template content lives behind the transport; the engine only names the kind.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from candidates.models import Channel

from .models import Recipient, TemplateKind

logger = logging.getLogger(__name__)


class NotificationTransport(Protocol):
    def send(
        self,
        recipient: Recipient,
        channel: Channel,
        template_kind: TemplateKind,
        variables: Mapping[str, Any],
    ) -> bool: ...


class LoggingTransport:
    """
    Development transport: writes each notification to the log and reports success.
    """
    def send(self, recipient, channel, template_kind, variables) -> bool:
        logger.info(
            "notify %s via %s (%s): %s",
            recipient.address,
            channel.value,
            template_kind.value,
            dict(variables),
        )
        return True
