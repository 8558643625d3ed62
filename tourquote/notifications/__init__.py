"""Outbound notification transports."""

from tourquote.notifications.email import EmailTransport
from tourquote.notifications.slack import SlackTransport

__all__ = ["EmailTransport", "SlackTransport"]
