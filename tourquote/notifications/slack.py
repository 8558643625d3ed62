from __future__ import annotations

from typing import Any

import httpx
import structlog

from tourquote.config import NotificationsConfig, get_config

logger = structlog.get_logger(__name__)


class SlackTransport:
    """Slack incoming-webhook sender."""

    def __init__(
        self,
        config: NotificationsConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or get_config().notifications
        self._client = client

    async def send(self, message: str, blocks: list[dict] | None = None) -> bool:
        """Send a notification to Slack via webhook.

        Args:
            message: The fallback text message.
            blocks: Optional list of Slack Block Kit blocks for rich formatting.

        Returns:
            bool: True if successful, False otherwise.
        """
        if not self.config.enabled:
            logger.debug("slack_notifications_disabled_by_config")
            return False

        if not self.config.slack_webhook_url:
            logger.warning("slack_webhook_url_missing")
            return False

        payload: dict[str, Any] = {"text": message}
        if blocks:
            payload["blocks"] = blocks

        try:
            if self._client is not None:
                response = await self._client.post(self.config.slack_webhook_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.post(self.config.slack_webhook_url, json=payload)
        except httpx.HTTPError as e:
            logger.error("slack_notification_error", error=str(e))
            return False

        if response.status_code != 200:
            logger.error(
                "slack_notification_failed",
                status=response.status_code,
                response=response.text,
            )
            return False

        logger.info("slack_notification_sent")
        return True

    async def send_expert_submission(self, estimate: dict[str, Any]) -> bool:
        if estimate.get("id") is None:
            text = f"New inquiry submitted for expert review: {estimate.get('title')}"
        else:
            text = (
                f"New estimate submitted for expert review: {estimate.get('title')} "
                f"(#{estimate.get('id')}, status {estimate.get('status')})"
            )
        blocks = [
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*{estimate.get('title')}*"}},
            {
                "type": "section",
                "fields": [
                    {
                        "type": "mrkdwn",
                        "text": f"*Customer:*\n{estimate.get('customer_name') or '-'}",
                    },
                    {
                        "type": "mrkdwn",
                        "text": f"*Placeholders:*\n{estimate.get('placeholder_count', 0)}",
                    },
                ],
            },
        ]
        return await self.send(text, blocks)
