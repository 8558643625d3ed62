"""Unit tests for email and Slack notification transports."""

from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from tourquote.config import NotificationsConfig
from tourquote.notifications.email import EmailTransport
from tourquote.notifications.slack import SlackTransport

ESTIMATE = {
    "id": 12,
    "session_id": "abc",
    "title": "AI Quote - Kim (서울 3D)",
    "status": "pending",
    "share_token": "tok123",
    "customer_name": "Kim",
    "customer_email": "kim@example.com",
    "placeholder_count": 1,
    "items": [
        {
            "day": 1,
            "display_name": "경복궁",
            "quantity": 2,
            "subtotal": "6000",
            "placeholder": False,
        },
        {
            "day": 2,
            "display_name": "Day 2 itinerary (TBD)",
            "quantity": 1,
            "subtotal": "0",
            "placeholder": True,
        },
    ],
    "total_amount": "6000",
}


class TestEmailTransport:
    def test_render_expert_template(self):
        transport = EmailTransport(NotificationsConfig())

        html = transport.render_template("expert_submission.html", {"estimate": ESTIMATE})

        assert "경복궁" in html
        assert "1 item(s) still need to be confirmed" in html
        assert 'class="tbd">Day 2 itinerary (TBD)' in html

    def test_render_inquiry_without_estimate_id(self):
        transport = EmailTransport(NotificationsConfig())
        inquiry = {
            **ESTIMATE, "id": None, "title": "Inquiry - Kim", "items": [], "placeholder_count": 0
        }

        html = transport.render_template("expert_submission.html", {"estimate": inquiry})

        assert "Inquiry - Kim" in html
        assert "(#" not in html
        assert "still need to be confirmed" not in html

    def test_render_escapes_html(self):
        transport = EmailTransport(NotificationsConfig())
        estimate = {**ESTIMATE, "customer_name": "<script>"}

        html = transport.render_template("customer_submission.html", {"estimate": estimate})

        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    @pytest.mark.asyncio
    async def test_send_without_credentials_fails_softly(self):
        transport = EmailTransport(NotificationsConfig(admin_emails=["ops@example.com"]))

        assert await transport.send_expert_submission(ESTIMATE) is False

    @pytest.mark.asyncio
    async def test_no_recipients(self):
        transport = EmailTransport(NotificationsConfig(smtp_user="u", smtp_password="p"))

        assert await transport.send_expert_submission(ESTIMATE) is False

    @pytest.mark.asyncio
    async def test_guest_customer_skipped(self):
        transport = EmailTransport(NotificationsConfig())
        guest = {**ESTIMATE, "customer_email": None}

        assert await transport.send_customer_submission(guest) is None

    @pytest.mark.asyncio
    async def test_smtp_send(self):
        config = NotificationsConfig(
            smtp_user="mailer@example.com", smtp_password="secret", from_email="tours@example.com"
        )
        transport = EmailTransport(config)

        with patch("tourquote.notifications.email.smtplib.SMTP") as smtp:
            sent = await transport.send_customer_submission(ESTIMATE)

        assert sent is True
        server = smtp.return_value.__enter__.return_value
        server.login.assert_called_once_with("mailer@example.com", "secret")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "kim@example.com"
        assert message["From"] == "tours@example.com"


class TestSlackTransport:
    @pytest.mark.asyncio
    async def test_disabled(self):
        config = NotificationsConfig(enabled=False, slack_webhook_url="http://x")
        transport = SlackTransport(config)

        assert await transport.send("hello") is False

    @pytest.mark.asyncio
    async def test_missing_webhook(self):
        transport = SlackTransport(NotificationsConfig(enabled=True))

        assert await transport.send("hello") is False

    @pytest.mark.asyncio
    async def test_posts_blocks(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = SlackTransport(
                NotificationsConfig(enabled=True, slack_webhook_url="https://hooks.test/x"),
                client=client,
            )
            assert await transport.send_expert_submission(ESTIMATE) is True

        assert len(requests) == 1
        assert b"AI Quote - Kim" in requests[0].content

    @pytest.mark.asyncio
    async def test_non_200_is_failure(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        )
        transport = SlackTransport(
            NotificationsConfig(enabled=True, slack_webhook_url="https://hooks.test/x"),
            client=client,
        )

        assert await transport.send("hello") is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_inquiry_text_has_no_estimate_number(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        inquiry = {**ESTIMATE, "id": None, "title": "Inquiry - Kim"}
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = SlackTransport(
                NotificationsConfig(enabled=True, slack_webhook_url="https://hooks.test/x"),
                client=client,
            )
            assert await transport.send_expert_submission(inquiry) is True

        body = requests[0].content
        assert b"New inquiry submitted" in body
        assert b"#None" not in body
