"""Outbound email delivery."""

from typing import Protocol

import httpx

from tasker.config.logging import get_logger
from tasker.config.settings import Settings
from tasker.core.exceptions import PermanentTaskError, TransientError
from tasker.notifications.messages import EmailMessage

logger = get_logger(__name__)


class EmailSender(Protocol):
    """Delivers a fully-resolved message. Raises on failure."""

    async def send(self, message: EmailMessage) -> None:
        ...

    async def close(self) -> None:
        ...


class ResendEmailSender:
    """EmailSender over the Resend HTTP API."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.sender = settings.email_from
        self.client = client or httpx.AsyncClient(
            base_url=settings.resend_api_url.rstrip("/"),
            timeout=settings.http_timeout_s,
            headers={"Authorization": f"Bearer {settings.resend_api_key}"},
        )

    async def send(self, message: EmailMessage) -> None:
        try:
            response = await self.client.post(
                "/emails",
                json={
                    "from": self.sender,
                    "to": [message.to],
                    "subject": message.subject,
                    "text": message.text,
                },
            )
        except httpx.HTTPError as e:
            raise TransientError(
                "Email delivery failed", {"template": message.template, "error": str(e)}
            ) from e

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientError(
                f"Email provider returned {response.status_code}",
                {"template": message.template},
            )
        if response.status_code >= 400:
            # Bad address or rejected payload; retrying sends the same request
            raise PermanentTaskError(
                f"Email rejected with {response.status_code}: {response.text[:200]}",
                {"template": message.template},
            )

        logger.info("Email sent", template=message.template)

    async def close(self) -> None:
        await self.client.aclose()
