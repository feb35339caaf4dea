"""User-directory lookups: internal user id to notification address."""

from typing import Any, Protocol

import httpx

from tasker.config.settings import Settings
from tasker.core.exceptions import NotFoundError, TransientError


class UserDirectory(Protocol):
    """Resolves a user id to an email address.

    Raises NotFoundError for unknown users or users without an address,
    TransientError when the directory cannot be reached.
    """

    async def get_user_email(self, user_id: str) -> str:
        ...

    async def close(self) -> None:
        ...


def primary_email(user: dict[str, Any]) -> str | None:
    """Pick the primary address, falling back to the first one listed."""
    addresses = user.get("email_addresses") or []
    if not addresses:
        return None

    primary_id = user.get("primary_email_address_id")
    for address in addresses:
        if primary_id is not None and address.get("id") == primary_id:
            return address.get("email_address")

    return addresses[0].get("email_address")


class ClerkUserDirectory:
    """UserDirectory over the Clerk backend API."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.client = client or httpx.AsyncClient(
            base_url=settings.clerk_api_url.rstrip("/"),
            timeout=settings.http_timeout_s,
            headers={"Authorization": f"Bearer {settings.clerk_secret_key}"},
        )

    async def get_user_email(self, user_id: str) -> str:
        try:
            response = await self.client.get(f"/users/{user_id}")
        except httpx.HTTPError as e:
            raise TransientError(
                "Failed to reach user directory", {"user_id": user_id, "error": str(e)}
            ) from e

        if response.status_code == 404:
            raise NotFoundError(f"user {user_id} not found", {"user_id": user_id})
        if response.status_code >= 400:
            raise TransientError(
                f"User directory returned {response.status_code}", {"user_id": user_id}
            )

        email = primary_email(response.json())
        if not email:
            raise NotFoundError(
                f"user {user_id} has no email addresses", {"user_id": user_id}
            )
        return email

    async def close(self) -> None:
        await self.client.aclose()
