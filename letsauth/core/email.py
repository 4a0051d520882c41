"""Out-of-band delivery of confirmation links.

The issuer hands every confirmation link to a LinkSink: "deliver this
opaque string to this address". Implementations:
- LoggingLinkSink: writes the link to the log (development)
- ResendLinkSink: sends a plain-text email through the Resend API
"""

import logging
from abc import ABC, abstractmethod
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0


class LinkSink(ABC):
    """Destination for confirmation links."""

    @abstractmethod
    async def deliver(self, *, to_email: str, link: str, origin: str) -> None:
        """Deliver a confirmation link to the owner of ``to_email``.

        Args:
            to_email: Recipient email address.
            link: Confirmation link to deliver verbatim.
            origin: Canonical origin of the site the user is signing in to.
        """


class LoggingLinkSink(LinkSink):
    """Logs confirmation links instead of sending them."""

    async def deliver(self, *, to_email: str, link: str, origin: str) -> None:
        logger.info("Confirmation link for %s at %s: %s", to_email, origin, link)


class ResendLinkSink(LinkSink):
    """Sends confirmation links by email via Resend.

    Args:
        api_key: Resend API key.
        sender: From address.
        lifetime_minutes: Link lifetime quoted in the email body.
    """

    def __init__(self, *, api_key: str, sender: str, lifetime_minutes: int) -> None:
        self._api_key = api_key
        self._sender = sender
        self._lifetime_minutes = lifetime_minutes

    async def deliver(self, *, to_email: str, link: str, origin: str) -> None:
        where = urlsplit(origin).hostname or origin
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    _RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={
                        "from": self._sender,
                        "to": to_email,
                        "subject": f"Confirm your sign-in to {where}",
                        "text": (
                            f"Click this link to sign in to {where}:\n\n{link}\n\n"
                            f"This link expires in {self._lifetime_minutes} minutes. "
                            "If you didn't request this, you can safely ignore this email."
                        ),
                    },
                    timeout=_RESEND_TIMEOUT,
                )
                resp.raise_for_status()
        except httpx.HTTPError:
            logger.warning("Failed to send confirmation email", exc_info=True)
