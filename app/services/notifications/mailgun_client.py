"""
Mailgun HTTP client for outbound notification email.
Sends are skipped (with a warning) when Mailgun is not configured.
"""

import asyncio
from dataclasses import dataclass

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_RETRIES = 3
BACKOFF_FACTOR = 2  # 2, 4 seconds
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class NotificationError(Exception):
    """Email could not be handed to Mailgun."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class EmailMessage:
    to: str
    subject: str
    text: str
    html: str | None = None


class MailgunClient:
    def __init__(
        self,
        api_key: str | None = None,
        domain: str | None = None,
        base_url: str | None = None,
        from_address: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.MAILGUN_API_KEY
        self.domain = domain if domain is not None else settings.MAILGUN_DOMAIN
        self.base_url = (base_url or settings.MAILGUN_BASE_URL).rstrip("/")
        self.from_address = from_address or settings.mailgun_from_address()
        self.timeout = timeout or settings.HTTP_REQUEST_TIMEOUT

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.domain)

    async def send(self, message: EmailMessage) -> bool:
        """
        Send one email.

        Returns False when Mailgun is not configured, True once accepted.

        Raises:
            NotificationError: Mailgun rejected the message or was unreachable
        """
        if not self.configured:
            logger.warning(
                "Mailgun configuration missing, email not sent",
                to=message.to,
                subject=message.subject,
            )
            return False

        if not message.to:
            raise NotificationError("Recipient address is empty")

        data = {
            "from": self.from_address,
            "to": message.to,
            "subject": message.subject,
            "text": message.text,
            "html": message.html or message.text.replace("\n", "<br>"),
        }
        url = f"{self.base_url}/{self.domain}/messages"

        try:
            response = await self._post_with_retry(url, data)
        except httpx.RequestError as e:
            logger.error(
                "Mailgun request failed", to=message.to, error=str(e), error_type=type(e).__name__
            )
            raise NotificationError(f"Mailgun unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(
                "Mailgun rejected message",
                to=message.to,
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise NotificationError(
                f"Mailgun returned {response.status_code}", status_code=response.status_code
            )

        logger.info("Email sent", to=message.to, subject=message.subject)
        return True

    async def _post_with_retry(self, url: str, data: dict) -> httpx.Response:
        last_error: Exception | None = None

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.post(url, data=data, auth=("api", self.api_key))

                    if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                        wait_time = BACKOFF_FACTOR**attempt
                        logger.warning(
                            "Mailgun transient status",
                            status_code=response.status_code,
                            attempt=attempt,
                            wait_time=wait_time,
                        )
                        await asyncio.sleep(wait_time)
                        continue

                    return response

                except httpx.RequestError as exc:
                    last_error = exc
                    if attempt == MAX_RETRIES:
                        raise

                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Mailgun request error, retrying",
                        attempt=attempt,
                        wait_time=wait_time,
                        error=str(exc),
                    )
                    await asyncio.sleep(wait_time)

        if last_error:
            raise last_error
        raise NotificationError("Mailgun send failed: Unknown error")


mailgun_client = MailgunClient()
