"""
Delivery Channel Adapters: push, email and SMS senders.

Every adapter exposes the same contract:

    await channel.send(destination, title, body, metadata) -> DeliveryResult

Adapters never raise for delivery problems. Provider errors, HTTP errors and
missing configuration all come back as a failed DeliveryResult so the caller
can record them and move on to the next channel or recipient.
"""

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from ..core.config import Settings
from ..core.errors import ChannelError
from ..models import ContactChannel

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of a single send."""
    channel: ContactChannel
    destination: str
    success: bool
    error: str | None = None
    provider_id: str | None = None


class DeliveryChannel(ABC):
    """Abstract base for notification delivery channels."""

    channel: ContactChannel

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 5.0):
        self._client = client
        self._timeout = timeout

    @property
    def is_configured(self) -> bool:
        return True

    async def send(
        self,
        destination: str,
        title: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> DeliveryResult:
        """Send one message. Returns a failed result instead of raising."""
        if not self.is_configured:
            return DeliveryResult(
                channel=self.channel,
                destination=destination,
                success=False,
                error=f"{self.channel.value} provider not configured",
            )

        try:
            provider_id = await self._deliver(destination, title, body, metadata or {})
        except ChannelError as e:
            logger.warning(f"{e} (destination={destination[:40]})")
            return DeliveryResult(self.channel, destination, False, error=str(e))
        except httpx.HTTPError as e:
            logger.warning(f"[{self.channel.value}] transport error: {e}")
            return DeliveryResult(
                self.channel, destination, False, error=f"[{self.channel.value}] {e}"
            )

        logger.info(f"[{self.channel.value}] delivered to {destination[:40]}")
        return DeliveryResult(self.channel, destination, True, provider_id=provider_id)

    @abstractmethod
    async def _deliver(
        self,
        destination: str,
        title: str,
        body: str,
        metadata: dict[str, Any],
    ) -> str | None:
        """Provider call. Raise ChannelError on failure; return provider id."""

    def _json_body(self, response: httpx.Response) -> dict[str, Any]:
        """Decoded provider answer. An unreadable body counts as a failed send."""
        try:
            payload = response.json()
        except ValueError:
            raise ChannelError(
                self.channel.value,
                f"invalid response (HTTP {response.status_code}): {response.text[:200]}",
            )
        if not isinstance(payload, dict):
            raise ChannelError(self.channel.value, f"unexpected response: {response.text[:200]}")
        return payload

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, timeout=self._timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, **kwargs)


class PushChannel(DeliveryChannel):
    """Expo push notifications."""

    channel = ContactChannel.PUSH

    def __init__(
        self,
        push_url: str,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ):
        super().__init__(client, timeout)
        self._push_url = push_url
        self._access_token = access_token

    @property
    def is_configured(self) -> bool:
        return bool(self._push_url)

    async def _deliver(self, destination, title, body, metadata):
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"

        message = {
            "to": destination,
            "sound": metadata.get("sound", "default"),
            "title": title,
            "body": body,
            "data": metadata.get("data", {}),
            "priority": "high",
        }
        response = await self._post(self._push_url, json=message, headers=headers)
        if response.status_code >= 400:
            raise ChannelError(self.channel.value, f"HTTP {response.status_code}: {response.text[:200]}")

        # Expo answers 200 with per-ticket errors (e.g. DeviceNotRegistered)
        payload = self._json_body(response)
        ticket = payload.get("data")
        if isinstance(ticket, list):
            ticket = ticket[0] if ticket else {}
        ticket = ticket or {}
        if ticket.get("status") == "error":
            details = ticket.get("details") or {}
            reason = details.get("error") or ticket.get("message") or "push ticket error"
            raise ChannelError(self.channel.value, reason)
        return ticket.get("id")


class EmailChannel(DeliveryChannel):
    """Email through the Resend HTTP API."""

    channel = ContactChannel.EMAIL

    def __init__(
        self,
        api_key: str | None,
        from_address: str,
        api_url: str = "https://api.resend.com/emails",
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ):
        super().__init__(client, timeout)
        self._api_key = api_key
        self._from_address = from_address
        self._api_url = api_url

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _deliver(self, destination, title, body, metadata):
        html_body = metadata.get("html") or f"<p>{html.escape(body)}</p>"
        response = await self._post(
            self._api_url,
            json={
                "from": self._from_address,
                "to": [destination],
                "subject": title,
                "html": html_body,
                "text": body,
            },
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        if response.status_code >= 400:
            raise ChannelError(self.channel.value, f"HTTP {response.status_code}: {response.text[:200]}")
        return self._json_body(response).get("id")


class SmsChannel(DeliveryChannel):
    """SMS through the Twilio Messages API."""

    channel = ContactChannel.SMS

    # Twilio rejects bodies longer than this
    MAX_BODY_LENGTH = 1600

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        api_url: str = "https://api.twilio.com/2010-04-01",
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ):
        super().__init__(client, timeout)
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._api_url = api_url

    @property
    def is_configured(self) -> bool:
        return bool(self._account_sid and self._auth_token and self._from_number)

    async def _deliver(self, destination, title, body, metadata):
        url = f"{self._api_url}/Accounts/{self._account_sid}/Messages.json"
        response = await self._post(
            url,
            data={
                "To": destination,
                "From": self._from_number,
                "Body": metadata.get("sms") or body[: self.MAX_BODY_LENGTH],
            },
            auth=(self._account_sid, self._auth_token),
        )
        if response.status_code >= 400:
            raise ChannelError(self.channel.value, f"HTTP {response.status_code}: {response.text[:200]}")
        return self._json_body(response).get("sid")


class ChannelRegistry:
    """The adapters available to the dispatch engine, keyed by channel."""

    def __init__(self, channels: list[DeliveryChannel]):
        self._channels = {c.channel: c for c in channels}

    def get(self, channel: ContactChannel) -> DeliveryChannel | None:
        return self._channels.get(channel)

    def is_available(self, channel: ContactChannel) -> bool:
        adapter = self._channels.get(channel)
        return adapter is not None and adapter.is_configured


def build_channels(settings: Settings, client: httpx.AsyncClient | None = None) -> ChannelRegistry:
    """Build the production adapters from settings."""
    timeout = settings.channel_timeout_seconds
    return ChannelRegistry([
        PushChannel(
            settings.expo_push_url,
            access_token=settings.expo_access_token,
            client=client,
            timeout=timeout,
        ),
        EmailChannel(
            settings.resend_api_key,
            settings.email_from,
            api_url=settings.resend_api_url,
            client=client,
            timeout=timeout,
        ),
        SmsChannel(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_from_number,
            api_url=settings.twilio_api_url,
            client=client,
            timeout=timeout,
        ),
    ])
