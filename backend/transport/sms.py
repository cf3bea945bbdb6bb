# backend/transport/sms.py
import asyncio
import logging
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from config import Settings
from errors import GatewayError

logger = logging.getLogger(__name__)


class SmsGateway:
    """
    Thin async wrapper around the Twilio Messages API.
    Built once at startup and shared by every call session; holds no per-call state.
    """

    def __init__(self, account_sid: str, auth_token: str, from_number: str, client: Optional[Client] = None):
        self.from_number = from_number
        if client is None and account_sid and auth_token:
            client = Client(account_sid, auth_token)
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmsGateway":
        return cls(settings.twilio_account_sid, settings.twilio_auth_token, settings.twilio_from_number)

    @property
    def configured(self) -> bool:
        return self._client is not None and bool(self.from_number)

    async def send(self, to: str, body: str) -> str:
        """Send one message and return the provider's message SID. No retry."""
        if not self.configured:
            raise GatewayError("Twilio SMS is not configured")
        try:
            # twilio's REST client is blocking
            message = await asyncio.to_thread(
                self._client.messages.create,
                from_=self.from_number,
                to=to,
                body=body,
            )
        except TwilioException as exc:
            raise GatewayError(f"Twilio rejected message to {to}: {exc}") from exc
        except OSError as exc:
            raise GatewayError(f"Twilio unreachable: {exc}") from exc
        logger.info("SMS accepted by Twilio sid=%s to=%s", message.sid, to)
        return message.sid
