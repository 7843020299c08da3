"""Delivery of rendered items to subscribers."""

import abc
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TextIO

import httpx

from rssnotify.formatter import FormatError, Formatter
from rssnotify.models import Item, Subscriber

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4000
DOCUMENT_CAPTION = "Message too long, sent as attachment"


class SendError(Exception):
    """Raised when the transport rejects or fails to deliver a message."""


@dataclass(frozen=True)
class SendResult:
    """Outcome of delivering one item to one subscriber."""

    guid: str | None
    ok: bool
    error: str | None = None


class Sender(abc.ABC):
    """Renders items and hands them to a transport, one message per item.

    A failure on one item is recorded in its SendResult and does not stop
    the remaining items.
    """

    def __init__(self, formatter: Formatter | None = None):
        self.formatter = formatter or Formatter()

    async def send(self, subscriber: Subscriber, items: Sequence[Item]) -> list[SendResult]:
        results = []
        for item in items:
            try:
                text = self.formatter.format(item)
                await self.send_message(subscriber.id, text)
            except (FormatError, SendError) as e:
                logger.error("Sending %s to %s failed: %s", item.guid, subscriber.id, e)
                results.append(SendResult(guid=item.guid, ok=False, error=str(e)))
            else:
                results.append(SendResult(guid=item.guid, ok=True))
        return results

    @abc.abstractmethod
    async def send_message(self, chat_id: int, text: str) -> None:
        """Deliver one rendered message.

        Raises:
            SendError: If delivery failed.
        """

    async def aclose(self) -> None:
        pass


class ConsoleSender(Sender):
    """Writes messages to a text stream; used for debugging and offline runs."""

    SEPARATOR = "-" * 40

    def __init__(self, formatter: Formatter | None = None, stream: TextIO | None = None):
        super().__init__(formatter)
        self.stream = stream or sys.stdout

    async def send_message(self, chat_id: int, text: str) -> None:
        print(f"{self.SEPARATOR}\nTo: {chat_id}\n{text}\n{self.SEPARATOR}", file=self.stream)


class TelegramSender(Sender):
    """Sends MarkdownV2 messages through the Telegram Bot API.

    Messages over MAX_MESSAGE_LENGTH characters are attached as a text file
    instead.
    """

    def __init__(
        self,
        token: str,
        formatter: Formatter | None = None,
        client: httpx.AsyncClient | None = None,
        api_base: str = TELEGRAM_API_BASE,
    ):
        super().__init__(formatter)
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=30.0)

    def _url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.token}/{method}"

    async def send_message(self, chat_id: int, text: str) -> None:
        if len(text) > MAX_MESSAGE_LENGTH:
            logger.info("Message to %s is %d characters, sending as document", chat_id, len(text))
            await self._call(
                "sendDocument",
                data={"chat_id": str(chat_id), "caption": DOCUMENT_CAPTION},
                files={"document": ("message.txt", text.encode("utf-8"), "text/plain")},
            )
            return

        await self._call(
            "sendMessage",
            json={
                "chat_id": chat_id,
                "text": text,
                "parse_mode": "MarkdownV2",
                "link_preview_options": {"is_disabled": True},
            },
        )

    async def _call(self, method: str, **kwargs) -> dict:
        try:
            response = await self.client.post(self._url(method), **kwargs)
        except httpx.HTTPError as e:
            raise SendError(f"{method} failed: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise SendError(f"{method} returned HTTP {response.status_code}") from e

        if not payload.get("ok"):
            raise SendError(
                f"{method} rejected: {payload.get('description', response.status_code)}"
            )
        return payload

    async def aclose(self) -> None:
        await self.client.aclose()
