"""
Push Delivery

The transport contract the orchestrator dispatches through, and an Expo
push implementation of it.

A transport returns exactly one DeliveryResult per message, in order.
Failures are classified:
- PERMANENT: the token is dead (malformed or DeviceNotRegistered); the
  orchestrator clears it.
- TRANSIENT: anything else (network errors, 5xx, rate limits); the cards
  stay eligible for the next tick.

Usage:
    transport = ExpoPushTransport(access_token=settings.EXPO_ACCESS_TOKEN)
    results = await transport.send_batch([DeliveryMessage(token=..., title=..., body=...)])
    await transport.close()
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from microflash.config import settings
from microflash.enums.errors import ErrorCode
from microflash.enums.notifications import DeliveryErrorKind
from microflash.middleware.error_handling import TransientError

logger = logging.getLogger(__name__)

EXPO_CHUNK_SIZE = 100

_EXPO_TOKEN_RE = re.compile(r"^Expo(nent)?PushToken\[.+\]$")
_UUID_TOKEN_RE = re.compile(
    r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE
)

# Ticket error codes that mean the token will never work again
PERMANENT_TICKET_ERRORS = frozenset({"DeviceNotRegistered"})


def is_valid_push_token(token: Optional[str]) -> bool:
    """Check the Expo push token format (ExponentPushToken[...] or a UUID)."""
    if not token:
        return False
    return bool(_EXPO_TOKEN_RE.match(token) or _UUID_TOKEN_RE.match(token))


@dataclass
class DeliveryMessage:
    token: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    category_id: Optional[str] = None


@dataclass
class DeliveryResult:
    token: str
    success: bool
    ticket_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[DeliveryErrorKind] = None

    @classmethod
    def ok(cls, token: str, ticket_id: Optional[str] = None) -> "DeliveryResult":
        return cls(token=token, success=True, ticket_id=ticket_id)

    @classmethod
    def failed(cls, token: str, error: str, kind: DeliveryErrorKind) -> "DeliveryResult":
        return cls(token=token, success=False, error=error, error_kind=kind)

    @property
    def is_permanent(self) -> bool:
        return self.error_kind == DeliveryErrorKind.PERMANENT


class DeliveryTransport(Protocol):
    """
    Sends reminders. Must return one result per message, in order.

    A transport that cannot reach its service at all may raise
    TransientError instead; every message then counts as TRANSIENT.
    """

    async def send_batch(self, messages: list[DeliveryMessage]) -> list[DeliveryResult]:
        ...


class ExpoPushTransport:
    """
    Delivery through the Expo push API.

    Messages are validated, then POSTed in chunks of EXPO_CHUNK_SIZE. A
    chunk that fails as a whole (network error, non-2xx) marks all of its
    messages TRANSIENT.

    Args:
        access_token: Expo access token (default: settings.EXPO_ACCESS_TOKEN)
        push_url: Push endpoint (default: settings.EXPO_PUSH_URL)
        timeout: Request timeout in seconds
        client: Pre-built httpx.AsyncClient (tests pass one with a MockTransport)
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        push_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        chunk_size: int = EXPO_CHUNK_SIZE,
    ):
        self.push_url = push_url or settings.EXPO_PUSH_URL
        self.chunk_size = chunk_size

        token = access_token if access_token is not None else settings.EXPO_ACCESS_TOKEN
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client: httpx.AsyncClient = client or httpx.AsyncClient(
            headers=headers,
            timeout=timeout if timeout is not None else settings.EXPO_TIMEOUT_SECONDS,
        )

    @staticmethod
    def _to_expo(message: DeliveryMessage) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "to": message.token,
            "sound": "default",
            "title": message.title,
            "body": message.body,
            "data": message.data,
        }
        if message.category_id:
            payload["categoryId"] = message.category_id
        return payload

    @staticmethod
    def _ticket_result(token: str, ticket: dict[str, Any]) -> DeliveryResult:
        if ticket.get("status") == "ok":
            return DeliveryResult.ok(token, ticket.get("id"))

        details = ticket.get("details") or {}
        code = details.get("error")
        error = code or ticket.get("message") or "Unknown error"
        kind = DeliveryErrorKind.PERMANENT if code in PERMANENT_TICKET_ERRORS else DeliveryErrorKind.TRANSIENT
        return DeliveryResult.failed(token, error, kind)

    async def _post_chunk(self, chunk: list[DeliveryMessage]) -> list[dict[str, Any]]:
        """
        POST one chunk and return its push tickets.

        Raises:
            TransientError: DELIVERY_FAILED on a network error, a non-2xx
                response or an unreadable body
        """
        try:
            response = await self.client.post(
                self.push_url, json=[self._to_expo(m) for m in chunk]
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransientError(
                ErrorCode.DELIVERY_FAILED,
                message=str(e) or type(e).__name__,
                details={"chunk_size": len(chunk)},
            ) from e

        return (body.get("data") if isinstance(body, dict) else None) or []

    async def _send_chunk(self, chunk: list[DeliveryMessage]) -> list[DeliveryResult]:
        try:
            tickets = await self._post_chunk(chunk)
        except TransientError as e:
            logger.warning(f"Expo push chunk of {len(chunk)} failed: {e.message}")
            return [DeliveryResult.failed(m.token, e.message, DeliveryErrorKind.TRANSIENT) for m in chunk]

        results = []
        for i, message in enumerate(chunk):
            if i < len(tickets):
                results.append(self._ticket_result(message.token, tickets[i]))
            else:
                results.append(
                    DeliveryResult.failed(message.token, "Missing push ticket", DeliveryErrorKind.TRANSIENT)
                )
        return results

    async def send_batch(self, messages: list[DeliveryMessage]) -> list[DeliveryResult]:
        results: list[Optional[DeliveryResult]] = [None] * len(messages)
        pending: list[tuple[int, DeliveryMessage]] = []

        for i, message in enumerate(messages):
            if is_valid_push_token(message.token):
                pending.append((i, message))
            else:
                results[i] = DeliveryResult.failed(
                    message.token, "Invalid Expo push token", DeliveryErrorKind.PERMANENT
                )

        for start in range(0, len(pending), self.chunk_size):
            chunk = pending[start : start + self.chunk_size]
            chunk_results = await self._send_chunk([m for _, m in chunk])
            for (i, _), result in zip(chunk, chunk_results):
                results[i] = result

        log_delivery_results(results)
        return results

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def log_delivery_results(results: list[DeliveryResult]) -> None:
    sent = sum(1 for r in results if r.success)
    logger.info(f"Push delivery: {sent}/{len(results)} succeeded")
    for result in results:
        if not result.success:
            logger.warning(
                f"Push to {result.token[:24]}... failed ({result.error_kind.value}): {result.error}"
            )
