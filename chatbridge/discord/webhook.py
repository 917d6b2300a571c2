import asyncio
import logging
import random
import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import httpx

from chatbridge.config import WebhookConfig
from chatbridge.core.errors import DeleteFailed, DeleteNotFound, SendFailed
from chatbridge.core.models import MessageRecord


WEBHOOK_URL_RE = re.compile(r"/webhooks/(?P<id>\d+)/(?P<token>[\w-]+)")

RETRYABLE_ERRORS = (
    httpx.RemoteProtocolError,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.PoolTimeout,
)


def parse_webhook_url(url: str) -> Tuple[str, str]:
    match = WEBHOOK_URL_RE.search(url or "")
    if not match:
        raise ValueError("not a Discord webhook url")
    return match.group("id"), match.group("token")


def record_from_payload(data: Dict[str, Any], webhook_id: str) -> MessageRecord:
    author = data.get("author") or {}
    return MessageRecord(
        id=str(data["id"]),
        author_display_name=author.get("username", ""),
        raw_content=data.get("content") or "",
        sent_at=datetime.fromisoformat(data["timestamp"]).timestamp(),
        is_from_managed_sender=str(data.get("webhook_id", "")) == webhook_id,
    )


class WebhookClient:
    """Posts and deletes messages through one Discord webhook."""

    def __init__(
        self,
        url: str,
        config: WebhookConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_id, _ = parse_webhook_url(url)
        base_url, _, query = url.partition("?")
        self.base_url = base_url.rstrip("/")
        # thread_id and friends must follow every call
        self.params = dict(httpx.QueryParams(query))
        self.config = config
        self._transport = transport
        self._client = self._build_client()
        self._logger = logging.getLogger(__name__)

    def _build_client(self) -> httpx.AsyncClient:
        limits = httpx.Limits(max_keepalive_connections=5, max_connections=20)
        transport = self._transport or httpx.AsyncHTTPTransport(http2=False)
        return httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            limits=limits,
            transport=transport,
        )

    async def _reset_client(self) -> None:
        await self._client.aclose()
        self._client = self._build_client()

    async def send(
        self, display_name: str, raw_content: str, avatar_url: Optional[str] = None
    ) -> MessageRecord:
        payload: Dict[str, Any] = {
            "username": display_name,
            "content": raw_content,
            "allowed_mentions": {"parse": []},
        }
        avatar = avatar_url or self.config.avatar_url
        if avatar:
            payload["avatar_url"] = avatar

        try:
            resp = await self._request_with_retry(
                "POST", self.base_url, params={**self.params, "wait": "true"}, json=payload
            )
        except httpx.HTTPError as exc:
            raise SendFailed(f"webhook send failed: {exc}") from exc
        if resp.status_code >= 400:
            raise SendFailed(f"webhook returned {resp.status_code}: {resp.text}")
        try:
            return record_from_payload(resp.json(), self.webhook_id)
        except (KeyError, TypeError, ValueError) as exc:
            raise SendFailed(f"unexpected webhook response: {exc!r}") from exc

    async def delete(self, message_id: str) -> None:
        try:
            resp = await self._request_with_retry(
                "DELETE", f"{self.base_url}/messages/{message_id}", params=self.params
            )
        except httpx.HTTPError as exc:
            raise DeleteFailed(message_id, str(exc)) from exc
        if resp.status_code == 404:
            raise DeleteNotFound(message_id)
        if resp.status_code >= 400:
            raise DeleteFailed(message_id, f"{resp.status_code} {resp.text}")

    async def _request_with_retry(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        max_retries = self.config.max_retries
        last_exc: Exception | None = None
        for attempt in range(1, max_retries + 1):
            try:
                resp = await self._client.request(method, url, **kwargs)
            except RETRYABLE_ERRORS as exc:
                last_exc = exc
                if attempt >= max_retries:
                    break
                backoff = 0.5 * attempt + random.random() * 0.2
                self._logger.warning(
                    "Webhook %s failed (%s/%s): %s, retrying in %.2fs",
                    method,
                    attempt,
                    max_retries,
                    exc,
                    backoff,
                )
                if isinstance(exc, httpx.RemoteProtocolError):
                    await self._reset_client()
                await asyncio.sleep(backoff)
                continue

            if resp.status_code == 429 and attempt < max_retries:
                retry_after = _retry_after(resp)
                self._logger.warning(
                    "Webhook rate limited (%s/%s), retrying in %.2fs",
                    attempt,
                    max_retries,
                    retry_after,
                )
                await asyncio.sleep(retry_after)
                continue
            if resp.status_code >= 500 and attempt < max_retries:
                backoff = 0.5 * attempt + random.random() * 0.2
                self._logger.warning(
                    "Webhook returned %s (%s/%s), retrying in %.2fs",
                    resp.status_code,
                    attempt,
                    max_retries,
                    backoff,
                )
                await asyncio.sleep(backoff)
                continue
            return resp
        assert last_exc is not None  # for type checkers
        raise last_exc

    async def aclose(self) -> None:
        await self._client.aclose()


def _retry_after(resp: httpx.Response) -> float:
    try:
        return float(resp.json().get("retry_after", 1.0))
    except (ValueError, AttributeError):
        return 1.0
