"""Karma Farm Client: typed async access to the REST API and its event streams.

Invariants:
    - Every request carries the bearer token from the CredentialSource
    - Error envelopes become KarmaFarmError subclasses (same codes as the server)
    - Transport failures and 5xx answers are retried with backoff ONLY for idempotent
      operations; state-moving calls surface NetworkError and leave the decision to the caller
    - Responses are parsed into the same Pydantic schemas the server validates with

Design Decisions:
    - httpx.AsyncClient injected or owned: tests pass a MockTransport/ASGITransport
    - Exponential backoff with +/-25% jitter, as for every other retried call here
"""

import asyncio
import logging
from datetime import datetime
from typing import Any
from uuid import UUID

import httpx

from karmafarm.client.realtime_client import Handler, SubscriptionHandle
from karmafarm.core.domain_types import EngagementStatus, HelpfulnessTag, RealtimeEventType
from karmafarm.core.errors import NetworkError, error_from_response
from karmafarm.core.repository_protocols import CredentialSource
from karmafarm.core.retry_policy import backoff_ms, is_idempotent
from karmafarm.schemas.chat import ChatResponse, ChatSummaryResponse, MessageResponse
from karmafarm.schemas.engagement import (
    AcceptTaskResponse,
    ConfirmResponse,
    EngagementResponse,
    SettlementResponse,
)
from karmafarm.schemas.karma import KarmaAccountResponse
from karmafarm.schemas.rating import RatingResponse, RatingSummaryResponse

logger = logging.getLogger(__name__)

_API = "/api/v1"


class KarmaFarmClient:
    """Async client for one signed-in user."""

    def __init__(
        self,
        base_url: str,
        credentials: CredentialSource,
        *,
        http: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        base_delay_ms: int = 500,
        max_delay_ms: int = 10_000,
        timeout_seconds: float = 10.0,
    ):
        self.credentials = credentials
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)
        self._subscriptions: set[SubscriptionHandle] = set()

    async def __aenter__(self) -> "KarmaFarmClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for handle in list(self._subscriptions):
            await self.unsubscribe(handle)
        if self._owns_http:
            await self._http.aclose()

    # ─── Engagements ─────────────────────────────────────────────

    async def accept_task(
        self,
        post_id: UUID,
        proposed_completion_date: datetime | None = None,
        message: str | None = None,
    ) -> AcceptTaskResponse:
        body = {
            "proposed_completion_date": (
                proposed_completion_date.isoformat() if proposed_completion_date else None
            ),
            "message": message,
        }
        data = await self._request("accept_task", "POST", f"/posts/{post_id}/accept", json=body)
        return AcceptTaskResponse.model_validate(data)

    async def mark_completed(
        self,
        engagement_id: UUID,
        notes: str | None = None,
        expected_status: EngagementStatus | None = EngagementStatus.IN_PROGRESS,
    ) -> EngagementResponse:
        data = await self._request(
            "mark_completed", "POST", f"/engagements/{engagement_id}/complete",
            json={"notes": notes, "expected_status": _value(expected_status)},
        )
        return EngagementResponse.model_validate(data)

    async def confirm_completion(
        self,
        engagement_id: UUID,
        expected_status: EngagementStatus | None = EngagementStatus.AWAITING_CONFIRMATION,
    ) -> ConfirmResponse:
        data = await self._request(
            "confirm_completion", "POST", f"/engagements/{engagement_id}/confirm",
            json={"expected_status": _value(expected_status)},
        )
        return ConfirmResponse.model_validate(data)

    async def dispute(
        self,
        engagement_id: UUID,
        reason: str,
        expected_status: EngagementStatus | None = None,
    ) -> EngagementResponse:
        data = await self._request(
            "dispute", "POST", f"/engagements/{engagement_id}/dispute",
            json={"reason": reason, "expected_status": _value(expected_status)},
        )
        return EngagementResponse.model_validate(data)

    async def settle(self, engagement_id: UUID) -> SettlementResponse:
        data = await self._request("settle", "POST", f"/engagements/{engagement_id}/settle")
        return SettlementResponse.model_validate(data)

    async def get_engagement(self, engagement_id: UUID) -> EngagementResponse:
        data = await self._request("get_engagement", "GET", f"/engagements/{engagement_id}")
        return EngagementResponse.model_validate(data)

    # ─── Ratings & karma ─────────────────────────────────────────

    async def submit_rating(
        self,
        engagement_id: UUID,
        score: int,
        review: str | None = None,
        tags: list[HelpfulnessTag] | None = None,
    ) -> RatingResponse:
        data = await self._request(
            "submit_rating", "POST", f"/engagements/{engagement_id}/ratings",
            json={
                "score": score,
                "review": review,
                "tags": [HelpfulnessTag(t).value for t in (tags or [])],
            },
        )
        return RatingResponse.model_validate(data)

    async def get_rating_summary(self, user_id: str) -> RatingSummaryResponse:
        data = await self._request("get_rating_summary", "GET", f"/users/{user_id}/rating")
        return RatingSummaryResponse.model_validate(data)

    async def get_karma(self, limit: int = 20, offset: int = 0) -> KarmaAccountResponse:
        data = await self._request(
            "get_karma", "GET", "/users/me/karma", params={"limit": limit, "offset": offset},
        )
        return KarmaAccountResponse.model_validate(data)

    # ─── Chats ───────────────────────────────────────────────────

    async def get_or_create_chat(self, post_id: UUID, other_user_id: str) -> ChatResponse:
        data = await self._request(
            "get_or_create_chat", "POST", "/chats",
            json={"post_id": str(post_id), "other_user_id": other_user_id},
        )
        return ChatResponse.model_validate(data)

    async def list_chats(self) -> list[ChatSummaryResponse]:
        data = await self._request("list_chats", "GET", "/chats")
        return [ChatSummaryResponse.model_validate(c) for c in data]

    async def send_message(self, chat_id: UUID, content: str) -> MessageResponse:
        data = await self._request(
            "send_message", "POST", f"/chats/{chat_id}/messages", json={"content": content},
        )
        return MessageResponse.model_validate(data)

    async def get_messages(
        self, chat_id: UUID, limit: int = 50, offset: int = 0,
    ) -> list[MessageResponse]:
        data = await self._request(
            "get_messages", "GET", f"/chats/{chat_id}/messages",
            params={"limit": limit, "offset": offset},
        )
        return [MessageResponse.model_validate(m) for m in data]

    async def set_typing(self, chat_id: UUID, is_typing: bool) -> bool:
        data = await self._request(
            "typing", "POST", f"/chats/{chat_id}/typing", json={"is_typing": is_typing},
        )
        return bool(data["emitted"])

    async def mark_read(self, chat_id: UUID, up_to_message_id: UUID | None = None) -> int:
        data = await self._request(
            "mark_read", "POST", f"/chats/{chat_id}/read",
            json={"up_to_message_id": str(up_to_message_id) if up_to_message_id else None},
        )
        return int(data["marked"])

    async def join_chat(self, chat_id: UUID) -> ChatResponse:
        data = await self._request("join_chat", "POST", f"/chats/{chat_id}/join")
        return ChatResponse.model_validate(data)

    async def leave_chat(self, chat_id: UUID) -> ChatResponse:
        data = await self._request("leave_chat", "POST", f"/chats/{chat_id}/leave")
        return ChatResponse.model_validate(data)

    async def set_online(self) -> None:
        await self._request("presence", "POST", "/presence/online", json={})

    async def set_offline(self) -> None:
        await self._request("presence", "POST", "/presence/offline", json={})

    # ─── Realtime ────────────────────────────────────────────────

    def subscribe_to_chat(
        self,
        chat_id: UUID,
        on_message: Handler | None = None,
        on_typing: Handler | None = None,
        on_presence: Handler | None = None,
        on_read: Handler | None = None,
        on_resync: Handler | None = None,
        **options: Any,
    ) -> SubscriptionHandle:
        """Start a chat subscription. on_resync should re-fetch messages."""
        handlers = {
            RealtimeEventType.MESSAGE: on_message,
            RealtimeEventType.TYPING: on_typing,
            RealtimeEventType.PRESENCE: on_presence,
            RealtimeEventType.READ: on_read,
        }
        return self._subscribe(f"{_API}/chats/{chat_id}/events", handlers, on_resync, options)

    def subscribe_to_engagements(
        self,
        on_engagement: Handler | None = None,
        on_settlement: Handler | None = None,
        on_resync: Handler | None = None,
        **options: Any,
    ) -> SubscriptionHandle:
        handlers = {
            RealtimeEventType.ENGAGEMENT: on_engagement,
            RealtimeEventType.SETTLEMENT: on_settlement,
        }
        return self._subscribe(f"{_API}/events", handlers, on_resync, options)

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self._subscriptions.discard(handle)
        await handle.close()

    def _subscribe(
        self, path: str, handlers: dict, on_resync: Handler | None, options: dict,
    ) -> SubscriptionHandle:
        handle = SubscriptionHandle(
            self._http,
            self.credentials,
            path,
            {k: v for k, v in handlers.items() if v is not None},
            on_resync=on_resync,
            **options,
        ).start()
        self._subscriptions.add(handle)
        return handle

    # ─── Transport ───────────────────────────────────────────────

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
    ) -> Any:
        retry = is_idempotent(operation)
        attempts = self.max_retries + 1 if retry else 1
        for attempt in range(attempts):
            token = await self.credentials.get_bearer_token()
            try:
                response = await self._http.request(
                    method,
                    f"{_API}{path}",
                    json=json,
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.TransportError as e:
                if attempt + 1 < attempts:
                    await self._backoff(operation, attempt, e)
                    continue
                raise NetworkError(f"{operation} failed: {e}")

            if response.status_code >= 500 and attempt + 1 < attempts:
                await self._backoff(operation, attempt, f"HTTP {response.status_code}")
                continue
            if response.is_error:
                raise error_from_response(_json_or_empty(response), response.status_code)
            return response.json()
        raise NetworkError(f"{operation} failed after {attempts} attempts")

    async def _backoff(self, operation: str, attempt: int, cause: object) -> None:
        delay = backoff_ms(attempt, self.base_delay_ms, self.max_delay_ms)
        logger.warning(
            f"{operation} failed ({cause}), retry after {delay}ms",
            extra={"attempt": attempt + 1},
        )
        await asyncio.sleep(delay / 1000)


def _value(status: EngagementStatus | None) -> str | None:
    return status.value if status is not None else None


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
