"""
Telephony Client — Paginated conversation details, queue lookup, user names.

Every call opens its own httpx.AsyncClient and authenticates through the
TelephonySession passed in. Non-success statuses become TelephonyAPIError so
a failed page aborts the aggregation run that requested it.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx
from pydantic import BaseModel, Field

from app.config import settings
from app.services.telephony.auth import TelephonySession
from app.services.telephony.errors import QueueNotFoundError, TelephonyAPIError

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
_USER_SEARCH_BATCH = 100


class ConversationPage(BaseModel):
    """One page of conversation detail records."""

    records: list[dict[str, Any]] = Field(default_factory=list)
    page_number: int
    is_last_page: bool


async def _request(
    session: TelephonySession,
    method: str,
    path: str,
    *,
    json: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    what: str,
) -> dict[str, Any]:
    """Authenticated request against the platform API; raises on non-2xx."""
    headers = await session.auth_headers()
    url = f"{session.api_base}{path}"

    async with httpx.AsyncClient() as client:
        try:
            resp = await client.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=settings.http_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.error("%s request failed: %s", what, e)
            raise TelephonyAPIError(f"{what} failed: {e}") from e

    if not 200 <= resp.status_code < 300:
        logger.error("%s failed: HTTP %s", what, resp.status_code)
        raise TelephonyAPIError(
            f"{what} failed: {resp.status_code}", status_code=resp.status_code
        )
    try:
        return resp.json() or {}
    except ValueError as e:
        logger.error("%s returned a non-JSON body", what)
        raise TelephonyAPIError(
            f"{what} failed: invalid JSON", status_code=resp.status_code
        ) from e


# =============================================================================
# CONVERSATION DETAILS
# =============================================================================


class ConversationPager:
    """Fetches conversation detail pages for one queue."""

    def __init__(self, session: TelephonySession, queue_id: str) -> None:
        self.session = session
        self.queue_id = queue_id

    def _query(self, interval: str, page_number: int) -> dict[str, Any]:
        return {
            "interval": interval,
            "paging": {"pageSize": PAGE_SIZE, "pageNumber": page_number},
            "segmentFilters": [
                {
                    "type": "and",
                    "predicates": [
                        {
                            "type": "dimension",
                            "dimension": "queueId",
                            "operator": "matches",
                            "value": self.queue_id,
                        }
                    ],
                }
            ],
        }

    async def fetch(self, interval: str, page_number: int) -> ConversationPage:
        data = await _request(
            self.session,
            "POST",
            "/api/v2/analytics/conversations/details/query",
            json=self._query(interval, page_number),
            what="Analytics",
        )
        records = data.get("conversations") or []
        logger.debug(
            "Analytics page %d for %s: %d conversations",
            page_number,
            interval,
            len(records),
        )
        return ConversationPage(
            records=records,
            page_number=page_number,
            is_last_page=len(records) < PAGE_SIZE,
        )


# =============================================================================
# QUEUES
# =============================================================================


async def find_queue_id(session: TelephonySession, queue_name: str) -> str:
    """Resolve a queue name to its id (case-insensitive exact match)."""
    name = queue_name.strip()
    data = await _request(
        session,
        "GET",
        "/api/v2/routing/queues",
        params={"name": name},
        what="Queue lookup",
    )
    for queue in data.get("entities") or []:
        if str(queue.get("name", "")).lower() == name.lower():
            logger.info("Queue resolved: %s -> %s", name, queue["id"])
            return queue["id"]
    raise QueueNotFoundError(f"Queue '{name}' not found.")


# =============================================================================
# USER NAMES
# =============================================================================


class UserNameResolver:
    """Batch id -> display name lookup backed by the session's cache."""

    def __init__(self, session: TelephonySession) -> None:
        self.session = session

    async def resolve(self, user_ids: Iterable[str]) -> dict[str, str]:
        """Return names for every known id, fetching only uncached ones.

        Lookup failures are logged; the affected ids stay unresolved and the
        caller falls back to a placeholder.
        """
        wanted = list(dict.fromkeys(user_ids))
        cache = self.session.user_names
        missing = [uid for uid in wanted if uid not in cache]

        for start in range(0, len(missing), _USER_SEARCH_BATCH):
            batch = missing[start : start + _USER_SEARCH_BATCH]
            try:
                data = await _request(
                    self.session,
                    "POST",
                    "/api/v2/users/search",
                    json={
                        "pageSize": _USER_SEARCH_BATCH,
                        "query": [{"type": "EXACT", "fields": ["id"], "values": batch}],
                    },
                    what="User search",
                )
            except TelephonyAPIError as e:
                logger.warning("User name lookup failed for %d ids: %s", len(batch), e)
                continue
            for user in data.get("results") or []:
                if user.get("id") and user.get("name"):
                    cache[user["id"]] = user["name"]

        return {uid: cache[uid] for uid in wanted if uid in cache}
