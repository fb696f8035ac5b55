"""
Gmail connector.

Works with either credential variant (OAuth2 user token or service account
with impersonation); the credentials provider decides which.
"""

import base64
import logging
from typing import Any, Optional

from dealsync.connectors.base import GoogleConnector, ServiceFactory
from dealsync.connectors.credentials import CredentialsProvider
from dealsync.core.retry import GMAIL_RATE_LIMITER, RateLimiter
from dealsync.schemas.connectors import (
    GmailLabel,
    GmailMessagePayload,
    GmailMessageSummary,
    GmailSearchResult,
)

logger = logging.getLogger(__name__)

SUMMARY_HEADERS = [
    "Subject",
    "From",
    "To",
    "Date",
    "X-GM-THRID",
    "Message-ID",
    "X-Gmail-Labels",
]

COUNT_PAGE_SIZE = 500
COUNT_SAFETY_CAP = 10_000


def parse_label_header(value: Optional[str]) -> Optional[list[str]]:
    """Split an X-Gmail-Labels header into trimmed, non-empty labels."""
    if not value:
        return None
    return [label.strip() for label in value.split(",") if label.strip()]


def decode_raw_message(raw: Optional[str]) -> str:
    """Decode Gmail's base64url ``raw`` payload to text."""
    if not raw:
        return ""
    padded = raw + "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


class GmailConnector(GoogleConnector):
    """
    Read-only Gmail access.

    Handles:
    - Label listing
    - Message search with per-message summaries
    - Raw (RFC 822) message fetch
    - Message counts for previews
    """

    api_name = "gmail"
    api_version = "v1"

    def __init__(
        self,
        credentials: CredentialsProvider,
        user_id: str = "me",
        rate_limiter: Optional[RateLimiter] = None,
        service_factory: Optional[ServiceFactory] = None,
    ):
        super().__init__(
            credentials,
            rate_limiter or GMAIL_RATE_LIMITER,
            service_factory,
        )
        self.user_id = user_id

    async def list_labels(self) -> list[GmailLabel]:
        service = await self.get_service()
        response = await self._call(
            lambda: service.users().labels().list(userId=self.user_id)
        )
        return [
            GmailLabel(id=label["id"], name=label.get("name", label["id"]), type=label.get("type"))
            for label in response.get("labels", [])
        ]

    async def search_messages(
        self,
        query: Optional[str] = None,
        label_ids: Optional[list[str]] = None,
        max_results: int = 50,
        page_token: Optional[str] = None,
        include_spam_trash: bool = False,
    ) -> GmailSearchResult:
        """
        Run a Gmail search and fetch a summary for each hit.

        Args:
            query: Gmail search syntax (``subject:RFQ after:2024/01/01``)
            label_ids: Restrict to messages carrying all of these labels
            max_results: Page size
            page_token: Continue a previous search

        Returns:
            Summaries in API order plus the next page token, if any
        """
        service = await self.get_service()

        params: dict[str, Any] = {
            "userId": self.user_id,
            "includeSpamTrash": include_spam_trash,
            "maxResults": max_results,
        }
        if query:
            params["q"] = query
        if label_ids:
            params["labelIds"] = label_ids
        if page_token:
            params["pageToken"] = page_token

        response = await self._call(lambda: service.users().messages().list(**params))

        summaries = []
        for message in response.get("messages") or []:
            if not message.get("id"):
                continue
            summaries.append(await self.fetch_message_summary(message["id"]))

        return GmailSearchResult(
            messages=summaries,
            next_page_token=response.get("nextPageToken"),
        )

    async def get_message_count(
        self,
        query: Optional[str] = None,
        label_ids: Optional[list[str]] = None,
    ) -> int:
        """Count matching messages by paging ids only (capped at 10,000)."""
        service = await self.get_service()
        count = 0
        page_token: Optional[str] = None

        while True:
            params: dict[str, Any] = {"userId": self.user_id, "maxResults": COUNT_PAGE_SIZE}
            if query:
                params["q"] = query
            if label_ids:
                params["labelIds"] = label_ids
            if page_token:
                params["pageToken"] = page_token

            response = await self._call(lambda: service.users().messages().list(**params))
            count += len(response.get("messages") or [])
            page_token = response.get("nextPageToken")

            if not page_token or count >= COUNT_SAFETY_CAP:
                break

        return count

    async def fetch_message_raw(self, message_id: str) -> GmailMessagePayload:
        service = await self.get_service()
        response = await self._call(
            lambda: service.users().messages().get(
                userId=self.user_id, id=message_id, format="raw"
            )
        )
        summary = await self.fetch_message_summary(message_id)
        return GmailMessagePayload(summary=summary, raw=decode_raw_message(response.get("raw")))

    async def fetch_message_summary(self, message_id: str) -> GmailMessageSummary:
        service = await self.get_service()
        response = await self._call(
            lambda: service.users().messages().get(
                userId=self.user_id,
                id=message_id,
                format="metadata",
                metadataHeaders=SUMMARY_HEADERS,
            )
        )

        headers: dict[str, str] = {}
        for header in (response.get("payload") or {}).get("headers") or []:
            if header.get("name") and header.get("value"):
                headers[header["name"].lower()] = header["value"]

        return GmailMessageSummary(
            id=message_id,
            threadId=response.get("threadId") or "",
            historyId=response.get("historyId"),
            internalDate=response.get("internalDate"),
            snippet=response.get("snippet"),
            labelIds=response.get("labelIds") or [],
            headers=headers,
            labels=parse_label_header(headers.get("x-gmail-labels")),
        )

    async def get_account_email(self) -> str:
        service = await self.get_service()
        profile = await self._call(lambda: service.users().getProfile(userId=self.user_id))
        return profile.get("emailAddress", "")
