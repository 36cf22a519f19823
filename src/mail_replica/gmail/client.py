"""Gmail API remote message client.

The Google API client is synchronous. Calls run in worker threads via
``asyncio.to_thread``; each thread gets its own authorized ``httplib2.Http``
because those objects are not thread-safe.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mail_replica.config.settings import GmailSettings
from mail_replica.gmail.auth import load_credentials
from mail_replica.gmail.messages import change_page_from_history, message_from_resource
from mail_replica.models.remote import ChangePage, MailboxInfo, MessageIdPage, RemoteMessage
from mail_replica.pipeline.errors import CursorExpiredError, MessageNotFoundError
from mail_replica.utils.retry import retry_to_thread

logger = logging.getLogger(__name__)

_TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})
_HISTORY_TYPES = ["messageAdded", "messageDeleted"]


class GmailApiError(RuntimeError):
    """Raised when a Gmail API call fails."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class GmailTransientError(GmailApiError):
    """Raised for rate limiting and server-side failures worth retrying."""


def _http_status(exc: HttpError) -> int:
    """Return the HTTP status of a Gmail error, or 0 when unknown."""
    resp = getattr(exc, "resp", None)
    try:
        return int(getattr(resp, "status", 0) or 0)
    except (TypeError, ValueError):
        return 0


def _is_expired_history(status: int, exc: HttpError) -> bool:
    """Detect the history API rejecting ``startHistoryId``."""
    if status == 404:
        return True
    text = str(exc).lower()
    return status == 400 and ("starthistoryid" in text or "history id" in text)


class GmailClient:
    """Remote message client backed by the Gmail REST API."""

    def __init__(
        self,
        *,
        service: Any,
        user_id: str = "me",
        credentials: Credentials | None = None,
        query: str | None = None,
        include_spam_trash: bool = False,
        request_attempts: int = 5,
        retry_base_delay_s: float = 0.5,
    ) -> None:
        """Initialize the client.

        Args:
            service: Gmail API service object from ``googleapiclient``.
            user_id: Mailbox owner ("me" for the authorized user).
            credentials: OAuth credentials used for per-thread HTTP objects.
                When None, requests use the service's own HTTP object.
            query: Optional Gmail search query restricting listings.
            include_spam_trash: Whether listings include SPAM and TRASH.
            request_attempts: Attempts per request for transient failures.
            retry_base_delay_s: Base backoff delay between attempts.
        """
        self._service = service
        self._user_id = user_id
        self._credentials = credentials
        self._query = query
        self._include_spam_trash = include_spam_trash
        self._attempts = request_attempts
        self._base_delay_s = retry_base_delay_s
        self._local = threading.local()

    @classmethod
    def from_settings(cls, settings: GmailSettings) -> GmailClient:
        """Create a Gmail client using configured OAuth settings.

        Args:
            settings: Gmail settings with credential paths.

        Returns:
            GmailClient instance.
        """
        creds = load_credentials(settings=settings)
        service = build("gmail", "v1", credentials=creds, cache_discovery=False)
        return cls(
            service=service,
            user_id=settings.user_id,
            credentials=creds,
            query=settings.query,
            include_spam_trash=settings.include_spam_trash,
            request_attempts=settings.request_attempts,
        )

    @property
    def service(self) -> Any:
        """Return the underlying Gmail API service object."""
        return self._service

    async def get_profile(self) -> dict[str, Any]:
        """Return the raw ``users.getProfile`` response."""
        return await self._call(
            lambda: self._service.users().getProfile(userId=self._user_id),
            operation="getProfile",
        )

    async def get_mailbox_info(self) -> MailboxInfo:
        """Return the message total and current history id."""
        profile = await self.get_profile()
        history_id = profile.get("historyId")
        return MailboxInfo(
            approx_total=int(profile.get("messagesTotal") or 0),
            current_cursor=str(history_id) if history_id else None,
        )

    async def list_message_ids(
        self,
        *,
        limit: int,
        page_token: str | None = None,
    ) -> MessageIdPage:
        """List message ids, newest first.

        Args:
            limit: Page size requested from Gmail.
            page_token: Opaque token from a previous page.

        Returns:
            MessageIdPage with ids and the next page token.
        """
        params: dict[str, Any] = {
            "userId": self._user_id,
            "maxResults": limit,
            "includeSpamTrash": self._include_spam_trash,
        }
        if page_token:
            params["pageToken"] = page_token
        if self._query:
            params["q"] = self._query

        resp = await self._call(
            lambda: self._service.users().messages().list(**params),
            operation="messages.list",
        )
        return MessageIdPage(
            ids=[str(m["id"]) for m in resp.get("messages") or [] if m.get("id")],
            next_page_token=resp.get("nextPageToken") or None,
        )

    async def fetch_message(self, message_id: str) -> RemoteMessage:
        """Fetch one message in ``full`` format.

        Raises:
            MessageNotFoundError: If Gmail no longer has the message.
        """
        resp = await self._call(
            lambda: self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full"),
            operation="messages.get",
            on_missing=lambda exc: MessageNotFoundError(
                f"Gmail message {message_id} not found",
            ),
        )
        return message_from_resource(resp)

    async def list_changes(
        self,
        *,
        since_cursor: str,
        page_token: str | None = None,
    ) -> ChangePage:
        """Read one page of mailbox history after ``since_cursor``.

        Raises:
            CursorExpiredError: If Gmail no longer retains ``since_cursor``.
        """
        params: dict[str, Any] = {
            "userId": self._user_id,
            "startHistoryId": since_cursor,
            "historyTypes": _HISTORY_TYPES,
        }
        if page_token:
            params["pageToken"] = page_token

        resp = await self._call(
            lambda: self._service.users().history().list(**params),
            operation="history.list",
            on_missing=lambda exc: CursorExpiredError(
                f"Gmail history cursor {since_cursor} is no longer available: {exc}",
            ),
            expired_history=True,
        )
        return change_page_from_history(resp)

    async def _call(
        self,
        build_request: Callable[[], Any],
        *,
        operation: str,
        on_missing: Callable[[HttpError], Exception] | None = None,
        expired_history: bool = False,
    ) -> dict[str, Any]:
        """Execute a request in a thread, retrying transient failures.

        Args:
            build_request: Returns an unexecuted ``HttpRequest``.
            operation: Name used in errors and logs.
            on_missing: Builds the exception raised for "not found" responses.
            expired_history: Also treat history-cursor 400s as "not found".

        Returns:
            Decoded JSON response.
        """

        def _run() -> dict[str, Any]:
            request = build_request()
            http = self._thread_http()
            try:
                resp = request.execute(http=http) if http is not None else request.execute()
            except HttpError as exc:
                status = _http_status(exc)
                missing = _is_expired_history(status, exc) if expired_history else status == 404
                if on_missing is not None and missing:
                    raise on_missing(exc) from exc
                if status in _TRANSIENT_STATUSES:
                    logger.warning("Gmail %s returned HTTP %s", operation, status)
                    raise GmailTransientError(
                        f"Gmail {operation} failed transiently: {exc}",
                        status=status,
                    ) from exc
                raise GmailApiError(f"Gmail {operation} failed: {exc}", status=status) from exc

            if not isinstance(resp, dict):
                raise GmailApiError(f"Unexpected Gmail {operation} response: {resp!r}")
            return resp

        return await retry_to_thread(
            _run,
            attempts=self._attempts,
            base_delay_s=self._base_delay_s,
            retry_on=(GmailTransientError,),
        )

    def _thread_http(self) -> AuthorizedHttp | None:
        """Return this thread's authorized HTTP object, creating it lazily."""
        if self._credentials is None:
            return None
        http = getattr(self._local, "http", None)
        if http is None:
            http = AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=60))
            self._local.http = http
        return http
