"""Gmail OAuth token provider."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from mail_replica.config.settings import GmailSettings

logger = logging.getLogger(__name__)

SCOPES: list[str] = [
    "https://www.googleapis.com/auth/gmail.readonly",
]


def _resolve_token_path(token_file: Path) -> Path:
    """Resolve the token path and make sure its directory exists.

    Raises:
        ValueError: If the path exists but is not a regular file.
    """
    path = token_file.expanduser().resolve()
    if path.exists() and not path.is_file():
        raise ValueError(
            f"token_file is not a file: {path}. Set REPLICA_GMAIL__TOKEN_FILE to a file path, "
            "e.g. /absolute/path/to/gmail-token.json",
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _check_client_secrets(path: Path) -> None:
    """Reject OAuth client files created for web applications.

    Raises:
        ValueError: If the JSON describes a "web" rather than "installed" client.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return
    if isinstance(data, dict) and "installed" not in data and "web" in data:
        raise ValueError(
            "OAuth client JSON looks like a 'Web application' client. "
            "Create a 'Desktop app' OAuth client in Google Cloud Console and point "
            "REPLICA_GMAIL__CREDENTIALS_FILE at its JSON.",
        )


def _read_cached_token(path: Path) -> Credentials | None:
    """Load a previously stored token, or None if absent or unreadable."""
    if not path.exists():
        return None
    if path.stat().st_size == 0:
        logger.warning("Token file is empty; will re-auth (token_file=%s)", path)
        return None
    try:
        return Credentials.from_authorized_user_file(  # type: ignore[no-untyped-call]
            str(path),
            scopes=SCOPES,
        )
    except (OSError, ValueError) as exc:
        logger.warning("Failed to load token file; will re-auth (token_file=%s, error=%r)", path, exc)
        return None


def load_credentials(*, settings: GmailSettings) -> Credentials:
    """Return valid Gmail credentials, refreshing or re-authorizing as needed.

    Cached tokens are refreshed silently when possible. A refresh rejected by
    Google (revoked or expired grant) falls back to the interactive flow.

    Args:
        settings: Gmail settings containing credentials/token paths.

    Returns:
        Validated OAuth credentials.

    Raises:
        ValueError: If the token path or client secrets file is unusable.
    """
    token_file = _resolve_token_path(settings.token_file)
    _check_client_secrets(settings.credentials_file)

    creds = _read_cached_token(token_file)
    if creds is not None and creds.valid:
        return creds

    if creds is not None and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())  # type: ignore[no-untyped-call]
        except RefreshError as exc:
            logger.warning("Token refresh rejected; will re-auth (error=%r)", exc)
        else:
            _write_token_file(token_file, creds)
            return creds

    flow = InstalledAppFlow.from_client_secrets_file(str(settings.credentials_file), SCOPES)
    creds = flow.run_local_server(port=0)
    _write_token_file(token_file, creds)
    return creds


def _write_token_file(path: Path, creds: Credentials) -> None:
    """Persist OAuth credentials to disk with owner-only permissions.

    Args:
        path: Target token file.
        creds: OAuth credentials to serialize.
    """
    path.write_text(creds.to_json(), encoding="utf-8")  # type: ignore[no-untyped-call]
    path.chmod(0o600)
