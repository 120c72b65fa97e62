"""ATXP connection-string resolution and parsing."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from src.core.errors import CredentialError
from src.core.settings import Settings

MISSING_CONNECTION_STRING = (
    "ATXP connection string not found. Provide either x-atxp-connection-string header "
    "or ATXP_CONNECTION_STRING environment variable"
)


@dataclass(frozen=True)
class AtxpAccount:
    connection_string: str
    connection_token: str
    account_id: str | None
    network: str = "base"

    @classmethod
    def from_connection_string(cls, connection_string: str, *, network: str = "base") -> AtxpAccount:
        """Parse `https://accounts.atxp.ai?connection_token=...&account_id=...`."""
        parsed = urlparse(connection_string.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise CredentialError("Invalid ATXP connection string: expected an http(s) URL")
        query = parse_qs(parsed.query)
        token = (query.get("connection_token") or [""])[0]
        if not token:
            raise CredentialError("Invalid ATXP connection string: missing connection token")
        account_id = (query.get("account_id") or [None])[0]
        return cls(
            connection_string=connection_string,
            connection_token=token,
            account_id=account_id,
            network=network,
        )


def get_connection_string(headers: Mapping[str, str], settings: Settings) -> str:
    """Header wins over settings; empty values count as absent."""
    header_value = (headers.get(settings.CONNECTION_STRING_HEADER) or "").strip()
    if header_value:
        return header_value
    env_value = (settings.ATXP_CONNECTION_STRING or "").strip()
    if env_value:
        return env_value
    raise CredentialError(MISSING_CONNECTION_STRING)


def find_connection_string(headers: Mapping[str, str], settings: Settings) -> str | None:
    try:
        return get_connection_string(headers, settings)
    except CredentialError:
        return None


def validate_connection_string(headers: Mapping[str, str], settings: Settings) -> tuple[bool, str | None]:
    try:
        AtxpAccount.from_connection_string(get_connection_string(headers, settings))
    except CredentialError as e:
        return False, str(e)
    return True, None
