"""
OAuth 2 access token held per platform.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional


class AccessToken:
    """Bearer credential with its granted scopes and expiry."""

    def __init__(
        self,
        platform: Any = None,
        scopes: Optional[Iterable[str]] = None,
        token: Optional[str] = None,
        expires: Optional[datetime] = None
    ):
        self.platform = platform
        self.scopes: List[str] = list(scopes or [])
        self.token = token
        self.expires = expires
        self.created: Optional[datetime] = None
        self.updated: Optional[datetime] = None

    @property
    def is_expired(self) -> bool:
        """Check if token is expired."""
        if not self.expires:
            return False
        return datetime.now(timezone.utc) >= self.expires

    def has_scope(self, scope: str = '') -> bool:
        """Check whether the token is usable for a scope."""
        if not self.token or self.is_expired:
            return False
        return not scope or scope in self.scopes

    def expire(self) -> None:
        """Force the token to be treated as expired."""
        self.expires = datetime.now(timezone.utc)

    def set_expiry_from_seconds(self, expires_in: int) -> None:
        """Set expiry time from seconds from now."""
        self.expires = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

    def update(self, token: Optional[str], scopes: Iterable[str], expires_in: int) -> None:
        """Replace the credential with a newly issued one."""
        now = datetime.now(timezone.utc)
        self.token = token
        self.scopes = list(scopes)
        self.set_expiry_from_seconds(expires_in)
        if self.created is None:
            self.created = now
        self.updated = now

    def clear(self) -> None:
        """Drop the credential value, keeping the platform reference."""
        self.token = None
        self.scopes = []
        self.expires = None

    def __repr__(self) -> str:
        return f"AccessToken(scopes={self.scopes!r}, expires={self.expires!r})"
