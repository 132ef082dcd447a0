"""
Bearer token validation.

A token is checked in two steps before it is trusted for writes:

1. The identity endpoint confirms the token authenticates at all.
2. A gist listing call returns the token's scope list in a response
   header, which must contain the required scope.

Validation only reports a verdict. Persisting the token is the
caller's decision.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..exceptions import ErrorKind, RemoteStoreError
from ..logging_utils import get_storage_logger
from .api import OAUTH_SCOPES_HEADER, GitHubApiClient, get_header

logger = get_storage_logger("credentials")

DEFAULT_REQUIRED_SCOPE = "gist"


@dataclass
class ValidationVerdict:
    """Outcome of validating a token."""

    valid: bool
    has_required_scope: bool
    reason: str
    login: str | None = None
    scopes: list[str] = field(default_factory=list)
    error_kind: ErrorKind | None = None

    @property
    def usable(self) -> bool:
        """True when the token may be used for writes."""
        return self.valid and self.has_required_scope


def parse_scopes(header_value: str | None) -> list[str]:
    if not header_value:
        return []
    return [s.strip() for s in header_value.split(",") if s.strip()]


class CredentialValidator:
    """Checks token validity and scope against the remote API."""

    def __init__(self, client: GitHubApiClient, required_scope: str = DEFAULT_REQUIRED_SCOPE):
        """Initialize the validator.

        Args:
            client: API client used for the identity and scope calls
            required_scope: Scope a token needs to write documents
        """
        self.client = client
        self.required_scope = required_scope

    async def validate(self, token: str | None) -> ValidationVerdict:
        """Validate a token. Never raises for remote failures."""
        if not token or not token.strip():
            return ValidationVerdict(
                valid=False,
                has_required_scope=False,
                reason="No token provided",
            )
        token = token.strip()

        try:
            user, _ = await self.client.request(
                "GET",
                self.client.url("user"),
                token=token,
                operation="validating token",
            )
        except RemoteStoreError as e:
            logger.warning(f"Token validation failed: {e.message}")
            return ValidationVerdict(
                valid=False,
                has_required_scope=False,
                reason=e.message,
                error_kind=e.kind,
            )

        login = (user or {}).get("login")

        try:
            _, headers = await self.client.request(
                "GET",
                self.client.url("gists?per_page=1"),
                token=token,
                operation="checking token scopes",
            )
        except RemoteStoreError as e:
            logger.warning(f"Token scope check failed: {e.message}")
            return ValidationVerdict(
                valid=True,
                has_required_scope=False,
                reason=f"Token authenticated but scope check failed: {e.message}",
                login=login,
                error_kind=e.kind,
            )

        scopes = parse_scopes(get_header(headers, OAUTH_SCOPES_HEADER))
        if self.required_scope not in scopes:
            return ValidationVerdict(
                valid=True,
                has_required_scope=False,
                reason=f"Token is missing the '{self.required_scope}' scope",
                login=login,
                scopes=scopes,
            )

        logger.info(f"Token validated for {login or 'unknown user'}")
        return ValidationVerdict(
            valid=True,
            has_required_scope=True,
            reason="Token is valid",
            login=login,
            scopes=scopes,
        )
