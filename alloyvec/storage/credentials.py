"""
Identity-token credentials for database authentication.

Provides:
- TokenSource: caches a cloud access token and refreshes it in the background
- introspect_principal_email: asks the token-introspection endpoint who we are
- resolve_principal: ordered resolver chain, first non-empty principal wins

The access token doubles as the database password when static credentials
are not configured. The pool asks TokenSource for it each time it opens a
physical connection, so callers never re-authenticate by hand.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from typing import Any

import google.auth
import google.auth.exceptions
import httpx
from google.auth.transport.requests import Request

from alloyvec.errors import IdentityResolutionError

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = (
    "https://www.googleapis.com/auth/cloud-platform",
    "https://www.googleapis.com/auth/userinfo.email",
)

SERVICE_ACCOUNT_SUFFIX = ".gserviceaccount.com"

# Floor for the background refresh interval, also used after a failed refresh
MIN_REFRESH_INTERVAL_SECONDS = 30.0

PrincipalResolver = Callable[[], Awaitable[str | None]]


class TokenSource:
    """
    Background-refreshed access token.

    Wraps google-auth credentials (application default credentials unless
    given explicitly). ``start()`` fetches the first token and schedules a
    refresh ``refresh_margin`` seconds before each expiry. ``get_token()``
    returns the cached token and only refreshes inline when it has already
    expired.

    Usage:
        source = TokenSource()
        await source.start()
        token = await source.get_token()
        await source.close()
    """

    def __init__(
        self,
        credentials: Any | None = None,
        scopes: Sequence[str] = DEFAULT_SCOPES,
        refresh_margin: float = 300.0,
    ):
        """
        Initialize token source.

        Args:
            credentials: google-auth credentials (loaded lazily if None)
            scopes: OAuth scopes requested for application default credentials
            refresh_margin: Seconds before expiry to refresh in the background
        """
        self._credentials = credentials
        self._scopes = list(scopes)
        self._refresh_margin = refresh_margin
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        """Check if the background refresher is active."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Fetch the first token and launch the background refresher."""
        await self.refresh()
        if not self.is_running:
            self._task = asyncio.create_task(self._refresh_loop())

    async def close(self) -> None:
        """Stop the background refresher."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def get_token(self) -> str:
        """
        Return a valid access token.

        Asyncpg calls this as the password callable for every new
        physical connection.
        """
        if self._credentials is None or not self._credentials.valid:
            await self.refresh()
        return self._credentials.token

    async def refresh(self) -> None:
        """Refresh the access token now."""
        async with self._lock:
            if self._credentials is None:
                self._credentials = await asyncio.to_thread(self._load_credentials)
            try:
                await asyncio.to_thread(self._credentials.refresh, Request())
            except google.auth.exceptions.GoogleAuthError as e:
                raise IdentityResolutionError(
                    f"cannot resolve identity: token refresh failed: {e}"
                ) from e
            logger.debug(f"Access token refreshed (expires {self._credentials.expiry})")

    def seconds_until_refresh(self) -> float:
        """Seconds until the next scheduled background refresh."""
        expiry = getattr(self._credentials, "expiry", None)
        if expiry is None:
            return MIN_REFRESH_INTERVAL_SECONDS
        # google-auth keeps expiry as naive UTC
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        remaining = (expiry - now).total_seconds() - self._refresh_margin
        return max(remaining, MIN_REFRESH_INTERVAL_SECONDS)

    def _load_credentials(self) -> Any:
        try:
            credentials, _ = google.auth.default(scopes=self._scopes)
        except google.auth.exceptions.DefaultCredentialsError as e:
            raise IdentityResolutionError(
                f"cannot resolve identity: no application default credentials: {e}"
            ) from e
        return credentials

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.seconds_until_refresh())
            try:
                await self.refresh()
            except IdentityResolutionError as e:
                # get_token() refreshes inline once the token actually expires
                logger.warning(f"Background token refresh failed: {e}")


def strip_service_account_suffix(email: str) -> str:
    """Turn a service-account email into its database role name."""
    if email.endswith(SERVICE_ACCOUNT_SUFFIX):
        return email[: -len(SERVICE_ACCOUNT_SUFFIX)]
    return email


async def introspect_principal_email(
    token_source: TokenSource,
    tokeninfo_url: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> str:
    """
    Resolve the authenticated principal's email via token introspection.

    Args:
        token_source: Source of the access token to introspect
        tokeninfo_url: Introspection endpoint URL
        http_client: Optional client (a short-lived one is created if None)
        timeout: Request timeout in seconds

    Returns:
        Email of the principal the token belongs to

    Raises:
        IdentityResolutionError: On network errors or an unexpected response shape
    """
    token = await token_source.get_token()
    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(timeout=timeout)

    try:
        response = await client.get(tokeninfo_url, params={"access_token": token})
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise IdentityResolutionError(f"cannot resolve identity: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    email = payload.get("email") if isinstance(payload, dict) else None
    if not isinstance(email, str) or not email:
        raise IdentityResolutionError(
            "cannot resolve identity: introspection response has no email"
        )
    return email


async def resolve_principal(resolvers: Sequence[PrincipalResolver]) -> str:
    """
    Run resolvers in order and return the first non-empty principal.

    Resolver exceptions propagate; an empty chain result is an error.
    """
    for resolver in resolvers:
        principal = await resolver()
        if principal:
            return principal
    raise IdentityResolutionError("cannot resolve identity: no principal found")


def explicit_principal(email: str | None) -> PrincipalResolver:
    """Resolver returning a configured account email unchanged."""

    async def resolve() -> str | None:
        if email:
            logger.debug("Using configured IAM account email")
        return email or None

    return resolve


def introspected_principal(
    token_source: TokenSource,
    tokeninfo_url: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> PrincipalResolver:
    """Resolver returning the introspected email with the service-account suffix removed."""

    async def resolve() -> str | None:
        logger.debug("Retrieving IAM principal email")
        email = await introspect_principal_email(
            token_source, tokeninfo_url, http_client=http_client, timeout=timeout
        )
        return strip_service_account_suffix(email)

    return resolve
