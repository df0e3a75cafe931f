"""Per-provider request building: auth strategy selection and HTTP details.

Each provider is resolved once into a :data:`RequestPlan`, a closed set of
three variants:

- :class:`NoAuthPlan`    plain POST of the query bytes
- :class:`BasicAuthPlan` the same, with ``Authorization: Basic``
- :class:`OAuthPlan`     client-credentials token exchange, then a POST
  with ``Authorization: Bearer``

The plan never changes during an attempt; a provider whose plan fails is
simply skipped in favour of the next one.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, ClassVar, Optional, Union

import httpx

from .config import OAuthUrl, Provider, ProviderAuth
from .errors import ProviderAttemptError
from .tempfiles import TempFileManager

logger = logging.getLogger("skstamp.request")

TIMESTAMP_QUERY_CONTENT_TYPE = "application/timestamp-query"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

_STREAM_CHUNK_SIZE = 64 * 1024


class AuthStrategy(str, Enum):
    """How a provider authenticates timestamp requests."""

    NO_AUTH = "noAuth"
    BASIC = "basic"
    OAUTH = "oauth"


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoAuthPlan:
    url: str

    strategy: ClassVar[AuthStrategy] = AuthStrategy.NO_AUTH


@dataclass(frozen=True)
class BasicAuthPlan:
    url: str
    auth: ProviderAuth

    strategy: ClassVar[AuthStrategy] = AuthStrategy.BASIC


@dataclass(frozen=True)
class OAuthPlan:
    token_url: str
    timestamp_url: str
    auth: Optional[ProviderAuth]
    form: dict[str, str] = field(default_factory=dict)

    strategy: ClassVar[AuthStrategy] = AuthStrategy.OAUTH


RequestPlan = Union[NoAuthPlan, BasicAuthPlan, OAuthPlan]


def select_strategy(provider: Provider) -> AuthStrategy:
    """Pick the auth strategy from the provider's static shape.

    Two-URL form wins; otherwise complete Basic credentials; otherwise no
    auth.
    """
    if isinstance(provider.url, OAuthUrl):
        return AuthStrategy.OAUTH
    if provider.auth is not None and provider.auth.user and provider.auth.password:
        return AuthStrategy.BASIC
    return AuthStrategy.NO_AUTH


def resolve_plan(provider: Provider) -> RequestPlan:
    """Resolve ``provider`` into its request plan."""
    strategy = select_strategy(provider)
    url = provider.url

    if isinstance(url, OAuthUrl):
        return OAuthPlan(
            token_url=url.get_token_url,
            timestamp_url=url.get_timestamp_url,
            auth=provider.auth,
            form=dict(provider.body or {}),
        )
    if strategy is AuthStrategy.BASIC:
        return BasicAuthPlan(url=str(url), auth=provider.auth)
    return NoAuthPlan(url=str(url))


def basic_authorization(auth: ProviderAuth) -> str:
    """Return an ``Authorization`` header value for HTTP Basic auth."""
    token = base64.b64encode(f"{auth.user}:{auth.password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def client_options(provider: Provider, timeout: Optional[float] = None) -> dict[str, Any]:
    """Keyword arguments for the :class:`httpx.AsyncClient` serving ``provider``.

    ``timeout`` is passed through explicitly so that ``None`` really means
    "no timeout" rather than httpx's own default. Redirects are followed for
    both the token and the timestamp endpoint.
    """
    options: dict[str, Any] = {"timeout": httpx.Timeout(timeout), "follow_redirects": True}
    if provider.proxy is not None and provider.proxy.url:
        options["proxy"] = provider.proxy.url
        options["verify"] = not provider.proxy.allow_unauthorized
    return options


# ---------------------------------------------------------------------------
# Prepared request
# ---------------------------------------------------------------------------


@dataclass
class PreparedRequest:
    """The timestamp POST, ready to send."""

    url: str
    headers: dict[str, str]
    content: Any


async def _iter_file(path: Path) -> AsyncIterator[bytes]:
    with path.open("rb") as fh:
        while True:
            chunk = await asyncio.to_thread(fh.read, _STREAM_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


class TimestampRequestBuilder:
    """Build the outbound timestamp request for a resolved plan.

    Args:
        temp_files: Manager used for the OAuth upload file.
    """

    def __init__(self, temp_files: TempFileManager) -> None:
        self._temp_files = temp_files

    async def prepare(
        self,
        plan: RequestPlan,
        query: bytes,
        client: httpx.AsyncClient,
        scope: AsyncExitStack,
    ) -> PreparedRequest:
        """Return the request to send for ``plan``.

        Args:
            plan: Resolved provider plan.
            query: DER TimeStampReq bytes.
            client: HTTP client configured for this provider (proxy, TLS).
            scope: Attempt scope; resources created here are released when
                it closes.

        Raises:
            ProviderAttemptError: If the OAuth token exchange fails.
        """
        headers = {"Content-Type": TIMESTAMP_QUERY_CONTENT_TYPE}

        if isinstance(plan, BasicAuthPlan):
            headers["Authorization"] = basic_authorization(plan.auth)
            return PreparedRequest(url=plan.url, headers=headers, content=query)

        if isinstance(plan, OAuthPlan):
            access_token = await self.fetch_access_token(plan, client)
            path = await scope.enter_async_context(self._temp_files.temp_file(query))
            size = (await asyncio.to_thread(path.stat)).st_size
            headers["Authorization"] = f"Bearer {access_token}"
            headers["Content-Length"] = str(size)
            return PreparedRequest(url=plan.timestamp_url, headers=headers, content=_iter_file(path))

        return PreparedRequest(url=plan.url, headers=headers, content=query)

    async def fetch_access_token(self, plan: OAuthPlan, client: httpx.AsyncClient) -> str:
        """Run the client-credentials exchange and return the access token.

        Raises:
            ProviderAttemptError: On missing credentials, transport errors,
                a non-JSON reply, or a reply without ``access_token``.
        """
        if plan.auth is None:
            raise ProviderAttemptError("OAuth provider is missing auth credentials")

        headers = {
            "Content-Type": FORM_CONTENT_TYPE,
            "Authorization": basic_authorization(plan.auth),
        }

        try:
            response = await client.post(plan.token_url, headers=headers, data=plan.form)
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderAttemptError(f"OAuth token request failed: {exc}") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            detail = payload.get("error") if isinstance(payload, dict) else None
            raise ProviderAttemptError(
                "OAuth token response did not contain an access_token"
                + (f": {detail}" if detail else ""),
                status_code=response.status_code,
            )

        logger.debug("Obtained OAuth access token from %s", plan.token_url)
        return access_token
