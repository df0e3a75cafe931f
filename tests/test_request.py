"""Tests for auth strategy selection and request building."""

import base64
from contextlib import AsyncExitStack

import httpx
import pytest

from skstamp.config import OAuthUrl, Provider, ProviderAuth, ProxyConfig
from skstamp.errors import ProviderAttemptError
from skstamp.request import (
    AuthStrategy,
    BasicAuthPlan,
    NoAuthPlan,
    OAuthPlan,
    TimestampRequestBuilder,
    basic_authorization,
    client_options,
    resolve_plan,
    select_strategy,
)
from skstamp.tempfiles import TempFileManager

OAUTH_URL = {"getTokenUrl": "https://auth.example/token", "getTimestampUrl": "https://tsa.example/tsr"}


def _oauth_provider(**overrides) -> Provider:
    data = {
        "name": "oauth",
        "url": OAUTH_URL,
        "auth": {"user": "client-id", "pass": "client-secret"},
        "body": {"grant_type": "client_credentials", "scope": "timestamp"},
    }
    data.update(overrides)
    return Provider.model_validate(data)


def _oauth_transport(token_payload, seen: list) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/token":
            return httpx.Response(200, json=token_payload)
        return httpx.Response(200, content=b"tsr-bytes")

    return httpx.MockTransport(handler)


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


class TestSelectStrategy:
    """Tests for select_strategy() and resolve_plan()."""

    def test_plain_url_is_no_auth(self):
        provider = Provider(name="p", url="https://tsa.example/tsr")
        assert select_strategy(provider) is AuthStrategy.NO_AUTH
        assert resolve_plan(provider) == NoAuthPlan(url="https://tsa.example/tsr")

    def test_full_credentials_are_basic(self):
        provider = Provider(name="p", url="https://tsa.example/tsr", auth=ProviderAuth(user="u", password="pw"))
        plan = resolve_plan(provider)
        assert isinstance(plan, BasicAuthPlan)
        assert plan.strategy is AuthStrategy.BASIC

    def test_empty_password_is_no_auth(self):
        provider = Provider(name="p", url="https://tsa.example/tsr", auth=ProviderAuth(user="u", password=""))
        assert select_strategy(provider) is AuthStrategy.NO_AUTH

    def test_two_url_form_is_oauth(self):
        plan = resolve_plan(_oauth_provider())
        assert isinstance(plan, OAuthPlan)
        assert plan.token_url == "https://auth.example/token"
        assert plan.timestamp_url == "https://tsa.example/tsr"
        assert plan.form == {"grant_type": "client_credentials", "scope": "timestamp"}

    def test_two_url_form_wins_without_auth(self):
        provider = Provider(name="p", url=OAuthUrl.model_validate(OAUTH_URL))
        assert select_strategy(provider) is AuthStrategy.OAUTH


def test_basic_authorization():
    value = basic_authorization(ProviderAuth(user="alice", password="s3cret"))
    assert value == "Basic " + base64.b64encode(b"alice:s3cret").decode("ascii")


class TestClientOptions:
    """Tests for client_options()."""

    def test_no_proxy(self):
        options = client_options(Provider(name="p", url="https://tsa.example/tsr"), 5)
        assert "proxy" not in options
        assert options["timeout"] == httpx.Timeout(5)

    def test_follows_redirects(self):
        options = client_options(Provider(name="p", url="https://tsa.example/tsr"))
        assert options["follow_redirects"] is True

    def test_none_timeout_disables_timeouts(self):
        options = client_options(Provider(name="p", url="https://tsa.example/tsr"))
        assert options["timeout"] == httpx.Timeout(None)

    def test_proxy_keeps_tls_verification(self):
        provider = Provider(name="p", url="https://tsa.example/tsr", proxy=ProxyConfig(url="http://proxy:3128"))
        options = client_options(provider)
        assert options["proxy"] == "http://proxy:3128"
        assert options["verify"] is True

    def test_proxy_allow_unauthorized(self):
        provider = Provider.model_validate(
            {
                "name": "p",
                "url": "https://tsa.example/tsr",
                "proxy": {"url": "http://proxy:3128", "allowUnauthorized": True},
            }
        )
        assert client_options(provider)["verify"] is False


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


class TestTimestampRequestBuilder:
    """Tests for TimestampRequestBuilder.prepare()."""

    @pytest.mark.asyncio
    async def test_no_auth(self, tmp_path):
        builder = TimestampRequestBuilder(TempFileManager(tmp_path))
        async with AsyncExitStack() as scope, httpx.AsyncClient() as client:
            request = await builder.prepare(NoAuthPlan(url="https://tsa.example/tsr"), b"query", client, scope)

        assert request.url == "https://tsa.example/tsr"
        assert request.headers == {"Content-Type": "application/timestamp-query"}
        assert request.content == b"query"

    @pytest.mark.asyncio
    async def test_basic(self, tmp_path):
        builder = TimestampRequestBuilder(TempFileManager(tmp_path))
        plan = BasicAuthPlan(url="https://tsa.example/tsr", auth=ProviderAuth(user="u", password="pw"))
        async with AsyncExitStack() as scope, httpx.AsyncClient() as client:
            request = await builder.prepare(plan, b"query", client, scope)

        assert request.headers["Authorization"] == basic_authorization(plan.auth)
        assert request.headers["Content-Type"] == "application/timestamp-query"

    @pytest.mark.asyncio
    async def test_oauth_token_then_streamed_upload(self, tmp_path):
        temp_files = TempFileManager(tmp_path)
        builder = TimestampRequestBuilder(temp_files)
        plan = resolve_plan(_oauth_provider())
        seen: list[httpx.Request] = []
        transport = _oauth_transport({"access_token": "abc123", "token_type": "bearer"}, seen)

        async with httpx.AsyncClient(transport=transport) as client:
            async with AsyncExitStack() as scope:
                request = await builder.prepare(plan, b"query-bytes", client, scope)
                assert len(temp_files.live) == 1
                response = await client.post(request.url, headers=request.headers, content=request.content)
            assert temp_files.live == []

        assert response.content == b"tsr-bytes"

        token_request, timestamp_request = seen
        assert token_request.url == "https://auth.example/token"
        assert token_request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert token_request.headers["Authorization"] == basic_authorization(plan.auth)
        assert b"grant_type=client_credentials" in token_request.content

        assert timestamp_request.url == "https://tsa.example/tsr"
        assert timestamp_request.headers["Authorization"] == "Bearer abc123"
        assert timestamp_request.headers["Content-Type"] == "application/timestamp-query"
        assert timestamp_request.headers["Content-Length"] == str(len(b"query-bytes"))
        assert "Transfer-Encoding" not in timestamp_request.headers
        assert timestamp_request.content == b"query-bytes"

    @pytest.mark.asyncio
    async def test_oauth_missing_access_token(self, tmp_path):
        temp_files = TempFileManager(tmp_path)
        builder = TimestampRequestBuilder(temp_files)
        seen: list[httpx.Request] = []
        transport = _oauth_transport({"error": "invalid_client"}, seen)

        async with httpx.AsyncClient(transport=transport) as client, AsyncExitStack() as scope:
            with pytest.raises(ProviderAttemptError, match="access_token: invalid_client"):
                await builder.prepare(resolve_plan(_oauth_provider()), b"q", client, scope)

        assert len(seen) == 1
        assert temp_files.live == []

    @pytest.mark.asyncio
    async def test_oauth_non_json_reply(self, tmp_path):
        builder = TimestampRequestBuilder(TempFileManager(tmp_path))
        transport = httpx.MockTransport(lambda request: httpx.Response(502, content=b"<html>bad gateway"))

        async with httpx.AsyncClient(transport=transport) as client, AsyncExitStack() as scope:
            with pytest.raises(ProviderAttemptError, match="OAuth token request failed"):
                await builder.prepare(resolve_plan(_oauth_provider()), b"q", client, scope)

    @pytest.mark.asyncio
    async def test_oauth_without_credentials(self, tmp_path):
        builder = TimestampRequestBuilder(TempFileManager(tmp_path))
        plan = resolve_plan(_oauth_provider(auth=None))

        async with httpx.AsyncClient() as client, AsyncExitStack() as scope:
            with pytest.raises(ProviderAttemptError, match="missing auth credentials"):
                await builder.prepare(plan, b"q", client, scope)
