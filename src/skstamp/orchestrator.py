"""Sequential provider fallback for timestamp acquisition.

Providers are tried one at a time in priority order and the first HTTP 200
wins. Attempts are never run in parallel: a redundant token has no value
and most TSAs bill per request. Every attempt, successful or not, leaves
one :class:`~skstamp.models.TimestampLog` entry behind.
"""

from __future__ import annotations

import logging
import traceback
from contextlib import AsyncExitStack
from typing import Optional

import httpx

from .config import Provider
from .errors import ConfigurationError, ProviderAttemptError
from .models import TimestampAcquisition, TimestampLog, TimestampLogInfo
from .providers import ProviderDirectory
from .request import TimestampRequestBuilder, client_options, resolve_plan
from .tempfiles import TempFileManager

logger = logging.getLogger("skstamp.orchestrator")


class TimestampRequestOrchestrator:
    """Request a timestamp from the configured providers.

    Args:
        directory: Providers to try.
        temp_files: Manager for per-attempt temp files.
        timeout_seconds: HTTP timeout per call. ``None`` waits indefinitely.
        transport: Optional httpx transport, used instead of the network.
    """

    def __init__(
        self,
        directory: ProviderDirectory,
        temp_files: TempFileManager,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._directory = directory
        self._builder = TimestampRequestBuilder(temp_files)
        self._timeout = timeout_seconds
        self._transport = transport

    async def get_timestamp(self, query: bytes) -> TimestampAcquisition:
        """Try providers until one returns a timestamp response.

        Args:
            query: DER TimeStampReq bytes.

        Returns:
            The first response obtained (``tsr`` is ``None`` if every
            provider failed), the name of the last provider attempted, and
            the log of every attempt in order.

        Raises:
            ConfigurationError: If a provider has no name or URL.
        """
        result = TimestampAcquisition()

        for provider in self._directory.ordered():
            if not provider.name:
                raise ConfigurationError("Provider name is missing")
            if not provider.url:
                raise ConfigurationError(f'Provider "{provider.name}" url is missing')

            tsr, log = await self._attempt(provider, query)
            result.log_history.append(log)
            result.provider_name = provider.name

            if tsr is not None:
                result.tsr = tsr
                break

        if result.tsr is None:
            logger.error(
                "No timestamp obtained after %d provider attempts", len(result.log_history)
            )
        return result

    async def _attempt(self, provider: Provider, query: bytes) -> tuple[Optional[bytes], TimestampLog]:
        """Run one provider attempt; never raises for provider failures."""
        plan = resolve_plan(provider)
        logger.info("Requesting timestamp from %s (%s)", provider.name, plan.strategy.value)

        try:
            async with AsyncExitStack() as scope:
                client = await scope.enter_async_context(self._client_for(provider))
                request = await self._builder.prepare(plan, query, client, scope)
                response = await client.post(
                    request.url, headers=request.headers, content=request.content
                )
                if response.status_code != 200:
                    raise ProviderAttemptError(
                        f"TSA response unsatisfactory: {response.status_code} {response.reason_phrase}",
                        status_code=response.status_code,
                    )
                tsr = response.content
        except Exception as exc:
            logger.warning("TSA %s failed: %s, trying next", provider.name, exc)
            return None, TimestampLog(
                info=TimestampLogInfo(name=provider.name, url=provider.url, error=str(exc)),
                error_trace="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            )

        logger.info("Timestamp obtained from %s", provider.name)
        return tsr, TimestampLog(
            info=TimestampLogInfo(
                name=provider.name,
                url=provider.url,
                response=f"{response.status_code}, {response.reason_phrase}",
            ),
        )

    def _client_for(self, provider: Provider) -> httpx.AsyncClient:
        options = client_options(provider, self._timeout)
        if self._transport is not None:
            options.pop("proxy", None)
            options["transport"] = self._transport
        return httpx.AsyncClient(**options)
