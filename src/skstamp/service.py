"""Trusted timestamp service: create, inspect and verify RFC 3161 tokens.

The service composes the provider fallback, the OpenSSL adapter and the
text parser into four operations:

- :meth:`TrustedTimestampService.create_timestamp_token`
- :meth:`TrustedTimestampService.get_timestamp_info`
- :meth:`TrustedTimestampService.verify_token` / :meth:`~TrustedTimestampService.verify_tsr`
- :meth:`TrustedTimestampService.test_service`

Usage::

    from skstamp import TrustedTimestampService

    async with TrustedTimestampService(config) as service:
        created = await service.create_timestamp_token(digest, "sha256", size)
        print(created.provider_name, created.timestamp.verified)

OpenSSL docs: https://www.openssl.org/docs/manmaster/man1/openssl-ts.html
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import httpx

from .config import InfoType, TimestampServiceConfig, coerce_config
from .digest import require_algorithm, require_digest
from .errors import (
    CreateTimestampTokenError,
    SkStampError,
    ToolkitExecutionError,
    VerificationMismatchError,
)
from .models import CreatedTimestampToken, Timestamp, TimestampInfo
from .orchestrator import TimestampRequestOrchestrator
from .parser import parse_cert_text, parse_timestamp_text
from .providers import ProviderDirectory
from .tempfiles import TempFileManager
from .toolkit import OpenSSLToolkit, is_verification_ok

logger = logging.getLogger("skstamp.service")


class TrustedTimestampService:
    """Issue, import and verify trusted timestamps.

    Args:
        config: Service configuration, or a mapping in the JSON config
            shape (camelCase keys accepted).
        toolkit: OpenSSL adapter. Built from ``config`` when omitted.
        transport: Optional httpx transport for all provider calls.

    Raises:
        ConfigurationError: If the trust anchor directory or the provider
            list is missing.
    """

    def __init__(
        self,
        config: Union[TimestampServiceConfig, dict, None] = None,
        toolkit: Optional[OpenSSLToolkit] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = coerce_config(config)
        self.info_type = InfoType(self.config.info_type)
        self.certs_location: str = self.config.certs_location
        self.toolkit = toolkit or OpenSSLToolkit(
            binary=self.config.openssl_path,
            timeout_seconds=self.config.timeout_seconds,
        )
        self.temp_files = TempFileManager(directory=self.config.temp_dir)
        self.providers = ProviderDirectory(self.config.providers)
        self.orchestrator = TimestampRequestOrchestrator(
            self.providers,
            self.temp_files,
            timeout_seconds=self.config.timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "TrustedTimestampService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Release any temp files still held by the service."""
        self.temp_files.release_all()

    # ------------------------------------------------------------------
    # Info
    # ------------------------------------------------------------------

    async def get_timestamp_info(self, tsr: bytes, is_token: bool = False) -> TimestampInfo:
        """Parse a timestamp response (or bare token) into a :class:`TimestampInfo`.

        In ``normal`` mode the TSA signing certificate is extracted and
        attached as ``cert_info``.

        Never raises: on failure the returned record carries only ``error``.
        """
        try:
            async with self.temp_files.temp_file(tsr) as input_path:
                text = await self.toolkit.render_text(input_path, is_token)
                info = parse_timestamp_text(text, self.info_type)
                if info.error:
                    return info

                try:
                    cert_text = await self._describe_signer(input_path, is_token)
                    cert_info = parse_cert_text(cert_text, self.config.cert_encoding)
                except (SkStampError, OSError, LookupError, ValueError) as exc:
                    raise SkStampError(f"Unable to get cert info from timestamp token: {exc}") from exc

                if self.info_type is InfoType.NORMAL:
                    info.cert_info = cert_info
                return info
        except (SkStampError, OSError, LookupError, ValueError) as exc:
            logger.warning("Failed to read timestamp info: %s", exc)
            return TimestampInfo.from_error(str(exc))

    async def _describe_signer(self, input_path: Path, is_token: bool) -> str:
        if is_token:
            pem = await self.toolkit.extract_certificate(input_path)
        else:
            async with self.temp_files.temp_file() as token_path:
                await self.toolkit.extract_token(input_path, token_path)
                pem = await self.toolkit.extract_certificate(token_path)
        return await self.toolkit.describe_certificate(pem)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_timestamp_token(
        self, digest: str, algorithm: str, data_size: int
    ) -> CreatedTimestampToken:
        """Obtain, inspect and verify a new timestamp for ``digest``.

        Args:
            digest: Hex digest of the data.
            algorithm: Hash algorithm, e.g. ``sha256`` or ``SHA-256``.
            data_size: Size of the data in bytes, stored for later checks.

        Returns:
            The verified :class:`Timestamp`, the provider that issued it and
            the attempt log.

        Raises:
            CreateTimestampTokenError: For every failure. ``provider_name``
                and ``log_history`` are set once providers were attempted;
                the underlying error is chained as ``__cause__``.
        """
        provider_name: Optional[str] = None
        log_history: list = []

        try:
            normalized = require_algorithm(algorithm)
            require_digest(digest)

            query = await self.toolkit.build_query(digest, normalized)
            acquisition = await self.orchestrator.get_timestamp(query)
            provider_name = acquisition.provider_name
            log_history = acquisition.log_history

            if acquisition.tsr is None:
                raise CreateTimestampTokenError(
                    "Failed to create trusted timestamp, no provider was available",
                    provider_name=provider_name,
                    log_history=log_history,
                )

            info = await self.get_timestamp_info(acquisition.tsr, is_token=False)
            timestamp = Timestamp(
                digest=digest,
                hash_algorithm=algorithm,
                data_size=data_size,
                tsr=acquisition.tsr,
                is_token=False,
                cert_expiry=info.cert_info.not_after if info.cert_info else None,
                verified=None,
            )
            timestamp.verified = await self.verify_token(timestamp, digest, data_size)

            logger.info(
                "Created timestamp for %s via %s (verified=%s)",
                digest[:16],
                provider_name,
                timestamp.verified,
            )
            return CreatedTimestampToken(
                timestamp=timestamp, provider_name=provider_name, log_history=log_history
            )
        except CreateTimestampTokenError:
            raise
        except Exception as exc:
            raise CreateTimestampTokenError(
                f"Failed to create trusted timestamp: {exc}",
                provider_name=provider_name,
                log_history=log_history,
            ) from exc

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify_token(self, timestamp: Timestamp, digest: str, data_size: int) -> bool:
        """Check that ``timestamp`` covers data with ``digest`` and ``data_size``.

        The size and digest identity checks run first, without touching
        OpenSSL.

        Raises:
            VerificationMismatchError: If size or digest differ.
        """
        if timestamp.data_size != data_size:
            raise VerificationMismatchError(
                "Timestamp token verification failed: The provided data size "
                f"({data_size}) does not match the time stamped size ({timestamp.data_size})."
            )

        if timestamp.digest != digest:
            raise VerificationMismatchError(
                "Timestamp token verification failed: The provided digest "
                f"({digest}) does not match the time stamped digest ({timestamp.digest})."
            )

        return await self.verify_tsr(digest, timestamp.tsr, timestamp.is_token)

    async def verify_tsr(self, digest: str, tsr: bytes, is_token: bool = False) -> bool:
        """Verify a response (or bare token) against ``digest`` and the trust anchors.

        Returns:
            True if OpenSSL reported ``Verification: OK``.

        Raises:
            DigestValidationError: If ``digest`` is not hex.
            ToolkitExecutionError: If OpenSSL rejects the response.
        """
        require_digest(digest)

        async with self.temp_files.temp_file(tsr) as path:
            try:
                output = await self.toolkit.verify(digest, path, is_token, self.certs_location)
            except ToolkitExecutionError as exc:
                logger.warning("Failed to verify tsr: %s", exc.message)
                raise

        return is_verification_ok(output)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def test_service(self) -> str:
        """Return the path of the OpenSSL binary, proving it is installed.

        Raises:
            ToolkitExecutionError: If OpenSSL cannot be found.
        """
        return self.toolkit.locate()
