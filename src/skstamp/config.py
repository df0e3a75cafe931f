"""Configuration models for SKStamp.

Providers and service settings are plain pydantic models. They accept both
the snake_case field names and the camelCase spelling used by existing
JSON configuration files::

    {
        "certsLocation": "/etc/ssl/certs/",
        "providers": [
            {"name": "freetsa", "url": "https://freetsa.org/tsr", "priority": 1},
            {
                "name": "oauth-tsa",
                "url": {
                    "getTokenUrl": "https://tsa.example.com/token",
                    "getTimestampUrl": "https://tsa.example.com/tsr"
                },
                "auth": {"user": "client-id", "pass": "client-secret"},
                "body": {"grant_type": "client_credentials", "scope": "timestamp"}
            }
        ]
    }
"""

from __future__ import annotations

import codecs
import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError

logger = logging.getLogger("skstamp.config")

DEFAULT_CONFIG_PATH = Path.home() / ".skstamp" / "config.json"
CONFIG_ENV_VAR = "SKSTAMP_CONFIG"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class InfoType(str, Enum):
    """How much detail :class:`~skstamp.models.TimestampInfo` records carry.

    ``normal`` includes the message hash, the TSA issuer string and the
    signer certificate; ``short`` omits all three.
    """

    NORMAL = "normal"
    SHORT = "short"


# ---------------------------------------------------------------------------
# Provider records
# ---------------------------------------------------------------------------


class OAuthUrl(BaseModel):
    """Two-URL provider form: token endpoint plus timestamp endpoint."""

    get_token_url: str = Field(alias="getTokenUrl")
    get_timestamp_url: str = Field(alias="getTimestampUrl")

    model_config = {"populate_by_name": True, "frozen": True}


class ProviderAuth(BaseModel):
    """Credentials used for HTTP Basic auth or the OAuth token exchange."""

    user: str
    password: str = Field(alias="pass")

    model_config = {"populate_by_name": True, "frozen": True}


class ProxyConfig(BaseModel):
    """Outbound proxy for every call made on behalf of one provider.

    Attributes:
        url: Proxy URL, e.g. ``http://proxy.internal:3128``.
        allow_unauthorized: Relax TLS certificate verification for the
            proxied connection.
    """

    url: str
    allow_unauthorized: bool = Field(default=False, alias="allowUnauthorized")

    model_config = {"populate_by_name": True, "frozen": True}


class Provider(BaseModel):
    """One configured Time Stamp Authority endpoint.

    ``name`` and ``url`` are mandatory. They are optional at the model
    level so that a malformed entry is reported by the orchestrator as a
    configuration defect instead of failing deep inside pydantic.

    Attributes:
        name: Unique provider name, used in logs and results.
        url: Timestamp endpoint, or an :class:`OAuthUrl` pair.
        auth: Basic auth / OAuth client credentials.
        body: Form fields sent with the OAuth token request.
        proxy: Optional outbound proxy.
        priority: Lower numbers are attempted first. Providers without a
            priority are attempted last, in configuration order.
    """

    name: Optional[str] = None
    url: Optional[Union[str, OAuthUrl]] = None
    auth: Optional[ProviderAuth] = None
    body: Optional[dict[str, str]] = None
    proxy: Optional[ProxyConfig] = None
    priority: Optional[float] = None

    model_config = {"populate_by_name": True, "frozen": True}


# ---------------------------------------------------------------------------
# Service configuration
# ---------------------------------------------------------------------------


class TimestampServiceConfig(BaseModel):
    """Settings for :class:`~skstamp.service.TrustedTimestampService`.

    Attributes:
        certs_location: Directory of trusted root certificates, passed
            verbatim to ``openssl ts -verify -CApath``.
        providers: TSA providers, attempted in priority order.
        info_type: Detail level of parsed timestamp info.
        timeout_seconds: Upper bound for each subprocess and HTTP call.
            ``None`` waits indefinitely.
        openssl_path: Name or path of the OpenSSL binary.
        temp_dir: Directory for the temporary files handed to OpenSSL.
            ``None`` uses the system default.
        cert_encoding: Encoding used to decode escaped characters in
            certificate subject lines.
    """

    certs_location: Optional[str] = Field(default=None, alias="certsLocation")
    providers: list[Provider] = Field(default_factory=list)
    info_type: InfoType = Field(default=InfoType.NORMAL, alias="infoType")
    timeout_seconds: Optional[float] = Field(default=None, alias="timeoutSeconds")
    openssl_path: str = Field(default="openssl", alias="opensslPath")
    temp_dir: Optional[str] = Field(default=None, alias="tempDir")
    cert_encoding: str = Field(default="latin1", alias="certEncoding")

    model_config = {"populate_by_name": True}

    @field_validator("cert_encoding")
    @classmethod
    def _known_encoding(cls, value: str) -> str:
        try:
            codecs.lookup(value)
        except LookupError as exc:
            raise ValueError(f'Unknown certEncoding "{value}"') from exc
        return value


def validate_service_config(config: TimestampServiceConfig) -> TimestampServiceConfig:
    """Fail fast on configuration that can never produce a timestamp.

    Raises:
        ConfigurationError: If the trust anchor directory or the provider
            list is missing, or two providers share a name.
    """
    if not config.certs_location:
        raise ConfigurationError('trustedTimestamp config "certsLocation" missing!')

    if not config.providers:
        raise ConfigurationError('trustedTimestamp config "providers" missing or empty!')

    seen: set[str] = set()
    for provider in config.providers:
        if provider.name is None:
            continue
        if provider.name in seen:
            raise ConfigurationError(f'Duplicate provider name "{provider.name}"')
        seen.add(provider.name)

    return config


def coerce_config(config: Union[TimestampServiceConfig, dict, None]) -> TimestampServiceConfig:
    """Turn a mapping (or ``None``) into a validated service config."""
    if isinstance(config, TimestampServiceConfig):
        return validate_service_config(config)

    try:
        parsed = TimestampServiceConfig.model_validate(config or {})
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid trustedTimestamp config: {exc}") from exc

    return validate_service_config(parsed)


def load_config(path: Optional[Union[str, Path]] = None) -> TimestampServiceConfig:
    """Load and validate a JSON service configuration file.

    Resolution order: the explicit ``path``, then the ``SKSTAMP_CONFIG``
    environment variable, then ``~/.skstamp/config.json``.

    Raises:
        ConfigurationError: If the file is missing, is not valid JSON, or
            does not describe a usable service.
    """
    resolved = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)

    try:
        data = json.loads(resolved.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {resolved}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Unable to read config file {resolved}: {exc}") from exc

    config = coerce_config(data)
    logger.info(
        "Loaded timestamp config from %s (%d providers)", resolved, len(config.providers)
    )
    return config
