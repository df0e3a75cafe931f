"""SKStamp: RFC 3161 trusted timestamps with multi-provider fallback."""

from .config import (
    InfoType,
    OAuthUrl,
    Provider,
    ProviderAuth,
    ProxyConfig,
    TimestampServiceConfig,
    load_config,
)
from .errors import (
    ConfigurationError,
    CreateTimestampTokenError,
    DigestValidationError,
    ProviderAttemptError,
    SkStampError,
    ToolkitExecutionError,
    VerificationMismatchError,
)
from .models import CertInfo, CreatedTimestampToken, Timestamp, TimestampInfo, TimestampLog
from .service import TrustedTimestampService

__version__ = "0.1.0"

__all__ = [
    "CertInfo",
    "ConfigurationError",
    "CreateTimestampTokenError",
    "CreatedTimestampToken",
    "DigestValidationError",
    "InfoType",
    "OAuthUrl",
    "Provider",
    "ProviderAttemptError",
    "ProviderAuth",
    "ProxyConfig",
    "SkStampError",
    "Timestamp",
    "TimestampInfo",
    "TimestampLog",
    "TimestampServiceConfig",
    "ToolkitExecutionError",
    "TrustedTimestampService",
    "VerificationMismatchError",
    "load_config",
]
