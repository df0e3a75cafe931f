"""Pydantic models for RFC 3161 timestamp tokens and their metadata.

These models represent what the service hands back to callers: the stored
token record, the per-provider attempt log, and the parsed views of a
timestamp response and of the TSA signing certificate.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from .config import OAuthUrl


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Certificate
# ---------------------------------------------------------------------------


class CertInfo(BaseModel):
    """Fields of the TSA signing certificate that SKStamp consumes.

    Attributes:
        subject: Subject DN components, e.g. ``{"C": "HU", "CN": "TSA 01"}``.
        issuer: Issuer DN components.
        not_before: Start of the validity period.
        not_after: End of the validity period.
        serial: Colon-separated lowercase serial, e.g. ``03:08:44:1e``.
        decrypted: True once the certificate text has been parsed.
    """

    subject: dict[str, str] = Field(default_factory=dict)
    issuer: dict[str, str] = Field(default_factory=dict)
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    serial: Optional[str] = None
    decrypted: bool = False

    @property
    def is_expired(self) -> bool:
        """Return True if the certificate validity period has ended."""
        return self.not_after is not None and self.not_after < _now()

    @property
    def is_effective(self) -> bool:
        """Return True if the certificate validity period has started."""
        return self.not_before is not None and self.not_before < _now()

    @property
    def is_valid(self) -> bool:
        return self.is_effective and not self.is_expired


# ---------------------------------------------------------------------------
# Parsed timestamp info
# ---------------------------------------------------------------------------


class TsaName(BaseModel):
    """Structured ``TSA: DirName:/C=../L=../O=../OU=../CN=..`` value."""

    C: Optional[str] = None
    L: Optional[str] = None
    O: Optional[str] = None  # noqa: E741
    OU: Optional[str] = None
    CN: Optional[str] = None


class TimestampInfo(BaseModel):
    """Parsed view of an ``openssl ts -reply -text`` rendering.

    Either ``error`` is set and every other field is ``None``, or ``error``
    is ``None`` and the remaining fields hold whatever the rendering
    contained.

    Attributes:
        version: TSTInfo version (always 1 in practice).
        policy_oid: TSA policy under which the token was issued.
        hash_algorithm: Digest algorithm of the message imprint.
        hash: Hex message imprint (``normal`` info type only).
        serial_number: Serial assigned by the TSA, as printed (``0x...``).
        time_stamp: Certified time, as printed.
        time_stamp_date: Certified time as an aware UTC datetime.
        accuracy: Declared accuracy in milliseconds.
        ordering: TSA ordering flag.
        nonce: Echoed nonce, ``None`` when unspecified.
        issuer: Raw TSA DirName (``normal`` info type only).
        tsa: Structured TSA name.
        cert_info: Signer certificate (``normal`` info type only).
        error: Failure message when the input could not be parsed.
    """

    version: Optional[int] = None
    policy_oid: Optional[str] = None
    hash_algorithm: Optional[str] = None
    hash: Optional[str] = None
    serial_number: Optional[str] = None
    time_stamp: Optional[str] = None
    time_stamp_date: Optional[datetime] = None
    accuracy: Optional[float] = None
    ordering: Optional[bool] = None
    nonce: Optional[str] = None
    issuer: Optional[str] = None
    tsa: Optional[TsaName] = None
    cert_info: Optional[CertInfo] = None
    error: Optional[str] = None

    @classmethod
    def from_error(cls, error: str) -> "TimestampInfo":
        """Build the error-only record returned when parsing fails."""
        return cls(error=error)


# ---------------------------------------------------------------------------
# Attempt log
# ---------------------------------------------------------------------------


class TimestampLogInfo(BaseModel):
    """What happened during a single provider attempt."""

    name: str
    date: datetime = Field(default_factory=_now)
    url: Union[str, OAuthUrl, None] = None
    response: Optional[str] = None
    error: Optional[str] = None


class TimestampLog(BaseModel):
    """One entry of the ordered ``log_history``.

    Attributes:
        info: Provider name, attempt time, URL, HTTP status line or error.
        error_trace: Formatted traceback of the failure, if any.
    """

    info: TimestampLogInfo
    error_trace: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.info.error is None


# ---------------------------------------------------------------------------
# Token record
# ---------------------------------------------------------------------------


class Timestamp(BaseModel):
    """A stored timestamp token and the data it vouches for.

    Attributes:
        digest: Hex digest that was timestamped.
        hash_algorithm: Algorithm name as supplied by the caller.
        data_size: Size in bytes of the original data.
        tsr: Raw DER timestamp response (or bare token if ``is_token``).
        is_token: True if ``tsr`` holds a bare TimeStampToken.
        cert_expiry: ``notAfter`` of the TSA signing certificate.
        verified: Result of the verification run right after creation.
    """

    digest: str
    hash_algorithm: str
    data_size: int
    tsr: bytes
    is_token: bool = False
    cert_expiry: Optional[datetime] = None
    verified: Optional[bool] = None


class CreatedTimestampToken(BaseModel):
    """Result of :meth:`TrustedTimestampService.create_timestamp_token`."""

    timestamp: Timestamp
    provider_name: str
    log_history: list[TimestampLog] = Field(default_factory=list)


class TimestampAcquisition(BaseModel):
    """Outcome of one pass over the provider list.

    ``tsr`` is ``None`` when every provider failed; ``provider_name`` is
    then the last provider attempted.
    """

    tsr: Optional[bytes] = None
    provider_name: str = ""
    log_history: list[TimestampLog] = Field(default_factory=list)
