"""Turn OpenSSL text output into :class:`TimestampInfo` and :class:`CertInfo`.

A typical ``openssl ts -reply -text`` rendering looks like::

    Status info:
    Status: Granted.
    Status description: unspecified
    Failure info: unspecified

    TST info:
    Version: 1
    Policy OID: 1.3.6.1.4.1.21528.2.2.99
    Hash Algorithm: sha256
    Message data:
        0000 - c5 3e 94 56 aa 61 ed 56-49 69 74 29 1e 01 d7 2a   .>.V.a.VIit)...*
        0010 - 64 cc 24 84 d2 a2 31 4d-33 b6 ca c8 98 23 03 b9   d.$...1M3....#..
    Serial number: 0x0308441E
    Time stamp: Jan 30 13:45:20 2018 GMT
    Accuracy: 0x01 seconds, unspecified millis, unspecified micros
    Ordering: no
    Nonce: unspecified
    TSA: DirName:/C=HU/L=Budapest/O=Microsec Ltd./OU=e-Szigno CA/CN=e-Szigno Test TSA2
    Extensions:

and ``openssl x509 -noout -subject -issuer -enddate -startdate -serial``::

    subject=C = HU, L = Budapest, O = Microsec Ltd., CN = e-Szigno Test TSA2
    issuer=C = HU, L = Budapest, O = Microsec Ltd., OU = e-Szigno CA, CN = e-Szigno Test CA3
    notAfter=Feb 27 11:54:00 2030 GMT
    notBefore=Nov 26 11:54:00 2019 GMT
    serial=0308441E

:func:`parse_timestamp_text` never raises: any failure is reported through
the ``error`` field of the returned record.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from .config import InfoType
from .errors import TimestampParseError
from .models import CertInfo, TimestampInfo, TsaName

logger = logging.getLogger("skstamp.parser")

T = TypeVar("T")

_MONTHS = {
    name: index
    for index, name in enumerate(
        ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"],
        start=1,
    )
}

_OPENSSL_DATE = re.compile(
    r"^(?P<month>[A-Z][a-z]{2})\s+(?P<day>\d{1,2})\s+"
    r"(?P<hour>\d{1,2}):(?P<minute>\d{2}):(?P<second>\d{2})(?:\.(?P<fraction>\d+))?\s+"
    r"(?P<year>\d{4})(?:\s+GMT)?$"
)
_ACCURACY = re.compile(r"^(.+) seconds, (.+) millis, (.+) micros")
_TSA_COMPONENT = re.compile(r"/(\w{1,2})=([^/]+)")
_HASH_ROW = re.compile(r"^\s*[0-9a-fA-F]{4} - ((?:[0-9a-fA-F]{2}[ -]?){1,16})", re.MULTILINE)
_CERT_LINE = re.compile(r"^\s*(\w+)\s*=\s*(.*)$")
_DN_COMPONENT = re.compile(r'(\w+)\s*=\s*(?:"((?:\\"|[^"])+)"|([^,]+))(?:,|$)')
_HEX_ESCAPES = re.compile(r"((?:\\[0-9A-Fa-f]{2})+)")
_SERIAL_PAIR = re.compile(r"([A-Za-z0-9]{2})")


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _field(text: str, label: str, revive: Optional[Callable[[str], T]] = None):
    """Return the value of a ``Label: value`` line, optionally revived."""
    match = re.search(rf"^\s*{re.escape(label)}:\s*([^\n\r]+)", text, re.MULTILINE)
    if not match:
        return None
    value = match.group(1).strip()
    return revive(value) if revive else value


def parse_openssl_date(value: str) -> datetime:
    """Parse OpenSSL's ``Jan 30 13:45:20 2018 GMT`` format into an aware UTC datetime.

    Fractional seconds (``13:45:20.123``) and space-padded days (``Jan  3``)
    are accepted.

    Raises:
        ValueError: If ``value`` is not in the expected format.
    """
    match = _OPENSSL_DATE.match(value.strip())
    if not match or match.group("month") not in _MONTHS:
        raise ValueError(f"Unrecognized date: {value!r}")

    fraction = match.group("fraction") or "0"
    microsecond = int(fraction[:6].ljust(6, "0"))
    return datetime(
        int(match.group("year")),
        _MONTHS[match.group("month")],
        int(match.group("day")),
        int(match.group("hour")),
        int(match.group("minute")),
        int(match.group("second")),
        microsecond,
        tzinfo=timezone.utc,
    )


def _accuracy_part(value: str) -> float:
    value = value.strip()
    if value == "unspecified":
        return 0.0
    if value.lower().startswith("0x"):
        return float(int(value, 16))
    return float(value)


def parse_accuracy(value: str) -> Optional[float]:
    """Convert ``<s> seconds, <ms> millis, <us> micros`` into milliseconds.

    ``unspecified`` parts count as zero; OpenSSL prints seconds in hex
    (``0x01``) on some versions, which is accepted too.

    Example::

        parse_accuracy("1 seconds, 2 millis, 3 micros")  # 1002.003
    """
    match = _ACCURACY.match(value.strip())
    if not match:
        return None
    seconds, millis, micros = (_accuracy_part(part) for part in match.groups())
    return seconds * 1000 + millis + micros / 1000


def parse_tsa_name(value: str) -> TsaName:
    """Split ``/C=HU/L=Budapest/O=.../CN=...`` into a :class:`TsaName`.

    Components other than C, L, O, OU and CN are ignored.
    """
    parts = {label: part.strip() for label, part in _TSA_COMPONENT.findall(value)}
    return TsaName(**{key: parts.get(key) for key in TsaName.model_fields})


def _parse_hash(text: str) -> Optional[str]:
    rows = _HASH_ROW.findall(text)
    if not rows:
        return None
    return "".join(re.sub(r"[\s-]", "", row) for row in rows).lower()


def _parse_ordering(value: str) -> bool:
    return value != "no"


def _parse_nonce(value: str) -> Optional[str]:
    return None if value == "unspecified" else value


# ---------------------------------------------------------------------------
# Timestamp info
# ---------------------------------------------------------------------------


def _parse_common(text: str) -> dict:
    version = _field(text, "Version", int)
    time_stamp = _field(text, "Time stamp")
    if version is None:
        raise TimestampParseError("Unable to parse timestamp info: missing Version")
    if time_stamp is None:
        raise TimestampParseError("Unable to parse timestamp info: missing Time stamp")

    return {
        "version": version,
        "policy_oid": _field(text, "Policy OID"),
        "hash_algorithm": _field(text, "Hash Algorithm"),
        "serial_number": _field(text, "Serial number"),
        "time_stamp": time_stamp,
        "time_stamp_date": parse_openssl_date(time_stamp),
        "accuracy": _field(text, "Accuracy", parse_accuracy),
        "ordering": _field(text, "Ordering", _parse_ordering),
        "nonce": _field(text, "Nonce", _parse_nonce),
    }


def _parse_normal(text: str) -> TimestampInfo:
    fields = _parse_common(text)
    issuer = _field(text, "TSA")
    if issuer is not None:
        issuer = re.sub(r"^DirName:\s*", "", issuer)

    return TimestampInfo(
        **fields,
        hash=_parse_hash(text),
        issuer=issuer,
        tsa=parse_tsa_name(issuer) if issuer is not None else None,
    )


def _parse_short(text: str) -> TimestampInfo:
    fields = _parse_common(text)
    return TimestampInfo(**fields, tsa=_field(text, "TSA", parse_tsa_name))


def parse_timestamp_text(text: Optional[str], info_type: InfoType = InfoType.NORMAL) -> TimestampInfo:
    """Parse an ``openssl ts -reply -text`` rendering.

    Args:
        text: OpenSSL output.
        info_type: ``normal`` also extracts the message hash and the raw
            TSA issuer; ``short`` skips them.

    Returns:
        A populated :class:`TimestampInfo`, or one with only ``error`` set.
    """
    try:
        if not text:
            raise TimestampParseError("Unable to parse timestamp info: empty input")
        if InfoType(info_type) is InfoType.SHORT:
            return _parse_short(text)
        return _parse_normal(text)
    except (TimestampParseError, ValueError) as exc:
        logger.warning("Failed to parse timestamp text: %s", exc)
        return TimestampInfo.from_error(str(exc))


# ---------------------------------------------------------------------------
# Certificate info
# ---------------------------------------------------------------------------


def _decode_escapes(value: str, encoding: str) -> str:
    """Decode OpenSSL ``\\C3\\A1``-style escapes in a DN value."""
    runs = _HEX_ESCAPES.findall(value)
    if not runs:
        return value

    if encoding.replace("-", "").lower() != "utf8" and any(len(run) >= 6 for run in runs):
        logger.warning(
            "Encoding was set as %s, but utf8 was detected. Using utf8 encoding for cert parsing",
            encoding,
        )
        encoding = "utf-8"

    def _convert(match: re.Match) -> str:
        raw = bytes.fromhex(match.group(1).replace("\\", ""))
        return raw.decode(encoding, errors="replace")

    return _HEX_ESCAPES.sub(_convert, value)


def parse_subject_line(line: Optional[str], encoding: str = "latin1") -> dict[str, str]:
    """Parse ``C = HU, O = "Acme, Inc.", CN = TSA`` into a dict.

    Quoted values may contain commas and ``\\"`` escaped quotes.
    """
    result: dict[str, str] = {}
    if not line:
        return result

    for match in _DN_COMPONENT.finditer(line):
        key = match.group(1)
        value = match.group(2) if match.group(2) is not None else match.group(3)
        if not key or not value:
            continue
        value = value.strip().replace('\\"', '"')
        result[key] = _decode_escapes(value, encoding)
    return result


def format_serial(serial: str) -> str:
    """Group a hex serial into colon-separated lowercase byte pairs.

    Example::

        format_serial("0308441E")  # "03:08:44:1e"
    """
    return ":".join(_SERIAL_PAIR.findall(serial.strip())).lower()


def parse_cert_text(text: str, encoding: str = "latin1") -> CertInfo:
    """Parse ``openssl x509 -noout -subject -issuer -enddate -startdate -serial`` output.

    Raises:
        ValueError: If a validity date cannot be parsed.
    """
    cert = CertInfo(decrypted=True)

    for line in text.splitlines():
        match = _CERT_LINE.match(line)
        if not match:
            continue
        prop, value = match.group(1), match.group(2).strip()
        if prop == "serial":
            cert.serial = format_serial(value)
        elif prop == "subject":
            cert.subject = parse_subject_line(value, encoding)
        elif prop == "issuer":
            cert.issuer = parse_subject_line(value, encoding)
        elif prop == "notAfter":
            cert.not_after = parse_openssl_date(value)
        elif prop == "notBefore":
            cert.not_before = parse_openssl_date(value)

    return cert
