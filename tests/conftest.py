"""Shared fixtures for SKStamp tests."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from skstamp.toolkit import OpenSSLToolkit

DIGEST = "eb0c81b501057f2a231d2eafe0a2c360120867f6fde6ab0f50cb8b90840ff7c4"

REPLY_TEXT = (
    "Status info:\n"
    "Status: Granted.\n"
    "Status description: unspecified\n"
    "Failure info: unspecified\n"
    "\n"
    "TST info:\n"
    "Version: 1\n"
    "Policy OID: 1.3.6.1.4.1.12345.1.1.11\n"
    "Hash Algorithm: sha256\n"
    "Message data:\n"
    "    0000 - eb 0c 81 b5 01 05 7f 2a-23 1d 2e af e0 a2 c3 60   .......*#......`\n"
    "    0010 - 12 08 67 f6 fd e6 ab 0f-50 cb 8b 90 84 0f f7 c4   ..g.....P.......\n"
    "Serial number: 0x0308441E\n"
    "Time stamp: May 29 07:19:13 2024 GMT\n"
    "Accuracy: 0x01 seconds, unspecified millis, unspecified micros\n"
    "Ordering: no\n"
    "Nonce: unspecified\n"
    "TSA: DirName:/C=HU/L=Budapest/O=Microsec Ltd./organizationIdentifier=VATHU-23584497/CN=Test TSA 01\n"
    "Extensions:\n"
)

CERT_PEM = (
    "-----BEGIN CERTIFICATE-----\n"
    "MIIBszCCAVmgAwIBAgIUDcsBZQ7gZzTc4bE1Xz5JfQn0Fd4wCgYIKoZIzj0EAwIw\n"
    "-----END CERTIFICATE-----\n"
)

CERT_TEXT = (
    "subject=C = HU, L = Budapest, O = Microsec Ltd., CN = Test TSA 01\n"
    "issuer=C = HU, L = Budapest, O = Microsec Ltd., OU = e-Szigno CA, CN = e-Szigno Test CA3\n"
    "notAfter=Feb 27 11:54:00 2099 GMT\n"
    "notBefore=Nov 26 11:54:00 2019 GMT\n"
    "serial=0308441E\n"
)


@pytest.fixture
def fake_toolkit() -> MagicMock:
    """An OpenSSLToolkit stand-in whose operations all succeed."""
    toolkit = MagicMock(spec=OpenSSLToolkit)
    toolkit.build_query = AsyncMock(return_value=b"tsq-bytes")
    toolkit.render_text = AsyncMock(return_value=REPLY_TEXT)
    toolkit.verify = AsyncMock(return_value="Using configuration from /etc/ssl/openssl.cnf\nVerification: OK\n")
    toolkit.extract_token = AsyncMock(return_value=b"token-bytes")
    toolkit.extract_certificate = AsyncMock(return_value=CERT_PEM)
    toolkit.describe_certificate = AsyncMock(return_value=CERT_TEXT)
    toolkit.locate = MagicMock(return_value="/usr/bin/openssl")
    return toolkit


@pytest.fixture
def certs_dir(tmp_path):
    path = tmp_path / "certs"
    path.mkdir()
    return path


@pytest.fixture
def service_config(tmp_path, certs_dir) -> dict:
    """A config mapping in the camelCase JSON shape."""
    return {
        "certsLocation": str(certs_dir),
        "tempDir": str(tmp_path),
        "providers": [
            {"name": "fallback", "url": "https://fallback.example/tsr"},
            {"name": "primary", "url": "https://primary.example/tsr", "priority": 1},
        ],
    }


@pytest.fixture
def tsr_transport():
    """Build an httpx MockTransport from a ``{host: (status, body)}`` map.

    Every request is recorded on ``transport.requests``.
    """

    def _build(routes: dict) -> httpx.MockTransport:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            route = routes[request.url.host]
            if isinstance(route, Exception):
                raise route
            status, body = route
            return httpx.Response(status, content=body)

        transport = httpx.MockTransport(handler)
        transport.requests = requests
        return transport

    return _build
