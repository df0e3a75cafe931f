"""OpenSSL adapter for the RFC 3161 protocol operations.

SKStamp never encodes or decodes ASN.1 itself. Every protocol operation is
one ``openssl`` invocation:

- ``openssl ts -query``    build a TimeStampReq for a digest
- ``openssl ts -verify``   verify a response or token against trust anchors
- ``openssl ts -reply``    render a response/token as text, or extract the token
- ``openssl pkcs7``        pull the signer certificate out of a token
- ``openssl x509``         describe that certificate

Commands are run with :func:`asyncio.create_subprocess_exec` (argument
lists, never a shell). Exit code 0 means success and stdout is the payload;
anything else becomes a :class:`~skstamp.errors.ToolkitExecutionError`
carrying the command line and stderr.

References:
    https://www.openssl.org/docs/manmaster/man1/openssl-ts.html
"""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
import shutil
from pathlib import Path
from typing import Optional, Sequence

from .errors import ToolkitExecutionError

logger = logging.getLogger("skstamp.toolkit")

_VERIFICATION_OK = re.compile(r"Verification: OK", re.IGNORECASE)


def is_verification_ok(output: str) -> bool:
    """Return True if OpenSSL reported a successful verification."""
    return _VERIFICATION_OK.search(output or "") is not None


class OpenSSLToolkit:
    """Thin async wrapper around the ``openssl`` command line tool.

    Args:
        binary: Name or path of the OpenSSL executable.
        timeout_seconds: Maximum run time of a single invocation.
            ``None`` waits indefinitely.
    """

    def __init__(self, binary: str = "openssl", timeout_seconds: Optional[float] = None) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    # ------------------------------------------------------------------
    # Process execution
    # ------------------------------------------------------------------

    async def _run(self, args: Sequence[str], stdin: Optional[bytes] = None) -> bytes:
        """Run ``openssl <args>`` and return its stdout.

        Raises:
            ToolkitExecutionError: On a missing binary, a timeout, or a
                non-zero exit status.
        """
        argv = [self.binary, *args]
        command = shlex.join(argv)
        logger.debug("Running %s", command)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ToolkitExecutionError(command, str(exc)) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ToolkitExecutionError(
                command, f"timed out after {self.timeout_seconds} seconds"
            ) from exc

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise ToolkitExecutionError(
                command,
                message or f"exited with status {process.returncode}",
                returncode=process.returncode,
            )

        return stdout

    async def _run_text(self, args: Sequence[str], stdin: Optional[bytes] = None) -> str:
        stdout = await self._run(args, stdin=stdin)
        return stdout.decode("utf-8", errors="replace")

    # ------------------------------------------------------------------
    # Protocol operations
    # ------------------------------------------------------------------

    async def build_query(self, digest: str, algorithm: str) -> bytes:
        """Create a DER TimeStampReq for ``digest``.

        The request asks the TSA to embed its certificate and carries no
        nonce.

        Args:
            digest: Hex digest of the data to timestamp.
            algorithm: Normalized algorithm name, e.g. ``sha256``.

        Returns:
            DER-encoded TimeStampReq bytes.
        """
        return await self._run(
            ["ts", "-query", "-digest", digest, "-no_nonce", f"-{algorithm}", "-cert"]
        )

    async def verify(
        self,
        digest: str,
        path: Path,
        is_token: bool,
        certs_location: str,
    ) -> str:
        """Verify the response (or bare token) stored at ``path``.

        Returns:
            The raw OpenSSL output. Use :func:`is_verification_ok` on it.
        """
        args = ["ts", "-verify", "-digest", digest]
        if is_token:
            args.append("-token_in")
        args += ["-in", str(path), "-CApath", certs_location]
        return await self._run_text(args)

    async def render_text(self, path: Path, is_token: bool) -> str:
        """Render the response or token at ``path`` as human-readable text."""
        args = ["ts", "-reply"]
        if is_token:
            args.append("-token_in")
        args += ["-in", str(path), "-text"]
        return await self._run_text(args)

    async def extract_token(self, response_path: Path, token_path: Path) -> bytes:
        """Write the TimeStampToken of a full response to ``token_path``.

        Returns:
            The extracted DER token bytes.
        """
        await self._run(
            ["ts", "-reply", "-in", str(response_path), "-token_out", "-out", str(token_path)]
        )
        return await asyncio.to_thread(token_path.read_bytes)

    async def extract_certificate(self, token_path: Path) -> str:
        """Return the certificates embedded in a DER token, PEM encoded."""
        return await self._run_text(
            ["pkcs7", "-inform", "der", "-in", str(token_path), "-print_certs"]
        )

    async def describe_certificate(self, pem: str) -> str:
        """Return ``subject=``/``issuer=``/``notAfter=``/... lines for a PEM certificate."""
        return await self._run_text(
            ["x509", "-noout", "-subject", "-issuer", "-enddate", "-startdate", "-serial"],
            stdin=pem.encode("utf-8"),
        )

    # ------------------------------------------------------------------
    # Installation check
    # ------------------------------------------------------------------

    def locate(self) -> str:
        """Return the resolved path of the OpenSSL binary.

        Raises:
            ToolkitExecutionError: If the binary cannot be found.
        """
        resolved = shutil.which(self.binary)
        if not resolved:
            raise ToolkitExecutionError(
                f"which {self.binary}", "Unable to verify openssl installation: openssl is unavailable"
            )
        return resolved
