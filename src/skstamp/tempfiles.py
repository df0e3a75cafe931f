"""Scoped temporary files for handing binary payloads to OpenSSL.

OpenSSL reads its inputs from files, not streams, so every response,
token and query crosses the process boundary through a short-lived file.
One :class:`TempFileManager` is owned by the service; each file it creates
is tracked until released, and :meth:`TempFileManager.temp_file` guarantees
the release on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Union

logger = logging.getLogger("skstamp.tempfiles")

DEFAULT_PREFIX = "request-"
DEFAULT_SUFFIX = ".tsr"


class TempFileManager:
    """Create, track and release uniquely named temporary files.

    Args:
        directory: Where to create files. ``None`` uses the system default.
        prefix: File name prefix.
        suffix: File name suffix.
    """

    def __init__(
        self,
        directory: Optional[Union[str, Path]] = None,
        prefix: str = DEFAULT_PREFIX,
        suffix: str = DEFAULT_SUFFIX,
    ) -> None:
        self.directory = Path(directory) if directory else None
        self.prefix = prefix
        self.suffix = suffix
        self._live: set[Path] = set()

    @property
    def live(self) -> list[Path]:
        """Paths created and not yet released."""
        return sorted(self._live)

    async def create(self, content: Optional[bytes] = None) -> Path:
        """Create a new temp file, optionally filled with ``content``.

        The caller owns the returned path and must hand it back to
        :meth:`release`. Prefer :meth:`temp_file` where possible.

        Raises:
            OSError: If the file cannot be created or written.
        """
        path = await asyncio.to_thread(self._write, content)
        self._live.add(path)
        logger.debug("Created temp file %s", path)
        return path

    def _write(self, content: Optional[bytes]) -> Path:
        fd, name = tempfile.mkstemp(
            prefix=self.prefix,
            suffix=self.suffix,
            dir=str(self.directory) if self.directory else None,
        )
        with os.fdopen(fd, "wb") as fh:
            if content:
                fh.write(content)
        return Path(name)

    def release(self, path: Path) -> None:
        """Delete ``path`` and stop tracking it. Safe to call twice."""
        self._live.discard(path)
        path.unlink(missing_ok=True)
        logger.debug("Released temp file %s", path)

    def release_all(self) -> None:
        """Release every file still tracked by this manager."""
        for path in list(self._live):
            self.release(path)

    @asynccontextmanager
    async def temp_file(self, content: Optional[bytes] = None) -> AsyncIterator[Path]:
        """Async context manager yielding a temp file that is always released.

        Example::

            async with manager.temp_file(tsr_bytes) as path:
                text = await toolkit.render_text(path, is_token=False)
        """
        path = await self.create(content)
        try:
            yield path
        finally:
            self.release(path)
