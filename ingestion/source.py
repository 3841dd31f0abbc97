"""
Byte-level access to CSV sources (local files and remote URLs).

This module provides:
- Pure resolution of a configured source to a concrete path or URL
  (including share-link rewriting to direct-download links)
- Best-effort size hints and row-count estimates for progress display
- Scoped opening of a source as an async stream of raw byte lines,
  with retry and exponential backoff for transient remote failures
"""

import asyncio
import logging
import re
from contextlib import AsyncExitStack, asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx

from core.config import ImportConfig
from core.exceptions import NetworkError, SourceUnavailable

logger = logging.getLogger(__name__)

USER_AGENT = "csv-import/1.0"

# Row-count estimation tunables. Estimates only feed progress display.
AVERAGE_ROW_BYTES = 100
ESTIMATE_SAMPLE_LINES = 10_000
REMOTE_FALLBACK_ROWS = 1000

_DRIVE_FILE = re.compile(r"^/file/d/([^/]+)")


def is_remote(descriptor: str) -> bool:
    """True if ``descriptor`` is an http(s) URL"""
    return urlparse(descriptor).scheme in ("http", "https")


def rewrite_share_link(url: str) -> str:
    """
    Rewrite known share links to their direct-download form.

    - Dropbox: dl.dropboxusercontent.com host, ``raw=1`` instead of ``dl=0|1``
    - Google Drive: ``/file/d/<id>/view`` -> ``/uc?export=download&id=<id>``

    Other URLs are returned unchanged.
    """
    parts = urlparse(url)
    host = parts.netloc.lower()

    if host in ("dropbox.com", "www.dropbox.com"):
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "dl"]
        query.append(("raw", "1"))
        return urlunparse(parts._replace(netloc="dl.dropboxusercontent.com", query=urlencode(query)))

    if host == "drive.google.com":
        match = _DRIVE_FILE.match(parts.path)
        if match:
            query = urlencode({"export": "download", "id": match.group(1)})
            return urlunparse(parts._replace(path="/uc", query=query, fragment=""))

    return url


def resolve_source(source: str, config: ImportConfig) -> str:
    """
    Resolve a source name or descriptor to a concrete path or URL.

    ``"local"`` joins the configured local path under the base directory,
    ``"remote"``/``"dropbox"`` use the configured remote URL. Anything else
    is taken as a direct path or URL. No filesystem or network access.

    Raises:
        SourceUnavailable: If the named source is not configured
    """
    if source == "local":
        if not config.local_path:
            raise SourceUnavailable("Local path is not configured", context={"source": source})
        return str(Path(config.base_dir) / config.local_path.lstrip("/"))

    if source in ("remote", "dropbox"):
        if not config.remote_url:
            raise SourceUnavailable("Remote URL is not configured", context={"source": source})
        return rewrite_share_link(config.remote_url.strip())

    if not source or not source.strip():
        raise SourceUnavailable("No import source given", context={"source": source})

    source = source.strip()
    if is_remote(source):
        return rewrite_share_link(source)
    return source


def _client(transport: Optional[httpx.AsyncBaseTransport], timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=transport,
        timeout=timeout,
        follow_redirects=True,
        max_redirects=3,
        headers={"User-Agent": USER_AGENT},
    )


async def size_hint(
    descriptor: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = 10.0
) -> int:
    """
    Best-effort size of the source in bytes.

    Local files use the filesystem size, remote sources a HEAD request.
    Returns 0 whenever the size cannot be determined.
    """
    if not is_remote(descriptor):
        try:
            return Path(descriptor).stat().st_size
        except OSError:
            return 0

    try:
        async with _client(transport, timeout) as client:
            response = await client.head(descriptor)
            if response.status_code >= 400:
                return 0
            return int(response.headers.get("Content-Length", 0))
    except (httpx.HTTPError, ValueError) as e:
        logger.debug(f"Size lookup failed for {descriptor}: {e}")
        return 0


async def estimate_total_rows(
    descriptor: str,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> int:
    """
    Estimate the number of data rows without reading the whole source.

    Local files are sampled up to ``ESTIMATE_SAMPLE_LINES`` lines and the
    remainder is extrapolated from the bytes consumed. Remote sources divide
    the content length by ``AVERAGE_ROW_BYTES``.
    """
    if is_remote(descriptor):
        content_length = await size_hint(descriptor, transport)
        if content_length > 0:
            return max(1, content_length // AVERAGE_ROW_BYTES)
        return REMOTE_FALLBACK_ROWS

    path = Path(descriptor)
    try:
        file_size = path.stat().st_size
        line_count = 0
        with path.open("rb") as handle:
            for _ in handle:
                line_count += 1
                if line_count > ESTIMATE_SAMPLE_LINES:
                    bytes_read = handle.tell()
                    estimated = int(file_size / bytes_read * line_count) if bytes_read else line_count
                    return max(1, estimated - 1)
    except OSError as e:
        logger.debug(f"Row estimate failed for {descriptor}: {e}")
        return 0

    return max(0, line_count - 1)


async def _iter_local_lines(handle: BinaryIO) -> AsyncIterator[bytes]:
    for line in handle:
        yield line


async def _iter_remote_lines(response: httpx.Response, chunk_size: int) -> AsyncIterator[bytes]:
    tail = b""
    async for chunk in response.aiter_bytes(chunk_size):
        # Only the unterminated tail is carried into the next chunk
        lines = (tail + chunk).split(b"\n")
        tail = lines.pop()
        for line in lines:
            yield line + b"\n"
    if tail:
        yield tail


class RecordSource:
    """
    An openable CSV byte source.

    Features:
    - Local paths and http(s) URLs behind one interface
    - Scoped handles: ``async with source.open() as lines`` releases the
      file or connection on every exit path
    - Retry with exponential backoff for timeouts, connection errors,
      HTTP 429 and 5xx; 401/403/404 fail immediately

    Attributes:
        descriptor: Resolved path or URL
        max_retries: Maximum number of attempts for remote sources
        retry_delay: Initial retry delay in seconds (doubles per attempt)
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        descriptor: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 60.0,
        chunk_size: int = 64 * 1024
    ):
        self.descriptor = descriptor
        self.transport = transport
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.chunk_size = chunk_size

    @property
    def remote(self) -> bool:
        return is_remote(self.descriptor)

    async def size_hint(self) -> int:
        return await size_hint(self.descriptor, self.transport)

    async def estimate_total_rows(self) -> int:
        return await estimate_total_rows(self.descriptor, self.transport)

    @asynccontextmanager
    async def open(self) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Open the source and yield an async iterator of raw byte lines.

        Raises:
            SourceUnavailable: If the source cannot be opened
            NetworkError: If a remote source keeps failing transiently
        """
        async with AsyncExitStack() as stack:
            if self.remote:
                response = await self._open_remote(stack)
                yield _iter_remote_lines(response, self.chunk_size)
            else:
                handle = self._open_local()
                stack.callback(handle.close)
                yield _iter_local_lines(handle)

    def _open_local(self) -> BinaryIO:
        path = Path(self.descriptor)
        if not path.is_file():
            raise SourceUnavailable(
                f"CSV file not found: {self.descriptor}",
                context={"source": self.descriptor}
            )
        try:
            return path.open("rb")
        except OSError as e:
            raise SourceUnavailable(
                f"CSV file is not readable: {self.descriptor}",
                context={"source": self.descriptor},
                original_exception=e
            )

    async def _open_remote(self, stack: AsyncExitStack) -> httpx.Response:
        client = await stack.enter_async_context(_client(self.transport, self.timeout))
        url = self.descriptor

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            delay = self.retry_delay * (2 ** attempt)

            try:
                logger.debug(f"Open attempt {attempt + 1}/{self.max_retries} for {url}")
                request = client.build_request("GET", url)
                response = await client.send(request, stream=True)

            except (httpx.TimeoutException, httpx.TransportError) as e:
                if last_attempt:
                    raise NetworkError(
                        f"Could not reach {url} after {self.max_retries} attempts",
                        context={"source": url, "retry_count": attempt + 1},
                        original_exception=e
                    )
                logger.warning(f"Network error opening {url}. Retrying in {delay} seconds")
                await asyncio.sleep(delay)
                continue

            status = response.status_code

            if status in (401, 403, 404):
                await response.aclose()
                raise SourceUnavailable(
                    f"Source rejected with HTTP {status}: {url}",
                    context={"source": url, "status_code": status}
                )

            if status == 429 or status >= 500:
                await response.aclose()
                if last_attempt:
                    raise NetworkError(
                        f"HTTP {status} after {self.max_retries} attempts",
                        context={"source": url, "status_code": status, "retry_count": attempt + 1}
                    )
                retry_after = response.headers.get("Retry-After")
                if status == 429 and retry_after and retry_after.isdigit():
                    delay = int(retry_after)
                logger.warning(
                    f"HTTP {status} from {url}. "
                    f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                )
                await asyncio.sleep(delay)
                continue

            if status >= 400:
                await response.aclose()
                raise SourceUnavailable(
                    f"Source returned HTTP {status}: {url}",
                    context={"source": url, "status_code": status}
                )

            stack.push_async_callback(response.aclose)
            return response

        raise NetworkError("Max retries exceeded", context={"source": url})
