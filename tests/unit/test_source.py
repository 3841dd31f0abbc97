"""
Unit tests for source resolution and byte streams
"""

import httpx
import pytest

from core.config import ImportConfig
from core.exceptions import NetworkError, SourceUnavailable
from ingestion.source import (
    REMOTE_FALLBACK_ROWS,
    RecordSource,
    _iter_remote_lines,
    estimate_total_rows,
    is_remote,
    resolve_source,
    rewrite_share_link,
)


def counting_transport(responses):
    """MockTransport that replays ``responses`` (status or exception) in order"""
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        item = responses[min(len(calls), len(responses)) - 1]
        if isinstance(item, Exception):
            raise item
        status, body = item
        return httpx.Response(status, content=body)

    return httpx.MockTransport(handler), calls


class TestResolveSource:
    """Test mapping of source selectors to paths and URLs"""

    def test_local_joins_base_dir(self, tmp_path):
        config = ImportConfig(base_dir=str(tmp_path), local_path="/data/posts.csv")
        assert resolve_source("local", config) == str(tmp_path / "data" / "posts.csv")

    def test_local_without_path_is_unavailable(self):
        with pytest.raises(SourceUnavailable):
            resolve_source("local", ImportConfig())

    def test_remote_rewrites_share_link(self):
        config = ImportConfig(remote_url="https://www.dropbox.com/s/abc/posts.csv?dl=0")
        resolved = resolve_source("remote", config)
        assert resolved == "https://dl.dropboxusercontent.com/s/abc/posts.csv?raw=1"
        assert resolve_source("dropbox", config) == resolved

    def test_remote_without_url_is_unavailable(self):
        with pytest.raises(SourceUnavailable):
            resolve_source("remote", ImportConfig())

    def test_direct_path_passes_through(self):
        assert resolve_source(" /tmp/file.csv ", ImportConfig()) == "/tmp/file.csv"

    def test_blank_source_is_unavailable(self):
        with pytest.raises(SourceUnavailable):
            resolve_source("   ", ImportConfig())


class TestShareLinks:
    def test_dropbox_dl_1(self):
        url = "https://dropbox.com/s/xyz/file.csv?dl=1"
        assert rewrite_share_link(url) == "https://dl.dropboxusercontent.com/s/xyz/file.csv?raw=1"

    def test_drive_view_link(self):
        url = "https://drive.google.com/file/d/FILE123/view?usp=sharing"
        assert rewrite_share_link(url) == "https://drive.google.com/uc?export=download&id=FILE123"

    def test_other_urls_unchanged(self):
        url = "https://example.com/export.csv?token=1"
        assert rewrite_share_link(url) == url

    def test_is_remote(self):
        assert is_remote("https://example.com/a.csv")
        assert is_remote("http://example.com/a.csv")
        assert not is_remote("/var/data/a.csv")
        assert not is_remote("ftp://example.com/a.csv")


class TestEstimates:
    @pytest.mark.asyncio
    async def test_local_estimate_counts_data_rows(self, write_csv, numbered_rows):
        path = write_csv(numbered_rows(10))
        assert await estimate_total_rows(path) == 10

    @pytest.mark.asyncio
    async def test_missing_local_file_estimates_zero(self, tmp_path):
        assert await estimate_total_rows(str(tmp_path / "missing.csv")) == 0

    @pytest.mark.asyncio
    async def test_remote_estimate_from_content_length(self):
        def handler(request):
            return httpx.Response(200, headers={"Content-Length": "5000"})

        total = await estimate_total_rows("https://example.com/a.csv", httpx.MockTransport(handler))
        assert total == 50

    @pytest.mark.asyncio
    async def test_remote_estimate_fallback(self):
        def handler(request):
            return httpx.Response(405)

        total = await estimate_total_rows("https://example.com/a.csv", httpx.MockTransport(handler))
        assert total == REMOTE_FALLBACK_ROWS


class TestRecordSource:
    """Test opening sources with retry"""

    @pytest.mark.asyncio
    async def test_local_lines(self, write_csv):
        path = write_csv([["A", "a"], ["B", "b"]])
        async with RecordSource(path).open() as lines:
            collected = [line async for line in lines]

        assert collected[0].startswith(b"title,content")
        assert len(collected) == 3

    @pytest.mark.asyncio
    async def test_missing_local_file(self, tmp_path):
        source = RecordSource(str(tmp_path / "nope.csv"))
        with pytest.raises(SourceUnavailable):
            async with source.open():
                pass

    @pytest.mark.asyncio
    async def test_remote_retries_server_errors(self):
        transport, calls = counting_transport([
            (503, b""),
            (502, b""),
            (200, b"title,content\nA,a\nB,b"),
        ])
        source = RecordSource("https://example.com/a.csv", transport=transport, retry_delay=0)

        async with source.open() as lines:
            collected = [line async for line in lines]

        assert len(calls) == 3
        assert collected == [b"title,content\n", b"A,a\n", b"B,b"]

    @pytest.mark.asyncio
    async def test_remote_not_found_fails_immediately(self):
        transport, calls = counting_transport([(404, b"")])
        source = RecordSource("https://example.com/a.csv", transport=transport, retry_delay=0)

        with pytest.raises(SourceUnavailable) as exc_info:
            async with source.open():
                pass

        assert not isinstance(exc_info.value, NetworkError)
        assert exc_info.value.context["status_code"] == 404
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_remote_connection_errors_exhaust_retries(self):
        transport, calls = counting_transport([httpx.ConnectError("Connection refused")])
        source = RecordSource("https://example.com/a.csv", transport=transport, max_retries=3, retry_delay=0)

        with pytest.raises(NetworkError) as exc_info:
            async with source.open():
                pass

        assert len(calls) == 3
        assert isinstance(exc_info.value.original_exception, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_remote_rate_limited(self):
        transport, calls = counting_transport([(429, b"")])
        source = RecordSource("https://example.com/a.csv", transport=transport, max_retries=2, retry_delay=0)

        with pytest.raises(NetworkError):
            async with source.open():
                pass

        assert len(calls) == 2


class ChunkedResponse:
    """Response stand-in that replays fixed byte chunks"""

    def __init__(self, chunks):
        self.chunks = chunks

    async def aiter_bytes(self, chunk_size=None):
        for chunk in self.chunks:
            yield chunk


class TestRemoteLines:
    """Test splitting a chunked body into lines"""

    @pytest.mark.asyncio
    async def test_lines_split_across_chunks(self):
        response = ChunkedResponse([b"title,con", b"tent\nA,a\nB", b",b\n", b"C,c"])
        lines = [line async for line in _iter_remote_lines(response, 4)]

        assert lines == [b"title,content\n", b"A,a\n", b"B,b\n", b"C,c"]

    @pytest.mark.asyncio
    async def test_many_lines_in_one_chunk(self):
        body = b"title\n" + b"".join(f"Row {i}\n".encode() for i in range(1, 5001))
        response = ChunkedResponse([body[:len(body) // 2], body[len(body) // 2:], b""])
        lines = [line async for line in _iter_remote_lines(response, len(body))]

        assert len(lines) == 5001
        assert lines[1] == b"Row 1\n"
        assert lines[-1] == b"Row 5000\n"
        assert b"".join(lines) == body
