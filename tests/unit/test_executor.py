"""
Unit tests for batch execution
"""

from unittest.mock import AsyncMock

import pytest

from ingestion.adaptive import AdaptiveScheduler
from ingestion.decoder import StreamingDecoder
from ingestion.executor import STOP_ERRORS, STOP_MEMORY, BatchExecutor
from ingestion.source import RecordSource
from tests.fakes import RecordingMaterializer, quiet_monitor


async def open_decoder(path: str) -> StreamingDecoder:
    decoder = StreamingDecoder(RecordSource(path))
    await decoder.open()
    await decoder.read_header()
    return decoder


def make_executor(materializer, monitor=None, size=10):
    scheduler = AdaptiveScheduler(monitor=quiet_monitor(), min_size=1, max_size=100, initial=size)
    return BatchExecutor(materializer, scheduler, monitor or quiet_monitor())


class TestBatchExecutor:
    """Test batch pull, materialization and early stops"""

    @pytest.mark.asyncio
    async def test_pulls_at_most_current_size(self, write_csv, numbered_rows, import_config):
        decoder = await open_decoder(write_csv(numbered_rows(25)))
        materializer = RecordingMaterializer()
        executor = make_executor(materializer)

        outcome = await executor.process_batch(decoder, import_config, "run_1")

        assert outcome.pulled == 10
        assert outcome.processed == 10
        assert not outcome.finished
        assert materializer.records[0]["title"] == "Row 1"
        assert outcome.last_record["title"] == "Row 10"
        await decoder.close()

    @pytest.mark.asyncio
    async def test_short_batch_finishes(self, write_csv, numbered_rows, import_config):
        decoder = await open_decoder(write_csv(numbered_rows(4)))
        executor = make_executor(RecordingMaterializer())

        outcome = await executor.process_batch(decoder, import_config, "run_1")

        assert outcome.processed == 4
        assert outcome.finished
        await decoder.close()

    @pytest.mark.asyncio
    async def test_empty_stream_finishes(self, write_csv, import_config):
        decoder = await open_decoder(write_csv([]))
        executor = make_executor(RecordingMaterializer())

        outcome = await executor.process_batch(decoder, import_config, "run_1")

        assert outcome.finished
        assert outcome.attempted == 0
        await decoder.close()

    @pytest.mark.asyncio
    async def test_limit_caps_pull(self, write_csv, numbered_rows, import_config):
        decoder = await open_decoder(write_csv(numbered_rows(25)))
        materializer = RecordingMaterializer()
        executor = make_executor(materializer, size=10)

        outcome = await executor.process_batch(decoder, import_config, "run_1", limit=4)

        assert outcome.pulled == 4
        assert not outcome.finished
        assert executor.scheduler.current_size == 10

        outcome = await executor.process_batch(decoder, import_config, "run_1", limit=50)
        assert outcome.pulled == 10
        assert materializer.records[4]["title"] == "Row 5"
        await decoder.close()

    @pytest.mark.asyncio
    async def test_limited_short_batch_finishes(self, write_csv, numbered_rows, import_config):
        decoder = await open_decoder(write_csv(numbered_rows(3)))
        executor = make_executor(RecordingMaterializer(), size=10)

        outcome = await executor.process_batch(decoder, import_config, "run_1", limit=5)

        assert outcome.pulled == 3
        assert outcome.finished
        await decoder.close()

    @pytest.mark.asyncio
    async def test_duplicates_and_none_are_skipped(self, write_csv, numbered_rows, import_config):
        decoder = await open_decoder(write_csv(numbered_rows(6)))
        materializer = RecordingMaterializer(duplicate_when=lambda r: r["title"] in ("Row 2", "Row 4"))
        executor = make_executor(materializer)

        outcome = await executor.process_batch(decoder, import_config, "run_1")
        assert outcome.processed == 4
        assert outcome.skipped == 2
        assert outcome.errors == []
        await decoder.close()

        none_materializer = AsyncMock()
        none_materializer.materialize = AsyncMock(return_value=None)
        decoder = await open_decoder(write_csv(numbered_rows(3), name="none.csv"))
        outcome = await make_executor(none_materializer).process_batch(decoder, import_config, "run_1")
        assert outcome.skipped == 3
        assert outcome.processed == 0
        await decoder.close()

    @pytest.mark.asyncio
    async def test_record_errors_are_collected(self, write_csv, numbered_rows, import_config):
        decoder = await open_decoder(write_csv(numbered_rows(10)))
        materializer = RecordingMaterializer(fail_when=lambda r: r["title"] == "Row 3")
        executor = make_executor(materializer)

        outcome = await executor.process_batch(decoder, import_config, "run_1")

        assert outcome.processed == 9
        assert len(outcome.errors) == 1
        failure = outcome.errors[0]
        assert failure.line == 4
        assert failure.error_type == "ValidationError"
        assert failure.sample["title"] == "Row 3"
        assert str(failure) == "Line 4: Invalid record: Row 3"
        await decoder.close()

    @pytest.mark.asyncio
    async def test_too_many_errors_defers_rest_of_batch(self, write_csv, numbered_rows, import_config):
        decoder = await open_decoder(write_csv(numbered_rows(8)))
        materializer = RecordingMaterializer(fail_when=lambda r: True)
        executor = make_executor(materializer, size=10)

        first = await executor.process_batch(decoder, import_config, "run_1")

        assert first.stopped_reason == STOP_ERRORS
        assert len(first.errors) == 6
        assert first.deferred == 2
        assert not first.finished
        assert executor.pending == 2

        second = await executor.process_batch(decoder, import_config, "run_1")

        assert [f.sample["title"] for f in second.errors] == ["Row 7", "Row 8"]
        assert second.finished
        assert materializer.calls == 8
        await decoder.close()

    @pytest.mark.asyncio
    async def test_critical_memory_ends_batch_after_success(self, write_csv, numbered_rows, import_config):
        decoder = await open_decoder(write_csv(numbered_rows(20)))
        materializer = RecordingMaterializer()
        executor = make_executor(materializer, monitor=quiet_monitor(limit=100, usage=99))

        outcome = await executor.process_batch(decoder, import_config, "run_1")

        assert outcome.stopped_reason == STOP_MEMORY
        assert outcome.processed == 1
        assert outcome.deferred == 9

        executor.monitor = quiet_monitor()
        outcome = await executor.process_batch(decoder, import_config, "run_1")
        assert materializer.records[1]["title"] == "Row 2"
        await decoder.close()

    @pytest.mark.asyncio
    async def test_feeds_scheduler(self, write_csv, numbered_rows, import_config):
        decoder = await open_decoder(write_csv(numbered_rows(40)))
        executor = make_executor(RecordingMaterializer())

        for _ in range(3):
            await executor.process_batch(decoder, import_config, "run_1")

        assert len(executor.scheduler.samples) == 3
        assert executor.scheduler.current_size == 12
        await decoder.close()
