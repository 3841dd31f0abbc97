"""
Streaming CSV import pipeline.

Modules:
    source: Source resolution (local path, URL, share links) and byte streams with retry
    decoder: Record-at-a-time CSV decoding with progress accounting
    monitor: Process memory sampling against the configured ceiling
    adaptive: Batch size adaptation from timing and memory feedback
    executor: Batch pull and sequential materialization
    materializer: Record to stored entity (default: imported_records table)
    cache: Bounded LRU caches for per-run lookups
    checkpoint: Durable resume positions
    locks: Exclusive run lock
    progress: Progress reporting
    state: Run state and ImportResult
    recorder: import_runs audit trail
    runner: Import state machine
    scheduler: APScheduler integration for periodic imports

Architecture:
    One run streams the source once:

    1. Resolve - Map the source selector to a path or URL
    2. Validate - Read the header and check required columns
    3. Resume - Skip rows covered by a checkpoint
    4. Batch loop - Materialize adaptive batches, checkpoint every N rows
    5. Finalize - Classify the run, clear the checkpoint, release the lock

Usage:
    from ingestion.runner import run_import

    result = await run_import("/data/posts.csv")
    print(f"Created {result.processed} records")

Error Handling:
    All components raise exceptions from core.exceptions. The runner turns
    fatal errors into a failed ImportResult and never leaves the lock held.
"""

__all__ = [
    "IngestionRunner",
    "ImportResult",
    "run_import",
    "RecordSource",
    "StreamingDecoder",
    "ResourceMonitor",
    "AdaptiveScheduler",
    "BatchExecutor",
    "CheckpointStore",
    "RecordMaterializer",
    "SQLRecordMaterializer",
    "ImportScheduler",
]
