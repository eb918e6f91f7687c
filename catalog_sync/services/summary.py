from __future__ import annotations

from ..models.import_state import BatchResult, ImportRunResult

"""SUMMARY line rendering for import runs and single batches.

Format:
SUMMARY rows={processed} created={created} updated={updated} skipped={skipped}
errors={errors} stale={stale} batches={batches} complete={true|false} elapsed_sec={elapsed}
"""


def _format_seconds(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # avoid scientific notation for very small numbers
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(run: ImportRunResult | BatchResult) -> str:
    """Render a SUMMARY line.

    Examples:
        >>> from catalog_sync.models.import_state import BatchResult, ImportState, ImportStats
        >>> state = ImportState.new(run_timestamp=1, sql_name="items")
        >>> stats = ImportStats(processed=3, created=2, skipped=1)
        >>> render_summary_line(BatchResult(state, stats, False, stats, []))
        'SUMMARY rows=3 created=2 updated=0 skipped=1 errors=0 stale=0 batches=1 complete=false elapsed_sec=0'
    """
    if isinstance(run, ImportRunResult):
        stats, batches, complete, elapsed = run.stats, run.batches, run.complete, run.elapsed_seconds
    else:
        stats, batches, complete, elapsed = run.stats, 1, run.complete, 0.0
    return (
        f"SUMMARY rows={stats.processed} "
        f"created={stats.created} "
        f"updated={stats.updated} "
        f"skipped={stats.skipped} "
        f"errors={stats.errors} "
        f"stale={stats.stale} "
        f"batches={batches} "
        f"complete={'true' if complete else 'false'} "
        f"elapsed_sec={_format_seconds(elapsed)}"
    )
