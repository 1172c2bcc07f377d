from __future__ import annotations

from form_changelog.models.processing_result import BatchResult

"""SUMMARY line rendering.

Format:
SUMMARY accepted={n} failed={n} skipped={n} dropped={n} documents={n} elapsed_sec={x}
"""


def _format_seconds(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # Format very small numbers to avoid scientific notation
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: BatchResult) -> str:
    """Render the SUMMARY line for a compile run.

    Examples:
        >>> from datetime import datetime, timezone
        >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
        >>> r = BatchResult(records=[], errors=[], skipped=[], dropped=[], documents=[],
        ...                 start_time=t, end_time=t, elapsed_seconds=2.0)
        >>> render_summary_line(r)
        'SUMMARY accepted=0 failed=0 skipped=0 dropped=0 documents=0 elapsed_sec=2'
    """
    return (
        f"SUMMARY accepted={result.accepted_count} "
        f"failed={result.failed_count} "
        f"skipped={result.skipped_count} "
        f"dropped={len(result.dropped)} "
        f"documents={len(result.documents)} "
        f"elapsed_sec={_format_seconds(result.elapsed_seconds)}"
    )
