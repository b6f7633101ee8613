from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from shopledger.core.errors import ConfigurationError
from shopledger.domain.entities import SyncWindow
from shopledger.services.sync.types import ChunkSpec


def validate_window(window: SyncWindow, chunk_days: int) -> None:
    if window.end < window.start:
        raise ConfigurationError(
            f"Invalid window: end {window.end} is before start {window.start}"
        )
    if chunk_days < 1:
        raise ConfigurationError(f"chunk_size_days must be >= 1, got {chunk_days}")


def local_midnight_utc(day: date, zone: ZoneInfo) -> datetime:
    """UTC instant at which ``day`` begins in ``zone``."""
    return datetime.combine(day, time.min, tzinfo=zone).astimezone(UTC)


def split_window(
    window: SyncWindow, chunk_days: int, zone: ZoneInfo | None = None
) -> list[ChunkSpec]:
    """Split an inclusive day window into consecutive ``chunk_days`` chunks.

    The last chunk may be shorter. Chunk bounds are local days in ``zone``
    (UTC when omitted) converted to UTC.

    Raises:
        ConfigurationError: If the window is inverted or ``chunk_days < 1``.
    """
    validate_window(window, chunk_days)
    zone = zone or ZoneInfo("UTC")

    chunks: list[ChunkSpec] = []
    day = window.start
    while day <= window.end:
        end_day = min(day + timedelta(days=chunk_days - 1), window.end)
        chunks.append(
            ChunkSpec(
                index=len(chunks),
                start_day=day,
                end_day=end_day,
                start=local_midnight_utc(day, zone),
                end=local_midnight_utc(end_day + timedelta(days=1), zone),
            )
        )
        day = end_day + timedelta(days=1)
    return chunks
