from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from shopledger.core.errors import ConfigurationError
from shopledger.domain.entities import SyncWindow
from shopledger.services.sync.chunks import split_window


class TestSplitWindow:
    def test_ninety_days_in_thirty_day_chunks(self) -> None:
        # input
        window = SyncWindow(start=date(2024, 10, 1), end=date(2024, 12, 29))

        # act
        chunks = split_window(window, 30)

        # assert
        assert [c.label for c in chunks] == [
            "2024-10-01..2024-10-30",
            "2024-10-31..2024-11-29",
            "2024-11-30..2024-12-29",
        ]
        assert [c.index for c in chunks] == [0, 1, 2]
        assert chunks[0].start == datetime(2024, 10, 1, tzinfo=UTC)
        assert chunks[0].end == chunks[1].start

    def test_last_chunk_may_be_shorter(self) -> None:
        window = SyncWindow(start=date(2024, 10, 1), end=date(2024, 10, 10))

        chunks = split_window(window, 7)

        assert len(chunks) == 2
        assert chunks[-1].start_day == date(2024, 10, 8)
        assert chunks[-1].end_day == date(2024, 10, 10)

    def test_single_day_window(self) -> None:
        window = SyncWindow(start=date(2024, 10, 1), end=date(2024, 10, 1))

        chunks = split_window(window, 30)

        assert len(chunks) == 1
        assert chunks[0].end - chunks[0].start == timedelta(days=1)

    def test_bounds_follow_tenant_timezone(self) -> None:
        window = SyncWindow(start=date(2024, 10, 1), end=date(2024, 10, 1))

        chunk = split_window(window, 1, ZoneInfo("Europe/Copenhagen"))[0]

        assert chunk.start == datetime(2024, 9, 30, 22, 0, tzinfo=UTC)
        assert chunk.end == datetime(2024, 10, 1, 22, 0, tzinfo=UTC)

    def test_daylight_saving_change_gives_a_longer_day(self) -> None:
        window = SyncWindow(start=date(2024, 10, 27), end=date(2024, 10, 27))

        chunk = split_window(window, 1, ZoneInfo("Europe/Copenhagen"))[0]

        assert chunk.end - chunk.start == timedelta(hours=25)

    def test_inverted_window_raises(self) -> None:
        window = SyncWindow(start=date(2024, 10, 2), end=date(2024, 10, 1))

        with pytest.raises(ConfigurationError):
            split_window(window, 30)

    def test_zero_chunk_days_raises(self) -> None:
        window = SyncWindow(start=date(2024, 10, 1), end=date(2024, 10, 2))

        with pytest.raises(ConfigurationError):
            split_window(window, 0)
