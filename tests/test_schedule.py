from datetime import datetime, timedelta, timezone

import pytest

from cadence.errors import ScheduleError
from cadence.schedule import describe, fire_times, fixed_interval, format_interval, parse_cron

START = datetime(2024, 3, 1, 5, 30, tzinfo=timezone.utc)


def test_twelve_hour_cron_has_fixed_interval() -> None:
    assert fixed_interval("0 */12 * * *", START) == timedelta(hours=12)


def test_fire_times_are_strictly_after_start() -> None:
    times = fire_times("0 */12 * * *", START, 3)
    assert times == [
        datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        datetime(2024, 3, 2, 0, 0, tzinfo=timezone.utc),
        datetime(2024, 3, 2, 12, 0, tzinfo=timezone.utc),
    ]

    on_the_hour = fire_times("0 */12 * * *", datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc), 1)
    assert on_the_hour == [datetime(2024, 3, 2, 0, 0, tzinfo=timezone.utc)]


def test_naive_start_is_treated_as_utc() -> None:
    naive = fire_times("0 */12 * * *", datetime(2024, 3, 1, 5, 30), 1)
    assert naive == fire_times("0 */12 * * *", START, 1)


def test_irregular_schedule_has_no_fixed_interval() -> None:
    assert fixed_interval("0 9,17 * * *", START) is None


@pytest.mark.parametrize("expr", ["", "0 */12 * *", "61 * * * *", "0 */12 * * * *", "not a cron"])
def test_invalid_expressions_raise(expr: str) -> None:
    with pytest.raises(ScheduleError):
        parse_cron(expr)


def test_describe_and_format_interval() -> None:
    assert format_interval(timedelta(hours=12)) == "every 12 hours"
    assert format_interval(timedelta(days=1)) == "every 1 day"
    assert describe("0 */12 * * *") == "0 */12 * * * (UTC, every 12 hours)"
